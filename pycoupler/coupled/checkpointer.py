"""
checkpointer.py

Checkpoint/restart of a coupled run.

Layout (one NetCDF file per role and date, see regridder.persisted_filename):

    {restart_dir}/checkpoint_{role}_{job_id}_{YYYYmmddTHHMMSS}.nc

- model roles: every array of get_model_prog_state() plus the model clock "t"
- role "coupler": every coupler field, the coupler clock "t", the
  first-day-of-month cursor and the callbacks' reference dates (seconds
  since the start date)

A model whose get_model_prog_state() is None has nothing to persist: no file
is written for it and none is required on restart.
"""

from __future__ import annotations

import os
from datetime import datetime, timedelta
from typing import Optional

import numpy as np

from .exceptions import ConfigurationError
from .regridder import persisted_filename, read_from_persisted, write_to_persisted
from .time_manager import current_date, next_ref_date

COUPLER_ROLE = "coupler"


def checkpoint_path(restart_dir: str, role: str, job_id: str) -> str:
    """Path root of the checkpoint files of `role` (date suffix added on write)."""
    return os.path.join(restart_dir, f"checkpoint_{role}_{job_id}")


def checkpoint_model_state(sim, role: str, date: datetime, restart_dir: str, job_id: str) -> Optional[str]:
    """
    Persist `sim`'s prognostic state and clock for `date`.

    Returns the file name, or None if the model has no persistable state.
    """
    state = sim.get_model_prog_state()
    if state is None:
        return None
    root = checkpoint_path(restart_dir, role, job_id)
    fname = persisted_filename(root, date)
    if os.path.isfile(fname):
        os.remove(fname)
    for name, value in state.items():
        write_to_persisted(root, name, date, value, space=sim.space)
    write_to_persisted(root, "t", date, sim.t)
    return fname


def restart_model_state(sim, role: str, date: datetime, restart_dir: str, job_id: str) -> bool:
    """
    Restore `sim` from its checkpoint for `date`.

    Returns False for a model without persistable state. A missing file for
    a model that has state raises FileNotFoundError.
    """
    template = sim.get_model_prog_state()
    if template is None:
        return False
    root = checkpoint_path(restart_dir, role, job_id)
    state = {}
    for name, value in template.items():
        data = read_from_persisted(root, name, date)
        state[name] = data.astype(np.asarray(value).dtype) if np.ndim(data) else data
    sim.restore_model_prog_state(state)
    sim.set_clock(float(read_from_persisted(root, "t", date)))
    return True


def _seconds_since(date: datetime, date0: datetime) -> float:
    return (date - date0).total_seconds()


def checkpoint_coupler_state(cs, restart_dir: str, job_id: str) -> str:
    date = cs.dates.date
    root = checkpoint_path(restart_dir, COUPLER_ROLE, job_id)
    fname = persisted_filename(root, date)
    if os.path.isfile(fname):
        os.remove(fname)
    for name, value in cs.fields.items():
        write_to_persisted(root, name, date, value, space=cs.boundary_space)
    write_to_persisted(root, "t", date, cs.t)
    write_to_persisted(root, "date1", date, _seconds_since(cs.dates.date1, cs.dates.date0))
    for name, cb in cs.callbacks.items():
        write_to_persisted(root, f"callback_{name}", date, _seconds_since(cb.ref_date, cs.dates.date0))
    return fname


def checkpoint_sims(cs) -> None:
    """Checkpoint callback: persist every model and the coupler state at the current date."""
    restart_dir = cs.config.restart_dir or os.path.join(cs.output_dir, "checkpoint")
    job_id = cs.config.job_id
    date = cs.dates.date
    written = []
    for role, sim in cs.model_sims.items():
        if checkpoint_model_state(sim, role, date, restart_dir, job_id) is not None:
            written.append(role)
    checkpoint_coupler_state(cs, restart_dir, job_id)
    print(f"[Checkpointer] {date:%Y-%m-%d %H:%M:%S} t={cs.t:.0f}s -> {restart_dir} ({', '.join(written) or 'no models'})")


def restart_coupled_simulation(cs, restart_dir: str, t: Optional[float] = None, date: Optional[datetime] = None) -> None:
    """
    Reconstruct the state of `cs` from the checkpoint at model time `t`
    (or calendar `date`): model states and clocks, coupler fields and clock,
    calendar cursor and callback reference dates. The coupling loop then
    resumes at that time without re-running the bootstrap.
    """
    if date is None:
        if t is None:
            raise ConfigurationError("restart needs a restart time or date")
        date = current_date(cs, t)
    job_id = cs.config.job_id
    root = checkpoint_path(restart_dir, COUPLER_ROLE, job_id)
    if not os.path.isfile(persisted_filename(root, date)):
        raise FileNotFoundError(f"No coupler checkpoint in {restart_dir!r} for {date:%Y-%m-%d %H:%M:%S}")

    for role, sim in cs.model_sims.items():
        restart_model_state(sim, role, date, restart_dir, job_id)

    for name in cs.fields:
        cs.fields[name] = read_from_persisted(root, name, date)
    cs.t = float(read_from_persisted(root, "t", date))
    cs.dates.date = date
    cs.dates.date1 = cs.dates.date0 + timedelta(seconds=float(read_from_persisted(root, "date1", date)))
    cs.dates.new_month = False
    for name, cb in cs.callbacks.items():
        offset = float(read_from_persisted(root, f"callback_{name}", date))
        cb.ref_date = cs.dates.date0 + timedelta(seconds=offset)
        # due at the checkpoint date: it already fired in the run that wrote the file
        if cb.active and cb.ref_date <= date:
            cb.ref_date = next_ref_date(cb, date)
    print(f"[Checkpointer] Restarted from {restart_dir} at {date:%Y-%m-%d %H:%M:%S} (t={cs.t:.0f}s)")
