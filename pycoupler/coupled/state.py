"""
CoupledSimulation: the single state container of a coupled run.

Purpose
- Own everything the coupling loop needs: communication context, calendar
  cursor, boundary space, coupler fields, config, conservation accumulators,
  clock, component models, mode, callbacks, flux scheme, diagnostics sink.
- Validate the composition once at construction (roles required by the mode,
  exactly one atmosphere, positive coupling interval that divides the span).

Notes
- Coupler fields have a fixed schema: all names are allocated once on the
  boundary space; assignment writes into the existing array, new names are
  rejected.
- Only the field exchanger, flux calculator, time manager and driver mutate
  fields, dates or t.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterator, Optional

import numpy as np

from .api import AtmosModelSimulation, ComponentModelSimulation, ModelKind
from .exceptions import ConfigurationError

# Coupler field names (all defined on the boundary space)
COUPLER_FIELD_NAMES = (
    # combined surface state
    "T_S",
    "z0m_S",
    "z0b_S",
    "rho_sfc",
    "q_sfc",
    "surface_direct_albedo",
    "surface_diffuse_albedo",
    "beta",
    # turbulent fluxes (positive upward)
    "F_turb_energy",
    "F_turb_moisture",
    "F_turb_rho_tau_xz",
    "F_turb_rho_tau_yz",
    # atmosphere-side fluxes
    "F_radiative",
    "P_liq",
    "P_snow",
    "radiative_energy_flux_toa",
    "P_net",
)


class CouplerFields(Mapping):
    """Fixed-schema mapping name -> array on the boundary space."""

    def __init__(self, space, names=COUPLER_FIELD_NAMES) -> None:
        self._fields = {name: space.zeros() for name in names}

    def __getitem__(self, name: str) -> np.ndarray:
        return self._fields[name]

    def __setitem__(self, name: str, value) -> None:
        if name not in self._fields:
            raise KeyError(f"{name!r} is not a coupler field")
        self._fields[name][...] = value

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def reset(self, *names: str, value: float = 0.0) -> None:
        """Set the named fields (default: all) to `value`."""
        for name in names or tuple(self._fields):
            self[name] = value


@dataclass
class Dates:
    """
    Calendar cursor.

    date      current date (advances once per coupling step)
    date0     reference (start) date, t = 0
    date1     first day of the current month
    new_month set by the monthly callback, cleared at the start of each step
    """

    date: datetime
    date0: datetime
    date1: datetime
    new_month: bool = False

    @classmethod
    def from_start(cls, date0: datetime) -> Dates:
        return cls(date=date0, date0=date0, date1=datetime(date0.year, date0.month, 1))


class SerialCommsContext:
    """Single-process communication context (barrier is a no-op)."""

    def __init__(self) -> None:
        self.n_barriers = 0

    def barrier(self) -> None:
        self.n_barriers += 1

    def is_root(self) -> bool:
        return True

    @property
    def size(self) -> int:
        return 1


def validate_time_span(time_span, dt_cpl: float, allow_partial_step: bool = False) -> None:
    if not dt_cpl > 0.0:
        raise ConfigurationError(f"Coupling interval must be positive, got {dt_cpl}")
    t_start, t_end = float(time_span[0]), float(time_span[1])
    if t_end < t_start:
        raise ConfigurationError(f"time span end {t_end} precedes start {t_start}")
    span = t_end - t_start
    n = np.floor(span / dt_cpl + 1e-9)
    if abs(span - n * dt_cpl) > 1e-9 * max(1.0, span) and not allow_partial_step:
        raise ConfigurationError(f"Coupling interval {dt_cpl}s does not evenly divide the time span {span}s")


@dataclass
class CoupledSimulation:
    comms_ctx: Any
    dates: Dates
    boundary_space: Any
    fields: CouplerFields
    config: Any
    conservation_checks: Optional[Dict[str, Any]]
    time_span: tuple
    t: float
    dt_cpl: float
    model_sims: Dict[str, ComponentModelSimulation]
    mode: Any
    callbacks: Dict[str, Any]
    turbulent_flux_scheme: Any
    diagnostics_handler: Optional[Any] = None
    output_dir: str = "output"
    wall_time: Dict[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        allow_partial = bool(getattr(self.config, "allow_partial_step", False))
        validate_time_span(self.time_span, self.dt_cpl, allow_partial)

        atmos = [r for r, s in self.model_sims.items() if s.kind is ModelKind.ATMOS]
        if len(atmos) != 1 or "atmos" not in atmos:
            raise ConfigurationError(f"Exactly one atmosphere simulation under role 'atmos' is required, got {atmos}")
        required = tuple(getattr(self.mode, "required_roles", ()))
        missing = [role for role in required if role not in self.model_sims]
        if missing:
            raise ConfigurationError(f"Mode {getattr(self.mode, 'name', self.mode)!r} requires model roles {missing}")

        if set(self.fields) != set(COUPLER_FIELD_NAMES):
            raise ConfigurationError("Coupler fields do not match the coupler field schema")

    @property
    def atmos_sim(self) -> AtmosModelSimulation:
        return self.model_sims["atmos"]

    @property
    def t_end(self) -> float:
        return float(self.time_span[1])

    def n_remaining_steps(self) -> int:
        return int(np.ceil((self.t_end - self.t) / self.dt_cpl - 1e-9))
