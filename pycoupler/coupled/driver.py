"""
driver.py

The coupling loop (sequential, Gauss-Seidel ordering).

Bootstrap (initialize_coupler), once before the loop:
  1. update surface area fractions
  2. import combined surface fields and atmosphere fields, push to the models
  3. step the surface models by one coupling interval (surface humidity
     consistent with the new surface air density)
  4. turbulent fluxes per the configured scheme
  5. reinitialize every model (step 3 did not advance physical time)
  6. re-import the atmosphere fields and push them to the models

Each coupling step (step_coupler) to time t:
  a. t and the current date
  b. prescribed inputs (amip)
  c. conservation integrals, before any state changes
  d. water albedo callback
  e. surface fractions, push coupler fields into the models
  f. step all models to t
  g. import combined surface fields, turbulent fluxes
  h. import atmosphere fields
  i. month-boundary and checkpoint callbacks
  j. diagnostics

A restarted run skips the bootstrap: restart_coupled_simulation restores the
coupler fields together with the model states.
"""

from __future__ import annotations

import time

from .api import surface_simulations
from .checkpointer import restart_coupled_simulation
from .conservation import check_conservation, check_conservation_closure
from .field_exchanger import (
    import_atmos_fields,
    import_combined_surface_fields,
    reinit_model_sims,
    step_model_sims,
    update_model_sims,
)
from .flux_calculator import (
    TurbulentFluxScheme,
    combined_turbulent_fluxes,
    compute_turbulent_fluxes,
    parse_flux_scheme,
    partitioned_turbulent_fluxes,
)
from .regridder import update_surface_fractions
from .time_manager import current_date, trigger_callback


def initialize_coupler(cs) -> None:
    scheme = parse_flux_scheme(cs.turbulent_flux_scheme)
    sims = cs.model_sims

    # 1. coupler is the authority on area fractions
    update_surface_fractions(cs)

    # 2. surface air density needs both the surface and the atmospheric state
    import_combined_surface_fields(cs.fields, sims, scheme)
    import_atmos_fields(cs.fields, sims, cs.boundary_space, scheme)
    update_model_sims(sims, cs.fields, scheme)

    # 3. surface humidity from one surface step with the new density
    for sim in surface_simulations(sims).values():
        sim.step(cs.t + cs.dt_cpl)

    # 4. first turbulent fluxes
    if scheme is TurbulentFluxScheme.COMBINED:
        import_combined_surface_fields(cs.fields, sims, scheme)
        combined_turbulent_fluxes(sims, cs.fields, scheme)
    else:
        partitioned_turbulent_fluxes(sims, cs.fields, cs.boundary_space)
        cs.atmos_sim.update_surface_conditions(cs.fields)

    # 5. back to the initial conditions (and time)
    reinit_model_sims(sims)

    # 6. radiation is now non-zero
    import_atmos_fields(cs.fields, sims, cs.boundary_space, scheme)
    update_model_sims(sims, cs.fields, scheme)
    print(f"[Coupler] Initialized {', '.join(sims)} ({scheme.value}, mode={cs.mode.name})")


def step_coupler(cs, t: float) -> None:
    """One coupling step from cs.t to t."""
    scheme = parse_flux_scheme(cs.turbulent_flux_scheme)
    sims = cs.model_sims

    # a.
    cs.t = float(t)
    cs.dates.date = current_date(cs, t)
    cs.dates.new_month = False

    # b.
    cs.mode.evaluate_inputs(cs, t)

    # c.
    if cs.conservation_checks:
        check_conservation(cs)
        cs.comms_ctx.barrier()

    # d.
    trigger_callback(cs, cs.callbacks["water_albedo"])

    # e.
    update_surface_fractions(cs)
    update_model_sims(sims, cs.fields, scheme)

    # f.
    step_model_sims(sims, t)

    # g.
    import_combined_surface_fields(cs.fields, sims, scheme)
    compute_turbulent_fluxes(cs)

    # h.
    import_atmos_fields(cs.fields, sims, cs.boundary_space, scheme)

    # i.
    trigger_callback(cs, cs.callbacks["update_firstdayofmonth"])
    trigger_callback(cs, cs.callbacks["checkpoint"])

    # j.
    if cs.diagnostics_handler is not None:
        cs.diagnostics_handler.update(cs)


def next_coupling_time(cs) -> float:
    """t_start + (k + 1) dt_cpl for the k-th completed step, capped at the end of the span."""
    t_start, t_end = float(cs.time_span[0]), float(cs.time_span[1])
    k = int(round((cs.t - t_start) / cs.dt_cpl))
    return min(t_start + (k + 1) * cs.dt_cpl, t_end)


def solve_coupler(cs) -> int:
    """Run the coupling loop from cs.t to the end of the time span; returns the number of steps."""
    t_end = cs.t_end
    t_run_start = cs.t
    tol = 1e-9 * max(1.0, cs.dt_cpl)
    print(f"[Coupler] Starting coupling loop: t={cs.t:.0f}s -> {t_end:.0f}s, "
          f"dt_cpl={cs.dt_cpl:.0f}s ({cs.n_remaining_steps()} steps)")

    walltime_start = time.time()
    n_steps = 0
    while t_end - cs.t > tol:
        step_coupler(cs, next_coupling_time(cs))
        cs.comms_ctx.barrier()
        n_steps += 1
    walltime = time.time() - walltime_start

    simulated_years = (t_end - t_run_start) / (365.0 * 86400.0)
    sypd = simulated_years / (walltime / 86400.0) if walltime > 0.0 else float("inf")
    cs.wall_time["walltime"] = walltime
    cs.wall_time["sypd"] = sypd
    if cs.comms_ctx.is_root():
        print(f"[Coupler] Done: {n_steps} steps, walltime={walltime:.2f}s, SYPD={sypd:.3g}")

    if cs.conservation_checks:
        check_conservation(cs)
        cfg = cs.config
        for check in cs.conservation_checks.values():
            check_conservation_closure(check, softfail=cfg.conservation_softfail, rtol=cfg.conservation_rtol)
            if cfg.plot_conservation:
                from pycoupler.ploter import plot_global_conservation

                path = plot_global_conservation(check, cs.output_dir, cfg.job_id)
                print(f"[Conservation] Plot saved to {path}")
    return n_steps


def run_coupled(config=None):
    """Build, initialize (or restart) and run a coupled simulation; returns it."""
    from . import CouplerConfig
    from .builder import build_coupled_simulation

    cfg = config if config is not None else CouplerConfig.from_env()
    cs = build_coupled_simulation(cfg)
    if cs.config.restart_dir and cs.config.restart_t is not None:
        restart_coupled_simulation(cs, cs.config.restart_dir, t=cs.config.restart_t)
    else:
        initialize_coupler(cs)
    solve_coupler(cs)
    return cs
