"""
builder.py

Assemble a CoupledSimulation from a CouplerConfig.

- boundary space and land fraction (idealized continents or a land-sea mask
  file), adjusted by the mode (aqua: no land, terra: all land)
- one atmosphere plus land, ocean and ice roles in every mode:
    amip                 bucket land, prescribed-SST ocean stub, prescribed ice
    slabplanet(_aqua/_terra)
                         bucket land, slab ocean, zero-fraction ice stub
    slabplanet_eisenman  bucket land, zero-fraction ocean stub, Eisenman ice
- callbacks: checkpoint (hourly timer), first day of month (monthly timer),
  water albedo (hourly, amip only)
- conservation checks (slab planets with energy_check) and diagnostics
"""

from __future__ import annotations

import os
from datetime import timedelta

from pycoupler.grid import BoundarySpace
from pycoupler.models.atmosphere import SlabAtmosphere, get_atmos_params_from_env
from pycoupler.models.land import BucketLand, get_bucket_params_from_env
from pycoupler.models.ocean import SlabOcean, get_slab_ocean_params_from_env
from pycoupler.models.sea_ice import EisenmanSeaIce, PrescribedIce

from .api import SurfaceStub
from .checkpointer import checkpoint_sims
from .conservation import make_conservation_checks
from .diagnostics import DiagnosticsHandler
from .flux_calculator import WATER_DIFFUSE_ALBEDO, parse_flux_scheme, water_albedo_from_atmosphere
from .modes import Amip, SlabPlanetEisenman, get_ice_fraction, make_mode
from .regridder import idealized_land_fraction, land_fraction_from_file
from .state import CouplerFields, CoupledSimulation, Dates, SerialCommsContext
from .time_manager import HourlyCallback, MonthlyCallback, add_months, first_day_of_month, update_firstdayofmonth

WATER_ALBEDO_HOURS = 1.0

# GFDL open-ocean roughness (m)
OCEAN_Z0 = 5.8e-5


def make_land_fraction(config, space):
    if config.land_fraction_source == "file":
        return land_fraction_from_file(config.land_mask_file, space, mono_surface=config.mono_surface)
    return idealized_land_fraction(space, mono_surface=config.mono_surface)


def make_callbacks(config, dates, mode) -> dict:
    start = dates.date
    return {
        "checkpoint": HourlyCallback(
            hours=config.hourly_checkpoint_dt,
            action=checkpoint_sims,
            ref_date=start + timedelta(hours=float(config.hourly_checkpoint_dt)),
            active=config.hourly_checkpoint,
            name="checkpoint",
        ),
        "update_firstdayofmonth": MonthlyCallback(
            months=1,
            action=update_firstdayofmonth,
            ref_date=add_months(dates.date1, 1),
            active=True,
            name="update_firstdayofmonth",
        ),
        "water_albedo": HourlyCallback(
            hours=WATER_ALBEDO_HOURS,
            action=water_albedo_from_atmosphere,
            ref_date=start,
            active=mode.water_albedo,
            name="water_albedo",
        ),
    }


def build_coupled_simulation(config) -> CoupledSimulation:
    cfg = config.validated()
    scheme = parse_flux_scheme(cfg.turb_flux_partition)
    space = BoundarySpace(cfg.n_lat, cfg.n_lon, dtype=cfg.dtype)
    date0 = cfg.start_datetime
    start = date0 + timedelta(seconds=cfg.t_start)
    dates = Dates(date=start, date0=date0, date1=first_day_of_month(start))
    t0 = cfg.t_start

    mode = make_mode(cfg, space, date0)
    land_fraction = mode.land_fraction(make_land_fraction(cfg, space))
    sea_fraction = 1.0 - land_fraction
    print(f"[Coupler] mode={mode.name} grid={space.n_lat}x{space.n_lon} land fraction={float((land_fraction * space.cell_area).sum() / space.cell_area.sum()):.3f}")

    atmos = SlabAtmosphere(space, cfg.dt, dt_rad=cfg.dt_cpl, start_date=date0, flux_scheme=scheme,
                           params=get_atmos_params_from_env(), co2=cfg.co2_ppm * 1e-6, t0=t0)
    land = BucketLand(space, cfg.dt, area_fraction=land_fraction, params=get_bucket_params_from_env(), t0=t0)

    if isinstance(mode, Amip):
        sst = mode.sst_input.evaluate(space.zeros(), t0)
        ocean = SurfaceStub(space, "ocean", cache={
            "surface_temperature": sst,
            "roughness_momentum": OCEAN_Z0,
            "roughness_buoyancy": OCEAN_Z0,
            "beta": 1.0,
            "surface_direct_albedo": WATER_DIFFUSE_ALBEDO,
            "surface_diffuse_albedo": WATER_DIFFUSE_ALBEDO,
        }, area_fraction=sea_fraction, dt=cfg.dt, t0=t0)
        sic = mode.sic_input.evaluate(space.zeros(), t0)
        ice = PrescribedIce(space, cfg.dt, area_fraction=get_ice_fraction(sic, cfg.mono_surface), t0=t0)
        atmos.update_field("co2", mode.co2_input.evaluate(space.zeros(), t0))
    elif isinstance(mode, SlabPlanetEisenman):
        ocean = SurfaceStub(space, "ocean", area_fraction=space.zeros(), dt=cfg.dt, t0=t0)
        ice = EisenmanSeaIce(space, cfg.dt, area_fraction=sea_fraction, t0=t0)
    else:
        ocean_params = get_slab_ocean_params_from_env()
        ocean_params.evolving = cfg.evolving_ocean
        ocean = SlabOcean(space, cfg.dt, area_fraction=sea_fraction, params=ocean_params, t0=t0)
        ice = SurfaceStub(space, "ice", area_fraction=space.zeros(), dt=cfg.dt, t0=t0)

    model_sims = {"atmos": atmos, "land": land, "ocean": ocean, "ice": ice}

    conservation_checks = None
    if cfg.energy_check and mode.conserves:
        conservation_checks = make_conservation_checks()

    output_dir = os.path.join(cfg.output_dir, mode.name, cfg.job_id)
    diagnostics_handler = None
    if cfg.diagnostics_enable:
        diagnostics_handler = DiagnosticsHandler(output_dir, cfg.job_id, space, date0, cfg.t_start, cfg.t_end)

    return CoupledSimulation(
        comms_ctx=SerialCommsContext(),
        dates=dates,
        boundary_space=space,
        fields=CouplerFields(space),
        config=cfg,
        conservation_checks=conservation_checks,
        time_span=(cfg.t_start, cfg.t_end),
        t=t0,
        dt_cpl=cfg.dt_cpl,
        model_sims=model_sims,
        mode=mode,
        callbacks=make_callbacks(cfg, dates, mode),
        turbulent_flux_scheme=scheme,
        diagnostics_handler=diagnostics_handler,
        output_dir=output_dir,
    )
