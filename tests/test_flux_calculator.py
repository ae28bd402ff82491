from datetime import datetime

import numpy as np
import pytest

from pycoupler.coupled.api import SurfaceStub
from pycoupler.coupled.exceptions import ConfigurationError
from pycoupler.coupled.field_exchanger import import_combined_surface_fields
from pycoupler.coupled.flux_calculator import (
    TURB_FLUX_FIELDS,
    TurbulentFluxScheme,
    _bulk_kernel,
    bulk_fluxes,
    combined_turbulent_fluxes,
    parse_flux_scheme,
    partitioned_turbulent_fluxes,
    surface_fluxes_point,
    water_albedo,
    water_diffuse_albedo,
)
from pycoupler.coupled.ports import SurfaceFluxInputs
from pycoupler.coupled.state import CouplerFields
from pycoupler.jax_compat import ArrayBackend
from pycoupler.models.atmosphere import SlabAtmosphere


def _inputs(**overrides):
    values = dict(
        T_sfc=295.0, q_sfc=0.015, z0m=1e-3, z0b=1e-4, beta=1.0, rho_sfc=1.2,
        T_atm=290.0, q_atm=0.010, u=5.0, v=-2.0, height=10.0,
    )
    values.update(overrides)
    return SurfaceFluxInputs(**values)


def test_parse_flux_scheme_aliases_and_failure():
    assert parse_flux_scheme("CombinedStateFluxes") is TurbulentFluxScheme.COMBINED
    assert parse_flux_scheme("partitioned") is TurbulentFluxScheme.PARTITIONED
    assert parse_flux_scheme(TurbulentFluxScheme.PARTITIONED) is TurbulentFluxScheme.PARTITIONED
    with pytest.raises(ConfigurationError):
        parse_flux_scheme("MostlyCombined")


def test_point_fluxes_signs():
    flx = surface_fluxes_point(_inputs())
    # warm, moist surface under cooler, drier air: upward heat and moisture
    assert flx.F_turb_moisture > 0.0
    assert flx.F_turb_energy > 0.0
    # momentum flux opposes the wind
    assert flx.F_turb_rho_tau_xz < 0.0
    assert flx.F_turb_rho_tau_yz > 0.0

    dry = surface_fluxes_point(_inputs(beta=0.0))
    assert dry.F_turb_moisture == 0.0
    assert dry.F_turb_energy < flx.F_turb_energy


def test_bulk_fluxes_match_point_kernel():
    rng = np.random.default_rng(1)
    shape = (3, 5)
    inp = _inputs(
        T_sfc=rng.uniform(260.0, 300.0, shape),
        q_sfc=rng.uniform(0.001, 0.02, shape),
        z0m=rng.uniform(1e-4, 1e-2, shape),
        beta=rng.uniform(0.0, 1.0, shape),
        u=rng.normal(0.0, 5.0, shape),
    )
    bulk = bulk_fluxes(inp)
    for j, i in np.ndindex(*shape):
        point = surface_fluxes_point(_inputs(
            T_sfc=inp.T_sfc[j, i], q_sfc=inp.q_sfc[j, i], z0m=inp.z0m[j, i],
            beta=inp.beta[j, i], u=inp.u[j, i],
        ))
        for key in TURB_FLUX_FIELDS:
            assert np.isclose(getattr(bulk, key)[j, i], getattr(point, key), rtol=1e-10, atol=1e-14)


def _single_surface(space, scheme):
    atmos = SlabAtmosphere(space, 400.0, dt_rad=400.0, start_date=datetime(1979, 6, 1), flux_scheme=scheme)
    land = SurfaceStub(space, "land", cache={"surface_temperature": 300.0, "beta": 0.7},
                       area_fraction=space.ones())
    return {"atmos": atmos, "land": land}


def test_partitioned_equals_combined_for_one_surface(space):
    combined_sims = _single_surface(space, TurbulentFluxScheme.COMBINED)
    fields = CouplerFields(space)
    import_combined_surface_fields(fields, combined_sims, TurbulentFluxScheme.COMBINED)
    combined_turbulent_fluxes(combined_sims, fields, TurbulentFluxScheme.COMBINED)
    atmos = combined_sims["atmos"]

    part_sims = _single_surface(space, TurbulentFluxScheme.PARTITIONED)
    part_fields = CouplerFields(space)
    import_combined_surface_fields(part_fields, part_sims, TurbulentFluxScheme.PARTITIONED)
    partitioned_turbulent_fluxes(part_sims, part_fields, space)

    assert np.allclose(part_fields["F_turb_energy"], atmos.F_turb_energy, rtol=1e-10)
    assert np.allclose(part_fields["F_turb_moisture"], atmos.F_turb_moisture, rtol=1e-10)
    assert np.allclose(part_fields["F_turb_rho_tau_xz"], atmos.F_turb_tau_xz, rtol=1e-10)


def test_combined_turbulent_fluxes_rejects_partitioned(space):
    sims = _single_surface(space, TurbulentFluxScheme.COMBINED)
    with pytest.raises(ConfigurationError):
        combined_turbulent_fluxes(sims, CouplerFields(space), TurbulentFluxScheme.PARTITIONED)


def test_partitioned_aggregation_is_fraction_weighted_and_gated(space):
    atmos = SlabAtmosphere(space, 400.0, dt_rad=400.0, start_date=datetime(1979, 6, 1),
                           flux_scheme=TurbulentFluxScheme.PARTITIONED)
    land_frac = space.zeros()
    land_frac[0, :] = 1.0
    land_frac[1, :] = 0.4
    land = SurfaceStub(space, "land", cache={"surface_temperature": 305.0}, area_fraction=land_frac)
    ocean = SurfaceStub(space, "ocean", cache={"surface_temperature": 285.0, "roughness_momentum": 5.8e-5},
                        area_fraction=1.0 - land_frac)
    sims = {"atmos": atmos, "land": land, "ocean": ocean}

    fields = CouplerFields(space)
    fields["F_turb_energy"] = 1.0e6  # must be reset before aggregation
    per_surface = partitioned_turbulent_fluxes(sims, fields, space)

    expected = land_frac * per_surface["land"]["F_turb_energy"] + (1.0 - land_frac) * per_surface["ocean"]["F_turb_energy"]
    assert np.allclose(fields["F_turb_energy"], expected, rtol=1e-12)
    # dormant columns are never evaluated
    assert np.all(per_surface["ocean"]["F_turb_energy"][0, :] == 0.0)
    assert np.all(per_surface["land"]["F_turb_energy"][2:, :] == 0.0)
    assert np.all(per_surface["land"]["F_turb_energy"][0, :] != 0.0)
    # the warmer land surface loses more heat where both are present
    assert np.all(per_surface["land"]["F_turb_energy"][1, :] > per_surface["ocean"]["F_turb_energy"][1, :])


def test_water_albedo_profile():
    mu = np.array([0.05, 0.3, 0.6, 1.0])
    alpha = water_albedo(mu)
    assert np.all(np.diff(alpha) < 0.0)
    assert np.isclose(alpha[-1], 0.026 / 1.065)
    assert np.all((alpha >= 0.0) & (alpha <= 1.0))
    # night side: clipped to mu = 0
    assert np.isclose(water_albedo(-0.5), 0.026 / 0.065 - 0.15 * 0.1 * 0.5)


def test_water_albedo_drops_with_wind():
    mu = 0.2
    calm, breeze, gale = water_albedo(mu, [0.0, 5.0, 30.0])
    assert np.isclose(calm, water_albedo(mu))
    assert calm > breeze > gale
    # overhead sun is unaffected by the tilt of the facets
    assert np.isclose(water_albedo(1.0, 30.0), water_albedo(1.0))
    assert np.isclose(water_diffuse_albedo(0.0), 0.06)
    assert 0.05 < water_diffuse_albedo(30.0) < 0.06


def test_jax_disabled_by_default():
    from pycoupler import jax_compat

    assert jax_compat.is_enabled() is False
    numpy_backend = jax_compat.default_backend()
    assert numpy_backend.xp is np
    assert numpy_backend.kernel(_bulk_kernel) is numpy_backend.kernel(_bulk_kernel)
    assert ArrayBackend.detect(use_jax=False, force=True).enabled is False


def test_forced_jax_bulk_fluxes_match_numpy():
    pytest.importorskip("jax")
    jax_backend = ArrayBackend.detect(use_jax=True, force=True)
    assert jax_backend.enabled

    rng = np.random.default_rng(7)
    shape = (4, 6)
    inp = _inputs(
        T_sfc=rng.uniform(270.0, 305.0, shape),
        q_sfc=rng.uniform(0.002, 0.02, shape),
        z0m=rng.uniform(1e-4, 1e-2, shape),
        u=rng.normal(0.0, 6.0, shape),
        v=rng.normal(0.0, 3.0, shape),
    )
    reference = bulk_fluxes(inp)
    jitted = bulk_fluxes(inp, backend=jax_backend)
    tolerances = {
        "F_turb_energy": 1e-2,
        "F_turb_moisture": 1e-8,
        "F_turb_rho_tau_xz": 1e-5,
        "F_turb_rho_tau_yz": 1e-5,
    }
    for key, atol in tolerances.items():
        value = getattr(jitted, key)
        assert isinstance(value, np.ndarray) and value.shape == shape
        # single precision unless jax_enable_x64 is set
        assert np.allclose(value, getattr(reference, key), rtol=1e-4, atol=atol), key
