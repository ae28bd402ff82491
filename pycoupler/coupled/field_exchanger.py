"""
Field exchanger: moves boundary fields between the coupler and the models.

Operations
- import_combined_surface_fields: combine the surfaces' exported state into
  the coupler fields (and derive the surface air density).
- import_atmos_fields: copy the atmosphere's fluxes into the coupler fields.
- update_model_sims: push coupler fields into every model, masked by each
  surface's own area fraction.
- step_model_sims / reinit_model_sims: advance or reset all models.

Notes
- Imports never change model state, so repeated imports without stepping in
  between give identical coupler fields.
- The coupler is the only writer of surface area fractions (see
  regridder.update_surface_fractions); the models' copies are read here.
"""

from __future__ import annotations

from typing import Any, Dict

import numpy as np

from .api import AtmosModelSimulation, surface_simulations
from .flux_calculator import (
    TurbulentFluxScheme,
    calculate_surface_air_density,
    parse_flux_scheme,
)
from .regridder import binary_mask, check_fraction_sum, combine_surfaces, dummy_remap, remap

# coupler field -> surface model field
SURFACE_STATE_FIELDS = {
    "T_S": "surface_temperature",
    "z0m_S": "roughness_momentum",
    "z0b_S": "roughness_buoyancy",
    "surface_direct_albedo": "surface_direct_albedo",
    "surface_diffuse_albedo": "surface_diffuse_albedo",
    "beta": "beta",
    "q_sfc": "surface_humidity",
}

# coupler field -> atmosphere export
ATMOS_FLUX_FIELDS = {
    "F_radiative": "radiative_energy_flux_sfc",
    "P_liq": "liquid_precipitation",
    "P_snow": "snow_precipitation",
    "radiative_energy_flux_toa": "radiative_energy_flux_toa",
}

ATMOS_TURB_FIELDS = {
    "F_turb_energy": "turbulent_energy_flux",
    "F_turb_moisture": "turbulent_moisture_flux",
    "F_turb_rho_tau_xz": "turbulent_momentum_flux_xz",
    "F_turb_rho_tau_yz": "turbulent_momentum_flux_yz",
}

# coupler field -> surface model input (always pushed, masked)
SURFACE_INPUT_FIELDS = {
    "rho_sfc": "air_density",
    "F_radiative": "radiative_energy_flux_sfc",
    "P_liq": "liquid_precipitation",
    "P_snow": "snow_precipitation",
}

# coupler field -> surface model input (combined scheme only)
SURFACE_TURB_INPUT_FIELDS = {
    "F_turb_energy": "turbulent_energy_flux",
    "F_turb_moisture": "turbulent_moisture_flux",
}


def import_combined_surface_fields(fields, model_sims: Dict[str, Any], scheme=None) -> None:
    """
    Combine every surface-exported quantity (T, z0m, z0b, albedos, beta,
    q_sfc) across the surface models with combine_surfaces, then derive the
    surface air density from the atmosphere and the combined T_S.

    Raises FractionSumError if the surface fractions do not sum to 1.
    """
    check_fraction_sum(model_sims)
    surfaces = surface_simulations(model_sims)
    fractions = {name: sim.get_field("area_fraction") for name, sim in surfaces.items()}
    for coupler_name, model_name in SURFACE_STATE_FIELDS.items():
        values = {name: sim.get_field(model_name) for name, sim in surfaces.items()}
        combine_surfaces(fields[coupler_name], fractions, values)
    fields["rho_sfc"] = calculate_surface_air_density(model_sims["atmos"], fields["T_S"])


def _import_field(dest: np.ndarray, value, source_space, boundary_space) -> None:
    if np.shape(value) == () or np.shape(value) == dest.shape:
        dummy_remap(dest, value)
    else:
        dummy_remap(dest, remap(value, source_space, boundary_space))


def import_atmos_fields(fields, model_sims: Dict[str, Any], boundary_space, scheme) -> None:
    """
    Copy the atmosphere's surface radiation, TOA radiation and precipitation
    (and its turbulent fluxes under the combined scheme) into the coupler
    fields. A missing atmosphere export raises MissingFieldError.
    """
    atmos = model_sims["atmos"]
    source_space = getattr(atmos, "space", boundary_space)
    if parse_flux_scheme(scheme) is TurbulentFluxScheme.COMBINED:
        for coupler_name, atmos_name in ATMOS_TURB_FIELDS.items():
            _import_field(fields[coupler_name], atmos.get_field(atmos_name), source_space, boundary_space)
    for coupler_name, atmos_name in ATMOS_FLUX_FIELDS.items():
        _import_field(fields[coupler_name], atmos.get_field(atmos_name), source_space, boundary_space)
    fields["P_net"] = fields["P_liq"] + fields["P_snow"] - fields["F_turb_moisture"]


def update_model_sims(model_sims: Dict[str, Any], fields, scheme) -> None:
    """
    Push the coupler fields into each model.

    - atmosphere: combined surface temperature and albedos, plus the
      aggregated turbulent fluxes under the partitioned scheme;
    - surfaces: air density, surface radiation and precipitation (plus the
      turbulent fluxes under the combined scheme), each multiplied by the
      surface's binary area-fraction mask.
    """
    partitioned = parse_flux_scheme(scheme) is TurbulentFluxScheme.PARTITIONED
    for sim in model_sims.values():
        if isinstance(sim, AtmosModelSimulation):
            sim.update_field("surface_temperature", fields["T_S"])
            sim.update_field("surface_direct_albedo", fields["surface_direct_albedo"])
            sim.update_field("surface_diffuse_albedo", fields["surface_diffuse_albedo"])
            if partitioned:
                for coupler_name, atmos_name in ATMOS_TURB_FIELDS.items():
                    sim.update_field(atmos_name, fields[coupler_name])
            continue
        mask = binary_mask(sim.get_field("area_fraction"))
        for coupler_name, model_name in SURFACE_INPUT_FIELDS.items():
            sim.update_field(model_name, fields[coupler_name] * mask)
        if not partitioned:
            for coupler_name, model_name in SURFACE_TURB_INPUT_FIELDS.items():
                sim.update_field(model_name, fields[coupler_name] * mask)


def step_model_sims(model_sims: Dict[str, Any], t: float) -> None:
    """Advance every model to time t (fixed order: the mapping's order)."""
    for sim in model_sims.values():
        sim.step(t)


def reinit_model_sims(model_sims: Dict[str, Any]) -> None:
    """Reset every model's prognostic state and clock to its initial condition."""
    for sim in model_sims.values():
        sim.reinit()
