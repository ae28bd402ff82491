"""
Flux calculator: turbulent surface fluxes under a fixed flux scheme.

Purpose
- Combined scheme: the atmosphere computes one set of turbulent fluxes from
  the combined (area-weighted) surface state held in the coupler fields.
- Partitioned scheme: fluxes are computed per surface model with a pure
  column function, handed to each surface, and their area-fraction-weighted
  sum is stored in the coupler fields for the atmosphere.

Design
- The scheme is an enum parsed once at startup; unknown tags raise
  ConfigurationError (never per step).
- surface_fluxes_point is the per-column kernel (scalars in, scalars out, no
  grid); bulk_fluxes is its vectorized twin used by the combined path.
- Bulk formulas use neutral log-law exchange coefficients:
    C_D = (k / ln(z/z0m))^2,  C_H = k^2 / (ln(z/z0m) ln(z/z0b))
    SH  = rho cp C_H |U| (T_sfc - theta_atm)
    E   = rho C_H |U| beta (q_sfc - q_atm)
    F_turb_energy = SH + Lv E,  rho tau = -rho C_D |U| (u, v)
  with theta_atm = T_atm + g z / cp and |U| including a gustiness floor.

Notes
- Stability corrections (Monin-Obukhov) are not applied; only the dispatch and
  the aggregation are part of the coupler's contract.
"""

from __future__ import annotations

import enum
import math
from typing import Any, Dict, Optional

import numpy as np

from pycoupler import constants as const
from pycoupler.jax_compat import ArrayBackend, default_backend

from .api import surface_simulations
from .exceptions import ConfigurationError
from .ports import AtmosInterior, SurfaceFluxInputs, TurbulentFluxes
from .regridder import binary_mask

GUSTINESS = 1.0  # m/s, floor added to the wind speed
Z0_MIN = 1e-6  # m, smallest roughness length used in the log law

TURB_FLUX_FIELDS = ("F_turb_energy", "F_turb_moisture", "F_turb_rho_tau_xz", "F_turb_rho_tau_yz")

# coupler field -> name understood by the models' update_field
SURFACE_FLUX_TARGETS = {
    "F_turb_energy": "turbulent_energy_flux",
    "F_turb_moisture": "turbulent_moisture_flux",
}


class TurbulentFluxScheme(enum.Enum):
    COMBINED = "CombinedStateFluxes"
    PARTITIONED = "PartitionedStateFluxes"


_SCHEME_ALIASES = {
    "combined": TurbulentFluxScheme.COMBINED,
    "combinedstatefluxes": TurbulentFluxScheme.COMBINED,
    "combinedstatefluxesmost": TurbulentFluxScheme.COMBINED,
    "partitioned": TurbulentFluxScheme.PARTITIONED,
    "partitionedstatefluxes": TurbulentFluxScheme.PARTITIONED,
}


def parse_flux_scheme(tag: Any) -> TurbulentFluxScheme:
    """Map a config tag onto the scheme enum; fail fast on anything else."""
    if isinstance(tag, TurbulentFluxScheme):
        return tag
    key = str(tag).strip().lower()
    if key not in _SCHEME_ALIASES:
        raise ConfigurationError(
            f"turb_flux_partition must be CombinedStateFluxes or PartitionedStateFluxes, got {tag!r}"
        )
    return _SCHEME_ALIASES[key]


# ------------------------------
# Pure kernels
# ------------------------------


def surface_air_density(T_int, rho_int, T_sfc):
    """
    Adiabatic extrapolation of the interior air density to the surface:
        rho_sfc = rho_int * (T_sfc / T_int)^(cv / R)
    """
    return rho_int * (T_sfc / T_int) ** (const.CV_D / const.R_D)


def surface_fluxes_point(inp: SurfaceFluxInputs, gustiness: float = GUSTINESS) -> TurbulentFluxes:
    """Turbulent fluxes at one column (all inputs scalars)."""
    speed = math.sqrt(float(inp.u) ** 2 + float(inp.v) ** 2 + gustiness ** 2)
    z = float(inp.height)
    lz_m = math.log(max(z / max(float(inp.z0m), Z0_MIN), 1.0 + 1e-6))
    lz_b = math.log(max(z / max(float(inp.z0b), Z0_MIN), 1.0 + 1e-6))
    c_d = (const.KARMAN / lz_m) ** 2
    c_h = const.KARMAN ** 2 / (lz_m * lz_b)
    rho = float(inp.rho_sfc)
    theta_atm = float(inp.T_atm) + const.GRAV * z / const.CP_D
    shf = rho * const.CP_D * c_h * speed * (float(inp.T_sfc) - theta_atm)
    evap = rho * c_h * speed * float(inp.beta) * (float(inp.q_sfc) - float(inp.q_atm))
    return TurbulentFluxes(
        F_turb_energy=shf + const.LV * evap,
        F_turb_moisture=evap,
        F_turb_rho_tau_xz=-rho * c_d * speed * float(inp.u),
        F_turb_rho_tau_yz=-rho * c_d * speed * float(inp.v),
    )


def _bulk_kernel(xp, gustiness, T_sfc, q_sfc, z0m, z0b, beta, rho, T_atm, q_atm, u, v, z):
    speed = xp.sqrt(u ** 2 + v ** 2 + gustiness ** 2)
    lz_m = xp.log(xp.maximum(z / xp.maximum(z0m, Z0_MIN), 1.0 + 1e-6))
    lz_b = xp.log(xp.maximum(z / xp.maximum(z0b, Z0_MIN), 1.0 + 1e-6))
    c_d = (const.KARMAN / lz_m) ** 2
    c_h = const.KARMAN ** 2 / (lz_m * lz_b)
    theta_atm = T_atm + const.GRAV * z / const.CP_D
    shf = rho * const.CP_D * c_h * speed * (T_sfc - theta_atm)
    evap = rho * c_h * speed * beta * (q_sfc - q_atm)
    return shf + const.LV * evap, evap, -rho * c_d * speed * u, -rho * c_d * speed * v


def bulk_fluxes(inp: SurfaceFluxInputs, gustiness: float = GUSTINESS, backend: Optional[ArrayBackend] = None) -> TurbulentFluxes:
    """Vectorized surface_fluxes_point over whole fields (jitted when the JAX backend is active)."""
    backend = backend or default_backend()
    args = [
        backend.xp.asarray(a)
        for a in (inp.T_sfc, inp.q_sfc, inp.z0m, inp.z0b, inp.beta, inp.rho_sfc,
                  inp.T_atm, inp.q_atm, inp.u, inp.v, inp.height)
    ]
    energy, moisture, tau_x, tau_y = backend.kernel(_bulk_kernel)(gustiness, *args)
    return TurbulentFluxes(
        F_turb_energy=backend.to_numpy(energy),
        F_turb_moisture=backend.to_numpy(moisture),
        F_turb_rho_tau_xz=backend.to_numpy(tau_x),
        F_turb_rho_tau_yz=backend.to_numpy(tau_y),
    )


def combined_state_fluxes(fields, interior: AtmosInterior) -> TurbulentFluxes:
    """Fluxes from the combined surface state in the coupler fields."""
    inp = SurfaceFluxInputs(
        T_sfc=fields["T_S"],
        q_sfc=fields["q_sfc"],
        z0m=fields["z0m_S"],
        z0b=fields["z0b_S"],
        beta=fields["beta"],
        rho_sfc=fields["rho_sfc"],
        T_atm=interior.T_int,
        q_atm=interior.q_int,
        u=interior.u,
        v=interior.v,
        height=interior.height_int,
    )
    return bulk_fluxes(inp)


# ------------------------------
# Coupler-level operations
# ------------------------------


def atmos_interior(atmos_sim) -> AtmosInterior:
    return AtmosInterior(
        T_int=atmos_sim.get_field("air_temperature"),
        q_int=atmos_sim.get_field("specific_humidity"),
        rho_int=atmos_sim.get_field("air_density"),
        u=atmos_sim.get_field("zonal_wind"),
        v=atmos_sim.get_field("meridional_wind"),
        height_int=atmos_sim.get_field("height_int"),
    )


def calculate_surface_air_density(atmos_sim, T_S) -> np.ndarray:
    """Surface air density from the atmosphere's interior state and T_S."""
    return surface_air_density(
        atmos_sim.get_field("air_temperature"), atmos_sim.get_field("air_density"), np.asarray(T_S)
    )


def combined_turbulent_fluxes(model_sims: Dict[str, Any], fields, scheme) -> None:
    """
    Combined scheme: hand the combined surface state to the atmosphere, which
    computes (and caches) one set of turbulent fluxes from it.
    """
    if parse_flux_scheme(scheme) is not TurbulentFluxScheme.COMBINED:
        raise ConfigurationError("combined_turbulent_fluxes called with a non-combined flux scheme")
    model_sims["atmos"].update_surface_conditions(fields)


def partitioned_turbulent_fluxes(model_sims: Dict[str, Any], fields, boundary_space) -> Dict[str, Dict[str, np.ndarray]]:
    """
    Partitioned scheme.

    1. Reset the coupler's turbulent flux fields to zero.
    2. For every column and every surface whose area-fraction mask is set,
       evaluate surface_fluxes_point with that surface's own state.
    3. Give each surface its fluxes; accumulate sum_i f_i * mask_i * F_i in
       the coupler fields.

    Returns the per-surface flux fields (for inspection and tests).
    """
    atmos = model_sims["atmos"]
    surfaces = surface_simulations(model_sims)
    interior = atmos_interior(atmos)
    height = np.broadcast_to(np.asarray(interior.height_int, dtype=float), boundary_space.shape)

    fields.reset(*TURB_FLUX_FIELDS)

    state = {}
    for name, sim in surfaces.items():
        frac = np.asarray(sim.get_field("area_fraction"))
        state[name] = {
            "fraction": frac,
            "mask": binary_mask(frac),
            "T": np.asarray(sim.get_field("surface_temperature")),
            "q": np.asarray(sim.get_field("surface_humidity")),
            "z0m": np.asarray(sim.get_field("roughness_momentum")),
            "z0b": np.asarray(sim.get_field("roughness_buoyancy")),
            "beta": np.asarray(sim.get_field("beta")),
        }
    per_surface = {name: {k: boundary_space.zeros() for k in TURB_FLUX_FIELDS} for name in surfaces}

    for colidx in boundary_space.columns():
        T_int = interior.T_int[colidx]
        rho_int = interior.rho_int[colidx]
        for name, st in state.items():
            if st["mask"][colidx] == 0:
                continue
            T_sfc = st["T"][colidx]
            inp = SurfaceFluxInputs(
                T_sfc=T_sfc,
                q_sfc=st["q"][colidx],
                z0m=st["z0m"][colidx],
                z0b=st["z0b"][colidx],
                beta=st["beta"][colidx],
                rho_sfc=surface_air_density(T_int, rho_int, T_sfc),
                T_atm=T_int,
                q_atm=interior.q_int[colidx],
                u=interior.u[colidx],
                v=interior.v[colidx],
                height=height[colidx],
            )
            flx = surface_fluxes_point(inp)
            weight = st["fraction"][colidx] * st["mask"][colidx]
            for key in TURB_FLUX_FIELDS:
                value = getattr(flx, key)
                per_surface[name][key][colidx] = value
                fields[key][colidx] += weight * value

    for name, sim in surfaces.items():
        for key, target in SURFACE_FLUX_TARGETS.items():
            sim.update_field(target, per_surface[name][key])
    return per_surface


def compute_turbulent_fluxes(cs) -> None:
    """Scheme dispatch used by the driver (bootstrap step 4 and loop step g)."""
    scheme = parse_flux_scheme(cs.turbulent_flux_scheme)
    if scheme is TurbulentFluxScheme.COMBINED:
        combined_turbulent_fluxes(cs.model_sims, cs.fields, scheme)
    else:
        partitioned_turbulent_fluxes(cs.model_sims, cs.fields, cs.boundary_space)
        # the atmosphere's radiation needs the surface temperature it did not diagnose
        cs.atmos_sim.update_surface_conditions(cs.fields)


# ------------------------------
# Water albedo
# ------------------------------


WATER_DIFFUSE_ALBEDO = 0.06
WAVE_SLOPE_PER_WIND = 0.00512  # s/m


def wave_roughness(wind_speed) -> np.ndarray:
    """
    Wind-driven part of the rms sea-surface slope (Cox and Munk 1954):
        sigma^2 = 0.003 + 0.00512 |U|
    Only the wind term is returned, so a calm sea gives 0.
    """
    speed = np.abs(np.asarray(wind_speed, dtype=float))
    return np.sqrt(WAVE_SLOPE_PER_WIND * speed)


def water_albedo(cos_zenith, wind_speed=0.0) -> np.ndarray:
    """
    Direct-beam albedo of open water (Briegleb et al. 1986):
        a(mu) = 0.026 / (mu^1.7 + 0.065) + 0.15 (mu - 0.1)(mu - 0.5)(mu - 1)
    Waves tilt the facets toward the sun, so a(mu) is evaluated at
        mu_eff = (mu + r) / (1 + r),  r = wave_roughness(wind_speed)
    which flattens the low-sun specular peak as the wind picks up.
    """
    mu = np.clip(np.asarray(cos_zenith, dtype=float), 0.0, 1.0)
    r = wave_roughness(wind_speed)
    mu = (mu + r) / (1.0 + r)
    alpha = 0.026 / (mu ** 1.7 + 0.065) + 0.15 * (mu - 0.1) * (mu - 0.5) * (mu - 1.0)
    return np.clip(alpha, 0.0, 1.0)


def water_diffuse_albedo(wind_speed=0.0) -> np.ndarray:
    """Diffuse albedo of open water; rough seas scatter a little less back up."""
    return np.clip(WATER_DIFFUSE_ALBEDO * (1.0 - 0.1 * wave_roughness(wind_speed)), 0.0, 1.0)


def water_albedo_from_atmosphere(cs) -> None:
    """Callback: refresh the ocean's direct/diffuse albedo from the atmosphere's sun angle and wind."""
    ocean = cs.model_sims.get("ocean")
    if ocean is None:
        return
    atmos = cs.atmos_sim
    mu = atmos.get_field("cos_zenith")
    speed = np.hypot(atmos.get_field("zonal_wind"), atmos.get_field("meridional_wind"))
    ocean.update_field("surface_direct_albedo", water_albedo(mu, speed))
    ocean.update_field("surface_diffuse_albedo", water_diffuse_albedo(speed))
