"""
Typed ports exchanged between the flux calculator and the component models.

Goal
- Give the per-column turbulent-flux computation explicit, typed inputs and
  outputs instead of ad-hoc dicts, so that the point function stays pure and
  can be unit-tested without any model or grid.

Notes
- Fields are scalars when used by the column-wise (partitioned) path and
  arrays on the boundary space when used by the vectorized (combined) path.
- Sign conventions: energy and moisture fluxes are positive upward (surface
  to atmosphere); momentum fluxes are the surface stresses rho*tau acting on
  the atmosphere.

Examples
--------
inputs = SurfaceFluxInputs(
    T_sfc=290.0, q_sfc=0.012, z0m=1e-3, z0b=1e-3, beta=1.0, rho_sfc=1.2,
    T_atm=288.0, q_atm=0.010, u=5.0, v=0.0, height=10.0,
)
fluxes = surface_fluxes_point(inputs)   # -> TurbulentFluxes
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

# ------------------------------
# Surface state + atmospheric interior at one column (inputs)
# ------------------------------


@dataclass
class SurfaceFluxInputs:
    T_sfc: float | np.ndarray  # surface temperature (K)
    q_sfc: float | np.ndarray  # surface specific humidity (kg/kg)
    z0m: float | np.ndarray  # roughness length for momentum (m)
    z0b: float | np.ndarray  # roughness length for scalars (m)
    beta: float | np.ndarray  # evaporative efficiency [0,1]
    rho_sfc: float | np.ndarray  # near-surface air density (kg m^-3)
    T_atm: float | np.ndarray  # air temperature of the first level (K)
    q_atm: float | np.ndarray  # specific humidity of the first level (kg/kg)
    u: float | np.ndarray  # zonal wind (m/s)
    v: float | np.ndarray  # meridional wind (m/s)
    height: float | np.ndarray  # height of the first level above the surface (m)


# ------------------------------
# Turbulent fluxes (outputs)
# ------------------------------


@dataclass
class TurbulentFluxes:
    F_turb_energy: float | np.ndarray  # sensible + latent heat (W m^-2), + upward
    F_turb_moisture: float | np.ndarray  # evaporation (kg m^-2 s^-1), + upward
    F_turb_rho_tau_xz: float | np.ndarray  # zonal momentum flux (kg m^-1 s^-2)
    F_turb_rho_tau_yz: float | np.ndarray  # meridional momentum flux (kg m^-1 s^-2)


# ------------------------------
# Atmospheric interior (what the surface sees of the atmosphere)
# ------------------------------


@dataclass
class AtmosInterior:
    T_int: np.ndarray  # air temperature (K)
    q_int: np.ndarray  # specific humidity (kg/kg)
    rho_int: np.ndarray  # air density (kg m^-3)
    u: np.ndarray  # zonal wind (m/s)
    v: np.ndarray  # meridional wind (m/s)
    height_int: np.ndarray | float  # height of the interior level (m)
