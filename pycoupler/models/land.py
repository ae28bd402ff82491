"""
land.py

Bucket land model.

Prognostics (per column):
- T: surface/soil temperature (K), heat capacity C (J m^-2 K^-1)
- W: bucket water (kg/m^2), field capacity W_f
- SWE: snow water equivalent (kg/m^2)
- runoff: cumulative runoff (kg/m^2), excess water above W_f

Per substep dt (fluxes from the coupler, held over the coupling step):
    C dT/dt = F_rad - F_turb_energy
    dW/dt   = P_liq - E
    dSWE/dt = P_snow
then snow melts with the heat above freezing (melt = min(SWE, C (T - T_f) / Lf)),
and any water above field capacity becomes runoff.

Exports:
- beta = clip(W / (0.75 W_f), 0, 1)
- surface_humidity = q_sat(T, p_sfc)
- albedo = (1 - s) * albedo_bare + s * albedo_snow, s = clip(SWE / SWE_c, 0, 1)

Energy (J/m^2): C T - Lf SWE      Water (kg/m^2): W + SWE + runoff
"""

from __future__ import annotations

import os
from dataclasses import dataclass

import numpy as np

from pycoupler import constants as const
from pycoupler import humidity
from pycoupler.coupled.api import ModelKind

from .surface import FluxDrivenSurface


@dataclass
class BucketParams:
    heat_capacity: float = 4.0e6  # J m^-2 K^-1
    W_f: float = 150.0  # field capacity (kg/m^2)
    swe_crit: float = 200.0  # SWE of full snow cover (kg/m^2), 0.2 m of water
    albedo_bare: float = 0.38
    albedo_snow: float = 0.8
    z0m: float = 1e-3
    z0b: float = 1e-3
    p_sfc: float = const.P_REF
    W_init_frac: float = 0.5  # initial bucket filling relative to W_f


def get_bucket_params_from_env() -> BucketParams:
    def _f(env: str, default: float) -> float:
        try:
            return float(os.getenv(env, str(default)))
        except Exception:
            return default
    return BucketParams(
        heat_capacity=_f("CPL_LAND_HEAT_CAPACITY", 4.0e6),
        W_f=_f("CPL_LAND_W_F", 150.0),
        albedo_bare=_f("CPL_LAND_ALBEDO", 0.38),
        albedo_snow=_f("CPL_LAND_SNOW_ALBEDO", 0.8),
    )


class BucketLand(FluxDrivenSurface):
    kind = ModelKind.LAND
    name = "land"

    _STATE_ARRAYS = ("T", "W", "SWE", "runoff")

    def __init__(self, space, dt: float, area_fraction, params: BucketParams | None = None, t0: float = 0.0) -> None:
        super().__init__(space, dt, area_fraction=area_fraction, t0=t0)
        self.params = params or BucketParams()
        init = self._initial_state()
        self.T = init["T"]
        self.W = init["W"]
        self.SWE = init["SWE"]
        self.runoff = init["runoff"]

    def _initial_state(self) -> dict:
        phi = np.deg2rad(self.space.lat_mesh)
        return {
            "T": (265.0 + 35.0 * np.cos(phi) ** 2).astype(self.space.dtype),
            "W": self.space.full(self.params.W_init_frac * self.params.W_f),
            "SWE": self.space.zeros(),
            "runoff": self.space.zeros(),
        }

    # ---- exports ----

    @property
    def beta(self) -> np.ndarray:
        return np.clip(self.W / (0.75 * self.params.W_f), 0.0, 1.0)

    @property
    def albedo(self) -> np.ndarray:
        s = np.clip(self.SWE / self.params.swe_crit, 0.0, 1.0)
        return (1.0 - s) * self.params.albedo_bare + s * self.params.albedo_snow

    def _get_field(self, name: str):
        p = self.params
        if name == "surface_temperature":
            return self.T
        if name == "roughness_momentum":
            return self.space.full(p.z0m)
        if name == "roughness_buoyancy":
            return self.space.full(p.z0b)
        if name in ("surface_direct_albedo", "surface_diffuse_albedo"):
            return self.albedo
        if name == "beta":
            return self.beta
        if name == "surface_humidity":
            return humidity.q_sat(self.T, p.p_sfc)
        if name == "energy":
            return p.heat_capacity * self.T - const.LF * self.SWE
        if name == "water":
            return self.W + self.SWE + self.runoff
        return super()._get_field(name)

    # ---- time stepping ----

    def _advance(self, dt: float) -> None:
        p = self.params
        self.T += self.net_energy_input * dt / p.heat_capacity
        self.W += (self.inputs["liquid_precipitation"] - self.inputs["turbulent_moisture_flux"]) * dt
        self.SWE += self.inputs["snow_precipitation"] * dt

        melt = np.minimum(self.SWE, np.maximum(p.heat_capacity * (self.T - const.T_FREEZE) / const.LF, 0.0))
        self.T -= const.LF * melt / p.heat_capacity
        self.SWE -= melt
        self.W += melt

        excess = np.maximum(self.W - p.W_f, 0.0)
        self.W -= excess
        self.runoff += excess
