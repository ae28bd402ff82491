"""
ocean.py

Slab (mixed-layer) ocean.

    rho c h dT/dt = F_rad - F_turb_energy - Lf P_snow     (if evolving)
    d(water)/dt   = P_liq + P_snow - E

The snowfall term melts incoming snow with ocean heat. With evolving=False
the temperature is held at its initial (prescribed) value.

Energy (J/m^2): rho c h T      Water (kg/m^2): accumulated P - E
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
class SlabOceanParams:
    depth: float = 20.0  # mixed layer depth (m)
    rho: float = const.RHO_SEAWATER
    cp: float = const.CP_SEAWATER
    albedo: float = 0.06
    z0m: float = 5.8e-5
    z0b: float = 5.8e-5
    p_sfc: float = const.P_REF
    evolving: bool = True


def get_slab_ocean_params_from_env() -> SlabOceanParams:
    def _f(env, default):
        try:
            return float(os.getenv(env, str(default)))
        except Exception:
            return default
    return SlabOceanParams(
        depth=_f("CPL_OCEAN_DEPTH", 20.0),
        albedo=_f("CPL_OCEAN_ALBEDO", 0.06),
    )


def sst_climatology(space) -> np.ndarray:
    """Zonally symmetric SST profile (K): 271.35 K at the poles, 302.15 K at the equator."""
    phi = np.deg2rad(space.lat_mesh)
    return (271.35 + 30.8 * np.cos(phi) ** 2).astype(space.dtype)


class SlabOcean(FluxDrivenSurface):
    kind = ModelKind.OCEAN
    name = "ocean"

    _STATE_ARRAYS = ("T", "water")

    def __init__(self, space, dt: float, area_fraction, params: SlabOceanParams | None = None,
                 T_init=None, t0: float = 0.0) -> None:
        super().__init__(space, dt, area_fraction=area_fraction, t0=t0)
        self.params = params or SlabOceanParams()
        self.T_init = sst_climatology(space) if T_init is None else np.asarray(T_init, dtype=space.dtype) * space.ones()
        self.T = self.T_init.copy()
        self.water = space.zeros()

    @property
    def heat_capacity(self) -> float:
        return self.params.rho * self.params.cp * self.params.depth

    def _initial_state(self) -> dict:
        return {"T": self.T_init, "water": self.space.zeros()}

    def _get_field(self, name: str):
        p = self.params
        if name == "surface_temperature":
            return self.T
        if name == "roughness_momentum":
            return self.space.full(p.z0m)
        if name == "roughness_buoyancy":
            return self.space.full(p.z0b)
        if name in ("surface_direct_albedo", "surface_diffuse_albedo"):
            return self.space.full(p.albedo)
        if name == "beta":
            return self.space.ones()
        if name == "surface_humidity":
            return humidity.q_sat(self.T, p.p_sfc)
        if name == "energy":
            return self.heat_capacity * self.T
        if name == "water":
            return self.water
        return super()._get_field(name)

    def _update_field(self, name: str, value) -> bool:
        if name == "surface_temperature":
            self.T[...] = value
            return True
        return super()._update_field(name, value)

    def _advance(self, dt: float) -> None:
        if self.params.evolving:
            heating = self.net_energy_input - const.LF * self.inputs["snow_precipitation"]
            self.T += heating * dt / self.heat_capacity
        self.water += self.net_water_input * dt
