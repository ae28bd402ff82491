"""
sea_ice.py

Two sea-ice surfaces.

PrescribedIce (AMIP): a thermodynamic ice slab of fixed thickness h whose
extent is prescribed from sea-ice concentration. Heat is conducted through the
slab to the ocean below, held at the sea-water freezing point:

    rho_i c_i h dT/dt = F_rad - F_turb_energy - Lf P_snow + k (T_base - T) / h

and T is capped at the melting point. Not energy conserving (the ocean below
is an infinite reservoir), so it is only used in the open AMIP setup.

EisenmanSeaIce (slab planet): the Eisenman-Zhang single-column model with a
surface enthalpy e (J/m^2) relative to the freezing point that stores both
ocean mixed-layer heat and ice latent heat:

    e >= 0: open water, T_ml = T_f + e / (rho_w c_w h_ml)
    e <  0: ice of thickness h_i = -e / (rho_i Lf), with surface temperature
            T_s = min(T_f, T_f + F_in h_i / k),  F_in = F_rad - F_turb_energy
    de/dt = F_rad - F_turb_energy - Lf P_snow

Energy (J/m^2): e      Water (kg/m^2): accumulated P - E
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from pycoupler import constants as const
from pycoupler import humidity
from pycoupler.coupled.api import ModelKind

from .surface import FluxDrivenSurface


@dataclass
class PrescribedIceParams:
    thickness: float = 2.0  # m
    rho: float = const.RHO_ICE
    cp: float = const.CP_ICE
    k: float = const.K_ICE
    T_base: float = const.T_FREEZE_SEAWATER  # K, ocean below the ice
    albedo: float = 0.8
    z0m: float = 1e-3
    z0b: float = 1e-5
    p_sfc: float = const.P_REF


class PrescribedIce(FluxDrivenSurface):
    kind = ModelKind.ICE
    name = "ice"

    _STATE_ARRAYS = ("T", "water")

    def __init__(self, space, dt: float, area_fraction, params: PrescribedIceParams | None = None,
                 t0: float = 0.0) -> None:
        super().__init__(space, dt, area_fraction=area_fraction, t0=t0)
        self.params = params or PrescribedIceParams()
        self.T = space.full(self.params.T_base)
        self.water = space.zeros()

    def _initial_state(self) -> dict:
        return {"T": self.space.full(self.params.T_base), "water": self.space.zeros()}

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
            return p.rho * p.cp * p.thickness * self.T
        if name == "water":
            return self.water
        return super()._get_field(name)

    def _advance(self, dt: float) -> None:
        p = self.params
        conduction = p.k * (p.T_base - self.T) / p.thickness
        heating = self.net_energy_input - const.LF * self.inputs["snow_precipitation"] + conduction
        self.T += heating * dt / (p.rho * p.cp * p.thickness)
        np.minimum(self.T, const.T_FREEZE, out=self.T)
        self.water += self.net_water_input * dt


@dataclass
class EisenmanParams:
    h_ml: float = 20.0  # mixed layer depth (m)
    rho_w: float = const.RHO_SEAWATER
    cp_w: float = const.CP_SEAWATER
    rho_i: float = const.RHO_ICE
    k: float = const.K_ICE
    T_f: float = const.T_FREEZE
    albedo_ice: float = 0.6
    albedo_ocean: float = 0.06
    z0m_ice: float = 1e-3
    z0b_ice: float = 1e-5
    z0m_ocean: float = 5.8e-5
    z0b_ocean: float = 5.8e-5
    p_sfc: float = const.P_REF


class EisenmanSeaIce(FluxDrivenSurface):
    kind = ModelKind.ICE
    name = "ice"

    _STATE_ARRAYS = ("e", "water")

    def __init__(self, space, dt: float, area_fraction, params: EisenmanParams | None = None,
                 t0: float = 0.0) -> None:
        super().__init__(space, dt, area_fraction=area_fraction, t0=t0)
        self.params = params or EisenmanParams()
        init = self._initial_state()
        self.e = init["e"]
        self.water = init["water"]

    @property
    def ml_heat_capacity(self) -> float:
        p = self.params
        return p.rho_w * p.cp_w * p.h_ml

    def _initial_state(self) -> dict:
        # 5 K below freezing at the poles (ice), 30 K above at the equator
        phi = np.deg2rad(self.space.lat_mesh)
        T0 = self.params.T_f - 5.0 + 35.0 * np.cos(phi) ** 2
        return {
            "e": (self.ml_heat_capacity * (T0 - self.params.T_f)).astype(self.space.dtype),
            "water": self.space.zeros(),
        }

    @property
    def ice_mask(self) -> np.ndarray:
        return self.e < 0.0

    @property
    def ice_thickness(self) -> np.ndarray:
        return np.maximum(-self.e, 0.0) / (self.params.rho_i * const.LF)

    @property
    def surface_temperature(self) -> np.ndarray:
        p = self.params
        T_ml = p.T_f + np.maximum(self.e, 0.0) / self.ml_heat_capacity
        T_ice = np.minimum(p.T_f, p.T_f + self.net_energy_input * self.ice_thickness / p.k)
        return np.where(self.ice_mask, T_ice, T_ml)

    def _get_field(self, name: str):
        p = self.params
        ice = self.ice_mask
        if name == "surface_temperature":
            return self.surface_temperature
        if name == "roughness_momentum":
            return np.where(ice, p.z0m_ice, p.z0m_ocean)
        if name == "roughness_buoyancy":
            return np.where(ice, p.z0b_ice, p.z0b_ocean)
        if name in ("surface_direct_albedo", "surface_diffuse_albedo"):
            return np.where(ice, p.albedo_ice, p.albedo_ocean)
        if name == "beta":
            return self.space.ones()
        if name == "surface_humidity":
            return humidity.q_sat(self.surface_temperature, p.p_sfc)
        if name == "energy":
            return self.e
        if name == "water":
            return self.water
        return super()._get_field(name)

    def _advance(self, dt: float) -> None:
        self.e += (self.net_energy_input - const.LF * self.inputs["snow_precipitation"]) * dt
        self.water += self.net_water_input * dt
