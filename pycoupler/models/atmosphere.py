"""
atmosphere.py

Single-layer column atmosphere coupled through the component-model API.

Prognostics (per column):
- T: air temperature (K)
- q: specific humidity (kg/kg)
Prescribed:
- u, v: near-surface wind (m/s), u = u0 * cos(lat)
- surface pressure p_sfc, so the column air mass is M = p_sfc / g (kg/m^2)

Fluxes are held constant over one coupling interval ("radiation timestep" =
coupling interval). They are refreshed when the coupler hands over new surface
conditions (update_surface_conditions) and on reinit:
- Shortwave: I = S0 * mean(cos zenith over the coming interval)
    SW_atm = I * A,  SW_sfc = I * (1 - A) * (1 - alpha)
- Longwave (grey, single layer):
    eps = clip(eps0 + k_co2 * ln(CO2 / CO2_ref), 0.05, 1)
    U = sigma T_S^4,  B = sigma T^4
    F_rad_sfc = SW_sfc + eps B - U             (net downward at the surface)
    R_atm     = SW_atm + eps U - 2 eps B       (net radiative heating of the column)
    TOA_up    = I (1 - A) alpha + (1 - eps) U + eps B - I   (net upward at TOA)
  so that R_atm + F_rad_sfc = -TOA_up.
- Turbulent fluxes: combined scheme -> computed here from the combined surface
  state; partitioned scheme -> received from the coupler.

Tendencies within a substep dt:
    cp M dT/dt = R_atm + SH + Lv P_liq + (Lv + Lf) P_snow
    M dq/dt    = E - P
with SH = F_turb_energy - Lv E. Condensation relaxes supersaturation over
tau_cond and falls as snow when T < 273.15 K. Precipitation made during a
coupling step is exported (as a mean rate) at the end of that step and counts
as atmospheric water until the surfaces have received it.

Energy (J/m^2): cp M T + Lv M q - Lf * pending snow
Water (kg/m^2): M q + pending precipitation

Environment parameters (defaults):
    CPL_ATM_U0=5.0, CPL_ATM_SW_ABS=0.2, CPL_ATM_LW_EPS0=0.75,
    CPL_ATM_LW_KCO2=0.02, CPL_ATM_TAU_COND=3600, CPL_ATM_RH0=0.6
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timedelta

import numpy as np

from pycoupler import constants as const
from pycoupler import humidity
from pycoupler.coupled.api import AtmosModelSimulation
from pycoupler.coupled.flux_calculator import (
    TurbulentFluxScheme,
    combined_state_fluxes,
    parse_flux_scheme,
)
from pycoupler.coupled.ports import AtmosInterior


@dataclass
class AtmosParams:
    p_sfc: float = const.P_REF  # surface pressure (Pa)
    height_int: float = 10.0  # height of the air temperature/humidity level (m)
    u0: float = 5.0  # equatorial zonal wind (m/s)
    sw_absorption: float = 0.2  # fraction of TOA shortwave absorbed in the column
    lw_eps0: float = 0.75  # emissivity at the reference CO2
    lw_k_co2: float = 0.02  # emissivity change per ln(CO2/CO2_ref)
    co2_ref: float = 280e-6  # reference CO2 (mol/mol)
    tau_cond: float = 3600.0  # condensation relaxation timescale (s)
    rh0: float = 0.6  # initial relative humidity
    n_zenith_samples: int = 4  # samples for the interval-mean cos zenith


def get_atmos_params_from_env() -> AtmosParams:
    def _f(env, default):
        try:
            return float(os.getenv(env, str(default)))
        except Exception:
            return default
    return AtmosParams(
        u0=_f("CPL_ATM_U0", 5.0),
        sw_absorption=_f("CPL_ATM_SW_ABS", 0.2),
        lw_eps0=_f("CPL_ATM_LW_EPS0", 0.75),
        lw_k_co2=_f("CPL_ATM_LW_KCO2", 0.02),
        tau_cond=_f("CPL_ATM_TAU_COND", 3600.0),
        rh0=_f("CPL_ATM_RH0", 0.6),
    )


def cos_zenith(space, date: datetime) -> np.ndarray:
    """
    Cosine of the solar zenith angle (clipped at 0 for night) on `space`
    at calendar `date` (UTC), with a circular orbit.
    """
    doy = date.timetuple().tm_yday
    decl = np.deg2rad(const.AXIAL_TILT) * np.sin(2.0 * np.pi * (doy - 80) / const.YEAR_DAYS)
    seconds = date.hour * 3600.0 + date.minute * 60.0 + date.second
    hour_angle = 2.0 * np.pi * seconds / const.DAY_SECONDS + np.deg2rad(space.lon_mesh) - np.pi
    phi = np.deg2rad(space.lat_mesh)
    mu = np.sin(phi) * np.sin(decl) + np.cos(phi) * np.cos(decl) * np.cos(hour_angle)
    return np.maximum(mu, 0.0)


class SlabAtmosphere(AtmosModelSimulation):
    name = "atmos"

    def __init__(self, space, dt: float, dt_rad: float, start_date: datetime,
                 flux_scheme="CombinedStateFluxes", params: AtmosParams | None = None,
                 co2: float = 400e-6, t0: float = 0.0) -> None:
        super().__init__(space, dt, t0=t0)
        self.params = params or AtmosParams()
        self.dt_rad = float(dt_rad)
        self.start_date = start_date
        self.flux_scheme = parse_flux_scheme(flux_scheme)
        self.M = self.params.p_sfc / const.GRAV

        phi = np.deg2rad(space.lat_mesh)
        self.u = (self.params.u0 * np.cos(phi)).astype(space.dtype)
        self.v = space.zeros()

        # initial condition
        self.T_init = (250.0 + 40.0 * np.cos(phi) ** 2).astype(space.dtype)
        self.q_init = (self.params.rh0 * humidity.q_sat(self.T_init, self.params.p_sfc)).astype(space.dtype)
        self.T = self.T_init.copy()
        self.q = self.q_init.copy()

        # inputs from the coupler
        self.T_S = self.T_init + 2.0
        self.albedo_direct = space.full(0.3)
        self.albedo_diffuse = space.full(0.3)
        self.co2 = space.full(co2)

        # held fluxes (refreshed by update_surface_conditions / reinit)
        self.F_turb_energy = space.zeros()
        self.F_turb_moisture = space.zeros()
        self.F_turb_tau_xz = space.zeros()
        self.F_turb_tau_yz = space.zeros()
        self.rad_sfc = space.zeros()
        self.rad_atm = space.zeros()
        self.rad_toa = space.zeros()
        self.mu = space.zeros()

        # precipitation made in the current step / awaiting delivery
        self._acc_liq = space.zeros()
        self._acc_snow = space.zeros()
        self.pending_liq = space.zeros()
        self.pending_snow = space.zeros()
        self.last_step = 0.0

        self._refresh_radiation()

    # ---- diagnostics ----

    @property
    def air_density(self) -> np.ndarray:
        return self.params.p_sfc / (const.R_D * self.T)

    def date_at(self, t: float) -> datetime:
        return self.start_date + timedelta(seconds=float(t))

    def _precip_rate(self, mass: np.ndarray) -> np.ndarray:
        if self.last_step <= 0.0:
            return np.zeros_like(mass)
        return mass / self.last_step

    def _get_field(self, name: str):
        getters = {
            "air_temperature": lambda: self.T,
            "specific_humidity": lambda: self.q,
            "air_density": lambda: self.air_density,
            "air_pressure": lambda: self.params.p_sfc,
            "zonal_wind": lambda: self.u,
            "meridional_wind": lambda: self.v,
            "height_int": lambda: self.params.height_int,
            "cos_zenith": lambda: self.mu,
            "co2": lambda: self.co2,
            "radiative_energy_flux_sfc": lambda: self.rad_sfc,
            "radiative_energy_flux_toa": lambda: self.rad_toa,
            "liquid_precipitation": lambda: self._precip_rate(self.pending_liq),
            "snow_precipitation": lambda: self._precip_rate(self.pending_snow),
            "turbulent_energy_flux": lambda: self.F_turb_energy,
            "turbulent_moisture_flux": lambda: self.F_turb_moisture,
            "turbulent_momentum_flux_xz": lambda: self.F_turb_tau_xz,
            "turbulent_momentum_flux_yz": lambda: self.F_turb_tau_yz,
            "energy": self.energy,
            "water": self.water,
        }
        getter = getters.get(name)
        return getter() if getter is not None else None

    def energy(self) -> np.ndarray:
        return const.CP_D * self.M * self.T + const.LV * self.M * self.q - const.LF * self.pending_snow

    def water(self) -> np.ndarray:
        return self.M * self.q + self.pending_liq + self.pending_snow

    # ---- inputs ----

    def _update_field(self, name: str, value) -> bool:
        targets = {
            "surface_temperature": self.T_S,
            "surface_direct_albedo": self.albedo_direct,
            "surface_diffuse_albedo": self.albedo_diffuse,
            "turbulent_energy_flux": self.F_turb_energy,
            "turbulent_moisture_flux": self.F_turb_moisture,
            "turbulent_momentum_flux_xz": self.F_turb_tau_xz,
            "turbulent_momentum_flux_yz": self.F_turb_tau_yz,
            "co2": self.co2,
        }
        target = targets.get(name)
        if target is None:
            return False
        target[...] = value
        return True

    def interior(self) -> AtmosInterior:
        return AtmosInterior(
            T_int=self.T, q_int=self.q, rho_int=self.air_density,
            u=self.u, v=self.v, height_int=self.params.height_int,
        )

    def update_surface_conditions(self, fields) -> None:
        """
        Take the combined surface temperature/albedo (and, for the partitioned
        scheme, the aggregated turbulent fluxes) from the coupler fields; under
        the combined scheme compute the turbulent fluxes from the combined
        surface state. Refreshes the held radiation.
        """
        self.T_S[...] = fields["T_S"]
        self.albedo_direct[...] = fields["surface_direct_albedo"]
        self.albedo_diffuse[...] = fields["surface_diffuse_albedo"]
        if self.flux_scheme is TurbulentFluxScheme.COMBINED:
            flx = combined_state_fluxes(fields, self.interior())
            self.F_turb_energy[...] = flx.F_turb_energy
            self.F_turb_moisture[...] = flx.F_turb_moisture
            self.F_turb_tau_xz[...] = flx.F_turb_rho_tau_xz
            self.F_turb_tau_yz[...] = flx.F_turb_rho_tau_yz
        else:
            self.F_turb_energy[...] = fields["F_turb_energy"]
            self.F_turb_moisture[...] = fields["F_turb_moisture"]
            self.F_turb_tau_xz[...] = fields["F_turb_rho_tau_xz"]
            self.F_turb_tau_yz[...] = fields["F_turb_rho_tau_yz"]
        self._refresh_radiation()

    def _refresh_radiation(self) -> None:
        p = self.params
        n = max(1, int(p.n_zenith_samples))
        mu = self.space.zeros()
        for k in range(n):
            mu += cos_zenith(self.space, self.date_at(self._t + (k + 0.5) / n * self.dt_rad))
        self.mu[...] = mu / n

        insolation = const.SOLAR_CONSTANT * self.mu
        alpha = np.clip(0.5 * (self.albedo_direct + self.albedo_diffuse), 0.0, 1.0)
        sw_atm = insolation * p.sw_absorption
        sw_sfc = insolation * (1.0 - p.sw_absorption) * (1.0 - alpha)
        eps = np.clip(p.lw_eps0 + p.lw_k_co2 * np.log(np.maximum(self.co2, 1e-9) / p.co2_ref), 0.05, 1.0)
        up = const.SIGMA * np.maximum(self.T_S, 0.0) ** 4
        emit = const.SIGMA * self.T ** 4
        self.rad_sfc[...] = sw_sfc + eps * emit - up
        self.rad_atm[...] = sw_atm + eps * up - 2.0 * eps * emit
        self.rad_toa[...] = insolation * (1.0 - p.sw_absorption) * alpha + (1.0 - eps) * up + eps * emit - insolation

    # ---- time stepping ----

    def step(self, target_time: float) -> None:
        start = self._t
        self._acc_liq[...] = 0.0
        self._acc_snow[...] = 0.0
        super().step(target_time)
        self.pending_liq[...] = self._acc_liq
        self.pending_snow[...] = self._acc_snow
        self.last_step = float(target_time) - start

    def _advance(self, dt: float) -> None:
        M = self.M
        sensible = self.F_turb_energy - const.LV * self.F_turb_moisture
        self.T += (self.rad_atm + sensible) * dt / (const.CP_D * M)
        self.q += self.F_turb_moisture * dt / M

        condensed, q_next = humidity.condensation(self.q, self.T, self.params.p_sfc, M, dt, self.params.tau_cond)
        self.q[...] = q_next
        snow = np.where(self.T < const.T_FREEZE, condensed, 0.0)
        liquid = condensed - snow
        self.T += (const.LV * condensed + const.LF * snow) / (const.CP_D * M)
        self._acc_liq += liquid
        self._acc_snow += snow

    def reinit(self) -> None:
        self.T[...] = self.T_init
        self.q[...] = self.q_init
        self._t = self.t0
        self.pending_liq[...] = 0.0
        self.pending_snow[...] = 0.0
        self.last_step = 0.0
        self._refresh_radiation()

    # ---- checkpointing ----

    _STATE_ARRAYS = (
        "T", "q", "T_S", "albedo_direct", "albedo_diffuse", "co2",
        "F_turb_energy", "F_turb_moisture", "F_turb_tau_xz", "F_turb_tau_yz",
        "rad_sfc", "rad_atm", "rad_toa", "mu", "pending_liq", "pending_snow",
    )

    def get_model_prog_state(self):
        state = {name: getattr(self, name).copy() for name in self._STATE_ARRAYS}
        state["last_step"] = np.float64(self.last_step)
        return state

    def restore_model_prog_state(self, state) -> None:
        for name in self._STATE_ARRAYS:
            getattr(self, name)[...] = state[name]
        self.last_step = float(state["last_step"])
