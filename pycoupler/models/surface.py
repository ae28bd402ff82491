"""
Shared plumbing of the bundled surface models: the coupler-facing inputs
(fluxes, precipitation, air density) and the prognostic-state checkpoint hooks.
"""

from __future__ import annotations

import numpy as np

from pycoupler.coupled.api import SurfaceModelSimulation

# Inputs every bundled surface accepts through update_field
SURFACE_INPUTS = (
    "radiative_energy_flux_sfc",
    "turbulent_energy_flux",
    "turbulent_moisture_flux",
    "liquid_precipitation",
    "snow_precipitation",
    "air_density",
)


class FluxDrivenSurface(SurfaceModelSimulation):
    """
    Surface model driven by coupler fluxes held fixed over a coupling step.

    Subclasses list their prognostic arrays in _STATE_ARRAYS and implement
    _advance, _initial_state and the field getters.
    """

    _STATE_ARRAYS: tuple = ()

    def __init__(self, space, dt: float, area_fraction=None, t0: float = 0.0) -> None:
        super().__init__(space, dt, area_fraction=area_fraction, t0=t0)
        self.inputs = {name: space.zeros() for name in SURFACE_INPUTS}
        self.inputs["air_density"][...] = 1.2

    def _update_field(self, name: str, value) -> bool:
        if name in self.inputs:
            self.inputs[name][...] = value
            return True
        return super()._update_field(name, value)

    @property
    def net_energy_input(self) -> np.ndarray:
        """Radiative minus turbulent energy flux into the surface (W/m^2)."""
        return self.inputs["radiative_energy_flux_sfc"] - self.inputs["turbulent_energy_flux"]

    @property
    def net_water_input(self) -> np.ndarray:
        """Precipitation minus evaporation (kg m^-2 s^-1)."""
        return (
            self.inputs["liquid_precipitation"]
            + self.inputs["snow_precipitation"]
            - self.inputs["turbulent_moisture_flux"]
        )

    def _initial_state(self) -> dict:
        raise NotImplementedError

    def reinit(self) -> None:
        for name, value in self._initial_state().items():
            getattr(self, name)[...] = value
        self._t = self.t0

    def get_model_prog_state(self):
        state = {name: getattr(self, name).copy() for name in self._STATE_ARRAYS}
        # held coupler inputs, some of which are only refreshed once per step
        for name, value in self.inputs.items():
            state[f"input_{name}"] = value.copy()
        return state

    def restore_model_prog_state(self, state) -> None:
        for name in self._STATE_ARRAYS:
            getattr(self, name)[...] = state[name]
        for name, value in self.inputs.items():
            value[...] = state[f"input_{name}"]
