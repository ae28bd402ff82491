"""
Component model API: the capability set the coupler consumes.

Intent
- A small, normative interface that every component model implements so the
  coupler can orchestrate atmospheres and surfaces without knowing their
  numerics: get_field, update_field, step, reinit (+ checkpoint hooks).
- Dispatch is by a fixed runtime kind tag (ModelKind) since the variant set
  (atmos, land, ocean, ice, stub) is known up front.

Scope
- ComponentModelSimulation: base with time accounting and the warn-and-skip
  policy for undefined updates / reinit.
- AtmosModelSimulation / SurfaceModelSimulation: role bases; surfaces own a
  cached copy of their area fraction that the coupler refreshes.
- SurfaceStub: inert, cache-backed surface (prescribed SST ocean in AMIP,
  zero-fraction placeholders in slab-planet modes).

Notes
- Field names are the coupler's vocabulary (surface_temperature,
  roughness_momentum, radiative_energy_flux_sfc, ...). A model that cannot
  provide a requested field raises MissingFieldError.
- step(target_time) must leave the model clock exactly at target_time; the
  substep loop always derives the step from the remaining duration.
"""

from __future__ import annotations

import enum
from typing import Any, Dict, Optional

import numpy as np

from pycoupler import humidity
from pycoupler import constants as const

from ..exceptions import InterfaceWarning, MissingFieldError


class ModelKind(enum.Enum):
    ATMOS = "atmos"
    LAND = "land"
    OCEAN = "ocean"
    ICE = "ice"
    STUB = "stub"


# How many times an undefined update is reported per (model, field)
_MAXLOG = 10
_warn_counts: Dict[tuple, int] = {}


def _warn_once_in_a_while(key: tuple, message: str) -> None:
    n = _warn_counts.get(key, 0)
    if n < _MAXLOG:
        print(f"[Interfacer] {message}")
    _warn_counts[key] = n + 1


class ComponentModelSimulation:
    """
    Base component model.

    Subclasses implement
    - _get_field(name) -> array/scalar, or None if the field is unknown
    - _update_field(name, value) -> bool (True if consumed)
    - _advance(dt): integrate the model by dt seconds (dt > 0)
    and optionally reinit / get_model_prog_state / restore_model_prog_state.
    """

    kind: ModelKind = ModelKind.STUB
    name: str = "component"

    def __init__(self, space, dt: float, t0: float = 0.0) -> None:
        if not dt > 0.0:
            raise ValueError(f"{self.name}: timestep must be positive, got {dt}")
        self.space = space
        self.dt = float(dt)
        self.t0 = float(t0)
        self._t = float(t0)

    @property
    def t(self) -> float:
        return self._t

    # ---- fields ----

    def _get_field(self, name: str):
        return None

    def _update_field(self, name: str, value) -> bool:
        return False

    def get_field(self, name: str, colidx: Optional[tuple] = None):
        """Return field `name` (whole field, or the value at column `colidx`)."""
        value = self._get_field(name)
        if value is None:
            raise MissingFieldError(self.name, name)
        if colidx is None:
            return value
        if np.ndim(value) == 0:
            return value
        return value[colidx]

    def update_field(self, name: str, value) -> Optional[InterfaceWarning]:
        """
        Push `value` into the model's input `name`.

        An update the model does not define is skipped with a (rate-limited)
        log line; the returned InterfaceWarning lets callers/tests observe it.
        """
        if self._update_field(name, value):
            return None
        msg = f"undefined update_field for {name!r} in {self.name}: skipping"
        _warn_once_in_a_while((self.name, name), msg)
        return InterfaceWarning(msg)

    # ---- time stepping ----

    def _advance(self, dt: float) -> None:
        raise NotImplementedError(f"{type(self).__name__} does not implement _advance")

    def step(self, target_time: float) -> None:
        """Advance the model clock to `target_time` with substeps of at most self.dt."""
        target = float(target_time)
        tol = 1e-9 * max(1.0, self.dt)
        while target - self._t > tol:
            remaining = target - self._t
            dt = min(self.dt, remaining)
            self._advance(dt)
            self._t = self._t + dt
        self._t = target

    def reinit(self) -> Optional[InterfaceWarning]:
        msg = f"undefined reinit for {self.name}: skipping"
        _warn_once_in_a_while((self.name, "reinit"), msg)
        return InterfaceWarning(msg)

    # ---- checkpointing ----

    def get_model_prog_state(self) -> Optional[Dict[str, Any]]:
        """Arrays that fully describe the model state, or None if stateless."""
        return None

    def restore_model_prog_state(self, state: Dict[str, Any]) -> None:
        raise NotImplementedError(f"{type(self).__name__} has no persistable state")

    def set_clock(self, t: float) -> None:
        self._t = float(t)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, t={self._t})"


class AtmosModelSimulation(ComponentModelSimulation):
    kind = ModelKind.ATMOS
    name = "atmos"

    def update_surface_conditions(self, fields: Dict[str, np.ndarray]) -> None:
        """
        Refresh the atmosphere's surface-condition cache from coupler fields.
        Atmospheres that need surface state beyond update_field override this.
        """
        return None


class SurfaceModelSimulation(ComponentModelSimulation):
    """A surface model owns a cached copy of its area fraction."""

    def __init__(self, space, dt: float, area_fraction=None, t0: float = 0.0) -> None:
        super().__init__(space, dt, t0=t0)
        if area_fraction is None:
            area_fraction = space.zeros()
        self.area_fraction = np.asarray(area_fraction, dtype=space.dtype).copy()

    def _get_field(self, name: str):
        if name == "area_fraction":
            return self.area_fraction
        return None

    def _update_field(self, name: str, value) -> bool:
        if name == "area_fraction":
            self.area_fraction[...] = value
            return True
        return False


class SurfaceStub(SurfaceModelSimulation):
    """
    Inert surface: fields come from a cache that only update_field changes.

    Surface humidity is diagnosed from the cached surface temperature at the
    reference pressure when not given explicitly.
    """

    kind = ModelKind.STUB

    _CACHE_KEYS = (
        "surface_temperature",
        "roughness_momentum",
        "roughness_buoyancy",
        "surface_direct_albedo",
        "surface_diffuse_albedo",
        "beta",
        "air_density",
    )

    def __init__(self, space, name: str, cache: Optional[Dict[str, Any]] = None,
                 area_fraction=None, dt: float = 1.0, t0: float = 0.0) -> None:
        self.name = name
        super().__init__(space, dt, area_fraction=area_fraction, t0=t0)
        defaults = {
            "surface_temperature": space.full(const.T_FREEZE),
            "roughness_momentum": space.full(1e-3),
            "roughness_buoyancy": space.full(1e-3),
            "surface_direct_albedo": space.full(0.3),
            "surface_diffuse_albedo": space.full(0.3),
            "beta": space.ones(),
            "air_density": space.full(1.2),
        }
        for key, value in (cache or {}).items():
            if key not in self._CACHE_KEYS:
                raise KeyError(f"SurfaceStub cache has no entry {key!r}")
            defaults[key] = np.asarray(value, dtype=space.dtype) * space.ones()
        self.cache = defaults

    def _get_field(self, name: str):
        if name in self.cache:
            return self.cache[name]
        if name == "surface_humidity":
            return humidity.q_sat(self.cache["surface_temperature"], const.P_REF)
        if name in ("energy", "water"):
            return self.space.zeros()
        return super()._get_field(name)

    def _update_field(self, name: str, value) -> bool:
        if name in self.cache:
            self.cache[name][...] = value
            return True
        return super()._update_field(name, value)

    def step(self, target_time: float) -> None:
        self._t = float(target_time)

    def reinit(self) -> None:
        self._t = self.t0

    def get_model_prog_state(self):
        state = {name: value.copy() for name, value in self.cache.items()}
        state["area_fraction"] = self.area_fraction.copy()
        return state

    def restore_model_prog_state(self, state) -> None:
        for name, value in self.cache.items():
            value[...] = state[name]
        self.area_fraction[...] = state["area_fraction"]


def surface_simulations(model_sims: Dict[str, ComponentModelSimulation]) -> Dict[str, SurfaceModelSimulation]:
    """The surface models of a role->simulation mapping, in insertion order."""
    return {role: sim for role, sim in model_sims.items() if isinstance(sim, SurfaceModelSimulation)}
