"""
jax_compat.py: optional JAX path for the coupler's vectorized flux kernel

Provides:
- ArrayBackend: the array module (numpy or jax.numpy) plus a kernel compiler
  that binds a kernel written as fn(xp, *arrays) to that module and jits it
  when JAX is active
- default_backend(): the process-wide backend from env
    CPL_USE_JAX=1    try to use JAX
    CPL_JAX_FORCE=1  also use it on CPU (otherwise only gpu/tpu)
- is_enabled / backend: queries on the default backend
"""
from __future__ import annotations

import functools
import os

import numpy as _np

ACCELERATORS = ("gpu", "cuda", "tpu")


class ArrayBackend:
    """numpy, or jax.numpy with jitted kernels."""

    def __init__(self, jax_module=None, platform: str = "none") -> None:
        self._jax = jax_module
        self.platform = platform
        self._kernels = {}
        if jax_module is not None:
            import jax.numpy as jnp

            self.xp = jnp
        else:
            self.xp = _np

    @classmethod
    def detect(cls, use_jax: bool, force: bool = False) -> ArrayBackend:
        """JAX backend if requested, importable and on an accelerator (or forced); numpy otherwise."""
        if not use_jax:
            return cls()
        try:
            import jax
        except ImportError:
            print("[JAX] jax not importable; using NumPy backend.")
            return cls()
        devices = jax.devices()
        platform = getattr(devices[0], "platform", "unknown") if devices else jax.default_backend()
        if platform in ACCELERATORS or force:
            return cls(jax, platform)
        print(f"[JAX] platform {platform!r} is not an accelerator; using NumPy backend (CPL_JAX_FORCE=1 overrides).")
        return cls(platform=platform)

    @property
    def enabled(self) -> bool:
        return self._jax is not None

    def kernel(self, fn):
        """fn(xp, *arrays) bound to this backend's xp; jitted (once) under JAX."""
        compiled = self._kernels.get(fn)
        if compiled is None:
            compiled = functools.partial(fn, self.xp)
            if self.enabled:
                compiled = self._jax.jit(compiled)
            self._kernels[fn] = compiled
        return compiled

    def to_numpy(self, x) -> _np.ndarray:
        """Writeable numpy copy of a device array; numpy arrays pass through."""
        if isinstance(x, _np.ndarray):
            return x
        return _np.array(x, copy=True)


def _env_flag(name: str) -> bool:
    return os.getenv(name, "0").strip() == "1"


_DEFAULT = ArrayBackend.detect(_env_flag("CPL_USE_JAX"), force=_env_flag("CPL_JAX_FORCE"))


def default_backend() -> ArrayBackend:
    return _DEFAULT


def is_enabled() -> bool:
    return _DEFAULT.enabled


def backend() -> str:
    """Detected platform: gpu|cpu|tpu|metal|unknown, or none when JAX was not requested."""
    return _DEFAULT.platform
