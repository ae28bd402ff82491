"""
humidity.py

Moisture thermodynamics shared by the bundled component models.

This module provides:
- saturation_vapor_pressure(T): Tetens formula over liquid water (Pa).
- q_sat(T, p): saturation specific humidity (kg/kg).
- condensation(q, T_a, p, M_col, dt, tau): supersaturation sink of a single
  atmospheric column; returns the condensed mass and the relaxed humidity.

Conventions:
- q: specific humidity (kg/kg), grid 2D or scalar.
- M_col: column air mass (kg/m^2), so that the column water vapour is M_col * q.
- Condensed mass is returned in kg/m^2 over the step (not a rate).
"""

from __future__ import annotations

import numpy as np

EPSILON = 0.622  # ratio of molecular weights Mw/Md for moist/dry air


def saturation_vapor_pressure(T: np.ndarray | float) -> np.ndarray:
    """Tetens saturation vapour pressure over water (Pa)."""
    T_arr = np.asarray(T, dtype=float)
    T_c = np.clip(T_arr - 273.15, -80.0, 60.0)  # Celsius for formula stability
    return 610.94 * np.exp(17.625 * T_c / (T_c + 243.04))


def q_sat(T: np.ndarray | float, p: np.ndarray | float = 1.0e5) -> np.ndarray:
    """
    Saturation specific humidity over liquid water using Tetens formula.
    Args:
        T: temperature in K (array or scalar).
        p: ambient pressure in Pa.
    Returns:
        q_sat in kg/kg, same shape as T.
    """
    e_s = saturation_vapor_pressure(T)
    denom = np.maximum(p - (1.0 - EPSILON) * e_s, 1.0)  # avoid division by ~0
    qsat = EPSILON * e_s / denom
    return np.clip(qsat, 0.0, 0.5)  # physical upper bound


def condensation(
    q: np.ndarray,
    T_a: np.ndarray,
    p: np.ndarray | float,
    M_col: np.ndarray | float,
    dt: float,
    tau: float,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Supersaturation relaxation to saturation over timescale tau:
      excess = max(0, q - q_sat(T_a, p))
      condensed = excess * min(dt / tau, 1) * M_col      [kg/m^2]
      q_next = q - condensed / M_col                     [kg/kg]
    The relaxation factor is capped at 1 so a long step never removes more
    than the excess.
    Returns:
      (condensed, q_next)
    """
    qsat_air = q_sat(T_a, p)
    excess = np.maximum(0.0, q - qsat_air)
    frac = min(1.0, float(dt) / max(1e-6, float(tau)))
    condensed = excess * frac * M_col
    q_next = q - condensed / M_col
    return np.nan_to_num(condensed, copy=False), q_next
