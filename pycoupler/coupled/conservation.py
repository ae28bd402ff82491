"""
conservation.py

Global energy and water budgets of a closed (slab-planet) coupled system.

At every coupling step, before any state changes, each model's column
integral is summed over the sphere:

    atmosphere:  sum_cells  A * field
    surface i:   sum_cells  A * f_i * field      (f_i = area fraction)

The energy budget also carries the radiation that crossed the top of the
atmosphere since the previous check. The atmosphere holds its TOA flux fixed
over a coupling step, so the value recorded at one check is exactly what
acted until the next:

    toa_net_source[k] = toa_net_source[k-1] - sum(A * F_toa_up[k-1]) * (t[k] - t[k-1])

Closure (total now - total at start - toa_net_source) is then exact up to
roundoff. Water has no source term.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np

from .api import surface_simulations
from .exceptions import ConservationError


@dataclass
class ConservationCheck:
    """Per-role history of global integrals (J for energy, kg for water)."""

    name: str
    model_field: str
    toa_field: Optional[str] = None
    history: Dict[str, List[float]] = field(default_factory=dict)
    times: List[float] = field(default_factory=list)
    toa_net_source: List[float] = field(default_factory=list)
    last_toa: float = 0.0

    @property
    def roles(self) -> List[str]:
        return list(self.history)

    def totals(self) -> np.ndarray:
        """Sum over roles (plus the TOA term) at every recorded check."""
        if not self.times:
            return np.zeros(0)
        total = np.zeros(len(self.times))
        for values in self.history.values():
            total += np.asarray(values, dtype=float)
        if self.toa_field is not None:
            total -= np.asarray(self.toa_net_source, dtype=float)
        return total


@dataclass
class EnergyConservationCheck(ConservationCheck):
    name: str = "energy"
    model_field: str = "energy"
    toa_field: Optional[str] = "radiative_energy_flux_toa"


@dataclass
class WaterConservationCheck(ConservationCheck):
    name: str = "water"
    model_field: str = "water"


def make_conservation_checks() -> Dict[str, ConservationCheck]:
    return {"energy": EnergyConservationCheck(), "water": WaterConservationCheck()}


def _global_integral(cell_area: np.ndarray, value, weight=None) -> float:
    integrand = np.asarray(value, dtype=np.float64) * cell_area
    if weight is not None:
        integrand = integrand * np.asarray(weight, dtype=np.float64)
    return float(np.sum(integrand))


def check_conservation(cs) -> None:
    """Append the current global integrals of every model to each check."""
    checks = cs.conservation_checks
    if not checks:
        return
    area = np.asarray(cs.boundary_space.cell_area, dtype=np.float64)
    atmos = cs.atmos_sim
    surfaces = surface_simulations(cs.model_sims)
    t_now = atmos.t

    for check in checks.values():
        check.history.setdefault("atmos", []).append(_global_integral(area, atmos.get_field(check.model_field)))
        for role, sim in surfaces.items():
            value = _global_integral(area, sim.get_field(check.model_field), sim.get_field("area_fraction"))
            check.history.setdefault(role, []).append(value)

        if check.toa_field is not None:
            if check.times:
                dt = t_now - check.times[-1]
                check.toa_net_source.append(check.toa_net_source[-1] - check.last_toa * dt)
            else:
                check.toa_net_source.append(0.0)
            check.last_toa = _global_integral(area, atmos.get_field(check.toa_field))
        check.times.append(t_now)


def conservation_residual(check: ConservationCheck) -> float:
    """Relative change of the total since the first check."""
    totals = check.totals()
    if totals.size < 2:
        return 0.0
    scale = abs(totals[0]) if totals[0] != 0.0 else 1.0
    return float((totals[-1] - totals[0]) / scale)


def check_conservation_closure(check: ConservationCheck, softfail: bool = False, rtol: float = 1e-6) -> bool:
    """
    Compare the total against its initial value.

    Returns True when the relative drift is within rtol. On failure prints the
    result if softfail, otherwise raises ConservationError.
    """
    residual = conservation_residual(check)
    ok = abs(residual) <= rtol
    msg = f"{check.name}: relative drift {residual:.3e} over {len(check.times)} checks (rtol={rtol:.1e})"
    if ok:
        print(f"[Conservation] {msg}: OK")
        return True
    if softfail:
        print(f"[Conservation] {msg}: FAILED (soft)")
        return False
    raise ConservationError(msg)
