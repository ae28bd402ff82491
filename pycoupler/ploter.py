from __future__ import annotations

import os
from typing import Optional

import numpy as np


def _require_matplotlib():
    try:
        import matplotlib
        matplotlib.use("Agg")
        import matplotlib.pyplot as plt  # type: ignore
    except Exception as e:
        raise RuntimeError("matplotlib is required for plotting. Please install 'matplotlib'.") from e
    return plt


def plot_global_conservation(check, output_dir: str, job_id: str = "", save_path: Optional[str] = None) -> str:
    """
    Plot a conservation check in two panels:
      (left)  change of each role's global integral since the first check,
              and of the TOA source term
      (right) relative drift of the total (sum over roles minus TOA source)
    Returns the path of the written PNG.
    """
    plt = _require_matplotlib()
    times = np.asarray(check.times, dtype=float)
    days = (times - times[0]) / 86400.0 if times.size else times

    fig, (ax1, ax2) = plt.subplots(1, 2, figsize=(14, 5), constrained_layout=True)
    for role, values in check.history.items():
        v = np.asarray(values, dtype=float)
        ax1.plot(days, v - v[0], label=role)
    if check.toa_field is not None and check.toa_net_source:
        src = np.asarray(check.toa_net_source, dtype=float)
        ax1.plot(days, src, "k--", label="TOA net source")
    ax1.set_xlabel("days")
    ax1.set_ylabel("J" if check.name == "energy" else "kg")
    ax1.set_title(f"Global {check.name}: change since start")
    ax1.legend(loc="best", fontsize=8)

    totals = check.totals()
    scale = abs(totals[0]) if totals.size and totals[0] != 0.0 else 1.0
    ax2.plot(days, (totals - (totals[0] if totals.size else 0.0)) / scale, color="tab:red")
    ax2.set_xlabel("days")
    ax2.set_ylabel("relative drift")
    ax2.set_title(f"{check.name} conservation error")
    ax2.grid(True, alpha=0.3)

    if save_path is None:
        os.makedirs(output_dir, exist_ok=True)
        suffix = f"_{job_id}" if job_id else ""
        save_path = os.path.join(output_dir, f"conservation_{check.name}{suffix}.png")
    fig.savefig(save_path, dpi=140)
    plt.close(fig)
    return save_path
