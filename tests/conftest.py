"""
pytest configuration for the coupler tests

Goals:
- keep tests fast and deterministic
- avoid plotting and stray output during quick runs
- shrink default grid unless a test overrides explicitly
"""

import os
import sys

import pytest

# Ensure project root on sys.path for 'pycoupler' and 'scripts' imports
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)


@pytest.fixture(autouse=True)
def _coupler_env(monkeypatch, tmp_path):
    # Small grid by default (tests can override via monkeypatch in the test)
    monkeypatch.setenv("CPL_N_LAT", os.getenv("CPL_N_LAT", "6"))
    monkeypatch.setenv("CPL_N_LON", os.getenv("CPL_N_LON", "12"))
    # Short runs unless a test asks for more
    monkeypatch.setenv("CPL_T_END", os.getenv("CPL_T_END", "4000secs"))
    # Force non-interactive backend for matplotlib (avoid display requirements)
    monkeypatch.setenv("MPLBACKEND", os.getenv("MPLBACKEND", "Agg"))
    monkeypatch.setenv("CPL_PLOT_CONSERVATION", "0")
    monkeypatch.setenv("CPL_DIAGNOSTICS", "0")
    monkeypatch.setenv("CPL_HOURLY_CHECKPOINT", "0")
    # All output of a test goes to its own temporary directory
    monkeypatch.setenv("CPL_OUTPUT_DIR", str(tmp_path / "output"))
    monkeypatch.setenv("CPL_RESTART_DIR", "")
    monkeypatch.setenv("CPL_RESTART_T", "")
    # Keep JAX path deterministic; tests validate boolean API only
    monkeypatch.setenv("CPL_USE_JAX", os.getenv("CPL_USE_JAX", "0"))
    yield


@pytest.fixture
def space():
    from pycoupler.grid import BoundarySpace

    return BoundarySpace(n_lat=4, n_lon=8)
