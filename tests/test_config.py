import dataclasses
from datetime import datetime

import numpy as np
import pytest

from pycoupler.coupled import CouplerConfig
from pycoupler.coupled.builder import build_coupled_simulation
from pycoupler.coupled.exceptions import ConfigurationError


def test_from_env(monkeypatch):
    monkeypatch.setenv("CPL_MODE", "slabplanet_eisenman")
    monkeypatch.setenv("CPL_DT_CPL", "1hours")
    monkeypatch.setenv("CPL_DT", "not-a-time")
    monkeypatch.setenv("CPL_ENERGY_CHECK", "1")
    monkeypatch.setenv("CPL_RESTART_T", "2days")
    cfg = CouplerConfig.from_env()
    assert cfg.mode_name == "slabplanet_eisenman"
    assert cfg.dt_cpl == 3600.0
    # unparsable values fall back to the default
    assert cfg.dt == 400.0
    assert cfg.energy_check is True
    assert cfg.restart_t == 172800.0
    # from the test environment
    assert (cfg.n_lat, cfg.n_lon) == (6, 12)
    assert cfg.t_end == 4000.0
    assert cfg.is_slabplanet


def test_from_dict_overrides_and_rejects_unknown_keys():
    base = CouplerConfig()
    cfg = CouplerConfig.from_dict({"t_end": "2days", "job_id": "x", "restart_t": None}, base=base)
    assert cfg.t_end == 172800.0
    assert cfg.job_id == "x"
    assert cfg.restart_t is None
    assert base.t_end == 864000.0
    with pytest.raises(ConfigurationError):
        CouplerConfig.from_dict({"dt_cpl": "400secs", "coupling": "fast"}, base=base)


@pytest.mark.parametrize(
    "overrides",
    [
        {"mode_name": "aquaplanet"},
        {"turb_flux_partition": "Mixed"},
        {"float_type": "Float16"},
        {"start_date": "1979-03-01"},
        {"dt_cpl": 0.0},
        {"dt": -1.0},
        {"t_start": 800.0, "t_end": 400.0},
        {"t_end": 1000.0},
        {"land_fraction_source": "file"},
        {"land_fraction_source": "satellite"},
        {"n_lat": 0},
    ],
)
def test_validated_rejects_bad_configuration(overrides):
    cfg = dataclasses.replace(CouplerConfig(), **overrides)
    with pytest.raises(ConfigurationError):
        cfg.validated()


def test_partial_step_allowed_when_requested():
    cfg = dataclasses.replace(CouplerConfig(), t_end=1000.0, allow_partial_step=True)
    assert cfg.validated() is cfg
    assert cfg.n_steps == 3


def test_energy_check_disabled_for_amip():
    cfg = dataclasses.replace(CouplerConfig(), mode_name="amip", energy_check=True)
    effective = cfg.validated()
    assert effective.energy_check is False
    assert cfg.energy_check is True


def test_derived_values():
    cfg = CouplerConfig()
    assert cfg.dtype is np.float64
    assert cfg.start_datetime == datetime(1979, 3, 1)
    assert cfg.n_steps == 2160


def test_single_precision_build():
    cfg = CouplerConfig.from_dict({"float_type": "Float32", "t_end": "800secs"})
    cs = build_coupled_simulation(cfg)
    assert cs.boundary_space.dtype == np.float32
    assert cs.fields["T_S"].dtype == np.float32
    assert cs.atmos_sim.T.dtype == np.float32
