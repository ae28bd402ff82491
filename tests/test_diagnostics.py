import os
from datetime import datetime

import numpy as np
import pytest

from pycoupler.coupled import CouplerConfig
from pycoupler.coupled.conservation import EnergyConservationCheck
from pycoupler.coupled.diagnostics import DiagnosticsHandler
from pycoupler.coupled.driver import run_coupled
from pycoupler.coupled.state import CouplerFields
from pycoupler.coupled.time_manager import Period


def test_accumulate_and_means(tmp_path, space):
    handler = DiagnosticsHandler(str(tmp_path), "job", space, datetime(1979, 3, 1), 0.0, 7200.0,
                                 field_names=("T_S", "P_net"))
    assert handler.period == Period(1, "hours")
    assert handler.next_output == datetime(1979, 3, 1, 1)

    fields = CouplerFields(space)
    for value in (1.0, 2.0, 6.0):
        fields["T_S"] = value
        handler.accumulate(fields)
    assert np.allclose(handler.means()["T_S"], 3.0)
    assert np.allclose(handler.means()["P_net"], 0.0)
    handler.reset()
    assert np.allclose(handler.means()["T_S"], 0.0)
    assert not handler.is_due(datetime(1979, 3, 1, 0, 59))
    assert handler.is_due(datetime(1979, 3, 1, 1))


def test_diagnostics_written_during_run():
    netCDF4 = pytest.importorskip("netCDF4")
    cs = run_coupled(CouplerConfig.from_dict({
        "diagnostics_enable": True,
        "job_id": "diag",
        "dt_cpl": "1200secs",
        "dt": "600secs",
        "t_end": "2hours",
    }))
    handler = cs.diagnostics_handler
    assert handler.n_records == 2
    assert handler.path == os.path.join(cs.output_dir, "diagnostics_diag.nc")

    with netCDF4.Dataset(handler.path) as ds:
        assert ds.getncattr("period") == "1hours"
        assert np.allclose(ds.variables["time"][:], [3600.0, 7200.0])
        T_S = np.array(ds.variables["T_S"][:])
        assert T_S.shape == (2, cs.boundary_space.n_lat, cs.boundary_space.n_lon)
        assert np.all(np.isfinite(T_S)) and np.all(T_S > 0.0)


def test_conservation_plot(tmp_path):
    pytest.importorskip("matplotlib")
    from pycoupler.ploter import plot_global_conservation

    check = EnergyConservationCheck()
    check.history["atmos"] = [3.0, 2.5, 2.0]
    check.history["ocean"] = [5.0, 5.0, 5.0]
    check.toa_net_source = [0.0, -0.5, -1.0]
    check.times = [0.0, 86400.0, 172800.0]

    path = plot_global_conservation(check, str(tmp_path / "plots"), job_id="j1")
    assert path == str(tmp_path / "plots" / "conservation_energy_j1.png")
    assert os.path.getsize(path) > 0

    custom = str(tmp_path / "custom.png")
    assert plot_global_conservation(check, str(tmp_path), save_path=custom) == custom
    assert os.path.isfile(custom)
