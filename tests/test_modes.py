import dataclasses
from datetime import datetime
from types import SimpleNamespace

import numpy as np
import pytest

from pycoupler.coupled import CouplerConfig
from pycoupler.coupled.api import SurfaceStub
from pycoupler.coupled.exceptions import ConfigurationError
from pycoupler.coupled.modes import (
    Amip,
    SlabPlanetAqua,
    SlabPlanetTerra,
    TimeVaryingInput,
    analytic_sic_input,
    constant_input,
    get_ice_fraction,
    make_amip_mode,
    make_mode,
    read_co2_text,
)
from pycoupler.models.atmosphere import SlabAtmosphere


def test_time_varying_input_interpolates_and_clamps():
    tvi = TimeVaryingInput([10.0, 0.0], [np.full(2, 5.0), np.full(2, 1.0)], name="x")
    assert np.allclose(tvi(0.0), 1.0)
    assert np.allclose(tvi(2.5), 2.0)
    assert np.allclose(tvi(-100.0), 1.0)
    assert np.allclose(tvi(1e9), 5.0)

    dest = np.zeros(2)
    tvi.evaluate(dest, 5.0)
    assert np.allclose(dest, 3.0)

    assert np.allclose(constant_input(7.0)(123.0), 7.0)
    with pytest.raises(ValueError):
        TimeVaryingInput([0.0, 1.0], [1.0])
    with pytest.raises(ValueError):
        TimeVaryingInput()


def test_read_co2_text(tmp_path):
    path = tmp_path / "co2.txt"
    path.write_text(
        "# year month decimal average\n"
        "1979 1 1979.042 336.56 -1\n"
        "\n"
        "1979 2 1979.125 337.29 -1\n"
    )
    co2 = read_co2_text(str(path), datetime(1979, 1, 1))
    jan15 = 14 * 86400.0
    assert np.isclose(co2(jan15), 336.56e-6)
    assert np.isclose(co2(jan15 + 31 * 86400.0), 337.29e-6)
    assert 336.56e-6 < co2(jan15 + 10 * 86400.0) < 337.29e-6

    empty = tmp_path / "empty.txt"
    empty.write_text("# nothing\n")
    with pytest.raises(ValueError):
        read_co2_text(str(empty), datetime(1979, 1, 1))


def test_from_netcdf_with_lowres_fallback(tmp_path, space):
    netCDF4 = pytest.importorskip("netCDF4")
    lowres = tmp_path / "sst_lowres.nc"
    with netCDF4.Dataset(str(lowres), "w") as ds:
        ds.createDimension("time", None)
        ds.createDimension("lat", 9)
        ds.createDimension("lon", 12)
        vt = ds.createVariable("time", "f8", ("time",))
        vt.units = "days since 1979-01-01 00:00:00"
        vt.calendar = "standard"
        ds.createVariable("lat", "f8", ("lat",))[:] = np.linspace(-80.0, 80.0, 9)
        ds.createVariable("lon", "f8", ("lon",))[:] = np.arange(0.0, 360.0, 30.0)
        sst = ds.createVariable("SST", "f8", ("time", "lat", "lon"))
        vt[:] = [0.0, 10.0]
        sst[0, :, :] = 10.0
        sst[1, :, :] = 20.0

    tvi = TimeVaryingInput.from_netcdf(str(tmp_path / "sst.nc"), "SST", space, datetime(1979, 1, 1),
                                       preprocess=lambda data: data + 273.15)
    assert tvi.values[0].shape == space.shape
    assert np.allclose(tvi(0.0), 283.15)
    assert np.allclose(tvi(5 * 86400.0), 288.15)

    with pytest.raises(KeyError):
        TimeVaryingInput.from_netcdf(str(lowres), "SEAICE", space, datetime(1979, 1, 1))


def test_missing_amip_file_is_an_error(space):
    pytest.importorskip("netCDF4")
    cfg = dataclasses.replace(CouplerConfig(), mode_name="amip", sst_file="/nonexistent/sst.nc")
    with pytest.raises(FileNotFoundError):
        make_amip_mode(cfg, space, datetime(1979, 1, 1))


def test_get_ice_fraction():
    sic = np.array([-0.1, 0.2, 0.6, 1.3])
    assert np.allclose(get_ice_fraction(sic), [0.0, 0.2, 0.6, 1.0])
    assert get_ice_fraction(sic, mono_surface=True).tolist() == [0.0, 0.0, 1.0, 1.0]


def test_make_mode_variants(space):
    base = CouplerConfig()
    land = np.full(space.shape, 0.3)
    aqua = make_mode(dataclasses.replace(base, mode_name="slabplanet_aqua"), space, datetime(1979, 3, 1))
    terra = make_mode(dataclasses.replace(base, mode_name="slabplanet_terra"), space, datetime(1979, 3, 1))
    assert isinstance(aqua, SlabPlanetAqua) and np.all(aqua.land_fraction(land) == 0.0)
    assert isinstance(terra, SlabPlanetTerra) and np.all(terra.land_fraction(land) == 1.0)
    assert aqua.conserves and not aqua.water_albedo

    amip = make_mode(dataclasses.replace(base, mode_name="amip"), space, datetime(1979, 3, 1))
    assert isinstance(amip, Amip)
    assert not amip.conserves and amip.water_albedo
    assert np.allclose(amip.land_fraction(land), 0.3)

    with pytest.raises(ConfigurationError):
        make_mode(dataclasses.replace(base, mode_name="snowball"), space, datetime(1979, 3, 1))


def test_amip_evaluate_inputs():
    from pycoupler.grid import BoundarySpace

    space = BoundarySpace(n_lat=6, n_lon=8)
    sst = TimeVaryingInput([0.0, 100.0], [np.full(space.shape, 280.0), np.full(space.shape, 300.0)])
    mode = Amip(sst_input=sst, sic_input=analytic_sic_input(space), co2_input=constant_input(350e-6))
    sims = {
        "atmos": SlabAtmosphere(space, 100.0, dt_rad=100.0, start_date=datetime(1979, 3, 1)),
        "ocean": SurfaceStub(space, "ocean", area_fraction=space.ones()),
        "ice": SurfaceStub(space, "ice", area_fraction=space.zeros()),
    }
    cs = SimpleNamespace(boundary_space=space, model_sims=sims)

    mode.evaluate_inputs(cs, 50.0)
    assert np.allclose(sims["ocean"].get_field("surface_temperature"), 290.0)
    assert np.allclose(sims["atmos"].co2, 350e-6)
    # rows at +/-75 degrees lie inside the polar caps
    ice = sims["ice"].get_field("area_fraction")
    assert np.all(ice[0] == 1.0) and np.all(ice[-1] == 1.0)
    assert np.all(ice[1:-1] == 0.0)
