from datetime import datetime
from types import SimpleNamespace

import numpy as np
import pytest

from pycoupler.coupled.api import SurfaceStub
from pycoupler.coupled.exceptions import FractionSumError, MissingFieldError
from pycoupler.coupled.regridder import (
    LatLonSpace,
    binary_mask,
    check_fraction_sum,
    combine_surfaces,
    idealized_land_fraction,
    read_from_persisted,
    remap,
    resolve_data_file,
    update_surface_fractions,
    write_to_persisted,
)


def test_combine_surfaces_divides_by_surface_count(space):
    combined = space.zeros()
    fractions = {"a": space.full(0.0), "b": space.full(1.0)}
    fields = {"a": space.full(5.0), "b": space.full(10.0)}
    combine_surfaces(combined, fractions, fields)
    # (0 * 5 + 1 * 10) / 2, not the weighted mean 10
    assert np.allclose(combined, 5.0)


def test_combine_surfaces_accepts_scalars(space):
    combined = space.zeros()
    combine_surfaces(combined, {"a": 0.25, "b": 0.75}, {"a": 4.0, "b": space.full(8.0)})
    assert np.allclose(combined, (0.25 * 4.0 + 0.75 * 8.0) / 2)


def test_combine_surfaces_is_linear_in_fields(space):
    rng = np.random.default_rng(0)
    f1 = rng.uniform(0.0, 1.0, space.shape)
    fractions = {"land": f1, "ocean": 1.0 - f1}
    fields = {"land": rng.normal(280.0, 10.0, space.shape), "ocean": rng.normal(290.0, 5.0, space.shape)}

    base = combine_surfaces(space.zeros(), fractions, fields)
    scaled = combine_surfaces(space.zeros(), fractions, {k: 3.5 * v for k, v in fields.items()})
    assert np.allclose(scaled, 3.5 * base, rtol=1e-12)


def test_combine_surfaces_rejects_mismatched_names(space):
    with pytest.raises(ValueError):
        combine_surfaces(space.zeros(), {"a": 1.0}, {"b": 1.0})


def test_binary_mask():
    mask = binary_mask(np.array([0.0, 1e-12, 1e-3, 1.0]))
    assert mask.tolist() == [0.0, 0.0, 1.0, 1.0]


def _stub_sims(space, land, ice, ocean=0.0):
    return {
        "land": SurfaceStub(space, "land", area_fraction=space.full(land)),
        "ocean": SurfaceStub(space, "ocean", area_fraction=space.full(ocean)),
        "ice": SurfaceStub(space, "ice", area_fraction=space.full(ice)),
    }


def test_update_surface_fractions_sum_to_one(space):
    sims = _stub_sims(space, land=0.2, ice=0.1)
    cs = SimpleNamespace(model_sims=sims, boundary_space=space)
    update_surface_fractions(cs)
    assert np.allclose(sims["ocean"].get_field("area_fraction"), 0.7)
    total = sum(sim.get_field("area_fraction") for sim in sims.values())
    assert np.allclose(total, 1.0)


def test_update_surface_fractions_clips_ice_to_sea(space):
    land = idealized_land_fraction(space)
    sims = _stub_sims(space, land=0.0, ice=0.9)
    sims["land"].update_field("area_fraction", land)
    cs = SimpleNamespace(model_sims=sims, boundary_space=space)
    update_surface_fractions(cs)

    ice = sims["ice"].get_field("area_fraction")
    assert np.all(ice <= 1.0 - land + 1e-12)
    assert np.all(sims["ocean"].get_field("area_fraction") >= 0.0)
    total = sum(sim.get_field("area_fraction") for sim in sims.values())
    assert np.allclose(total, 1.0)


def test_check_fraction_sum_flags_bad_columns(space):
    sims = _stub_sims(space, land=0.3, ice=0.0, ocean=0.6)
    with pytest.raises(FractionSumError):
        check_fraction_sum(sims)
    sims["ocean"].update_field("area_fraction", 0.7)
    check_fraction_sum(sims)


def test_remap_handles_descending_lat_and_signed_lon(space):
    lat = np.arange(90.0, -90.1, -10.0)  # descending, includes the poles
    lon = np.arange(-180.0, 180.0, 10.0)
    field = np.repeat(lat[:, None], lon.size, axis=1)

    out = remap(field, LatLonSpace(lat=lat, lon=lon), space)
    assert out.shape == space.shape
    assert np.allclose(out, space.lat_mesh, atol=1e-9)


def test_remap_constant_field_and_shape_check(space):
    lat = np.linspace(-80.0, 80.0, 9)
    lon = np.arange(0.0, 361.0, 30.0)  # seam column duplicated at 360
    src = LatLonSpace(lat=lat, lon=lon)
    out = remap(np.full((lat.size, lon.size), 5.0), src, space)
    assert np.allclose(out, 5.0)
    with pytest.raises(ValueError):
        remap(np.zeros((3, 3)), src, space)


def test_idealized_land_fraction_bounds(space):
    frac = idealized_land_fraction(space)
    assert frac.shape == space.shape
    assert np.all((frac >= 0.0) & (frac <= 1.0))
    mono = idealized_land_fraction(space, mono_surface=True)
    assert set(np.unique(mono)).issubset({0.0, 1.0})


def test_resolve_data_file_lowres_fallback(tmp_path):
    wanted = tmp_path / "sst.nc"
    with pytest.raises(FileNotFoundError):
        resolve_data_file(str(wanted))
    lowres = tmp_path / "sst_lowres.nc"
    lowres.write_bytes(b"")
    assert resolve_data_file(str(wanted)) == str(lowres)
    wanted.write_bytes(b"")
    assert resolve_data_file(str(wanted)) == str(wanted)


def test_persisted_roundtrip(tmp_path, space):
    pytest.importorskip("netCDF4")
    path = str(tmp_path / "fields" / "state")
    date = datetime(1979, 3, 2, 6)
    field = np.arange(space.size, dtype=float).reshape(space.shape) / 7.0

    write_to_persisted(path, "T", date, field, space=space)
    write_to_persisted(path, "t", date, 1234.5)
    # overwriting a variable keeps the latest value
    write_to_persisted(path, "T", date, field + 1.0, space=space)

    assert np.array_equal(read_from_persisted(path, "T", date), field + 1.0)
    assert float(read_from_persisted(path, "t", date)) == 1234.5
    with pytest.raises(MissingFieldError):
        read_from_persisted(path, "q", date)
    with pytest.raises(FileNotFoundError):
        read_from_persisted(path, "T", datetime(1979, 3, 3))
