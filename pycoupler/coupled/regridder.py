"""
Regridder service: same-grid copies, area-fraction combination, spatial
remapping of lat-lon data and NetCDF persistence of fields.

Purpose
- combine_surfaces / update_surface_fractions: the coupler's authority over
  surface area fractions and their use as combination weights.
- remap: bring external lat-lon data (land mask, SST, SIC) onto the boundary
  space with scipy's RegularGridInterpolator (cyclic in longitude).
- write_to_persisted / read_from_persisted: one NetCDF file per (root, date)
  holding any number of named fields; the checkpointer builds on these.

Notes
- combine_surfaces normalizes by the number of surfaces N, i.e.
  combined = sum_i(f_i * v_i) / N. This is the established arithmetic of the
  coupler and is kept bit-for-bit; with fractions summing to 1 it is not a
  conventional weighted mean.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict

import numpy as np

from pycoupler import constants as const

from .api import surface_simulations
from .exceptions import FractionSumError, MissingFieldError

# ------------------------------
# Same-grid helpers
# ------------------------------


def dummy_remap(dest: np.ndarray, source) -> np.ndarray:
    """Copy `source` into `dest` (both on the boundary space)."""
    dest[...] = source
    return dest


def binary_mask(x, threshold: float = const.FRACTION_EPS) -> np.ndarray:
    """1 where x > threshold, else 0 (same dtype as x)."""
    x = np.asarray(x)
    dtype = x.dtype if np.issubdtype(x.dtype, np.floating) else np.float64
    return (x > threshold).astype(dtype)


def combine_surfaces(combined: np.ndarray, fractions: Dict[str, Any], fields: Dict[str, Any]) -> np.ndarray:
    """
    combined = (sum_i fractions[i] * fields[i]) / N, N = number of surfaces.

    Fractions and fields are keyed by surface name; values may be arrays on
    the boundary space or scalars.
    """
    if set(fractions) != set(fields):
        raise ValueError(f"fractions {sorted(fractions)} and fields {sorted(fields)} name different surfaces")
    n = len(fields)
    if n == 0:
        raise ValueError("combine_surfaces needs at least one surface")
    acc = np.zeros(np.shape(combined), dtype=np.result_type(combined, np.float64))
    for name, value in fields.items():
        acc = acc + np.asarray(fractions[name]) * np.asarray(value)
    combined[...] = acc / n
    return combined


def fraction_sum(model_sims: Dict[str, Any]) -> np.ndarray:
    surfaces = surface_simulations(model_sims)
    total = None
    for sim in surfaces.values():
        f = np.asarray(sim.get_field("area_fraction"), dtype=np.float64)
        total = f.copy() if total is None else total + f
    return total


def check_fraction_sum(model_sims: Dict[str, Any], tol: float = const.FRACTION_SUM_TOL) -> None:
    """Raise FractionSumError unless the surface fractions sum to 1 in every column."""
    total = fraction_sum(model_sims)
    if total is None:
        raise FractionSumError("no surface simulations to combine")
    err = np.abs(total - 1.0)
    if not np.all(err <= tol):
        j, i = np.unravel_index(int(np.argmax(err)), err.shape)
        raise FractionSumError(
            f"surface area fractions sum to {total[j, i]:.12g} at column ({j}, {i}); expected 1"
        )


def update_surface_fractions(cs) -> None:
    """
    Recompute and redistribute surface area fractions.

      ice   = max(min(ice, 1 - land), 0)
      ocean = max(1 - land - ice, 0)

    Land is fixed; ice comes from the ice model (e.g. prescribed SIC); ocean
    takes the remainder. Raises FractionSumError if the result does not sum
    to 1.
    """
    sims = cs.model_sims
    space = cs.boundary_space
    land = sims.get("land")
    ice = sims.get("ice")
    ocean = sims.get("ocean")

    land_f = np.asarray(land.get_field("area_fraction")) if land is not None else space.zeros()
    ice_f = space.zeros()
    if ice is not None:
        ice_f = np.maximum(np.minimum(ice.get_field("area_fraction"), 1.0 - land_f), 0.0)
        ice.update_field("area_fraction", ice_f)
    if ocean is not None:
        ocean_f = np.maximum(1.0 - land_f - ice_f, 0.0)
        ocean.update_field("area_fraction", ocean_f)

    check_fraction_sum(sims)


# ------------------------------
# Spatial remapping (lat-lon -> boundary space)
# ------------------------------


@dataclass
class LatLonSpace:
    """Coordinates of an external regular lat-lon grid (degrees)."""

    lat: np.ndarray
    lon: np.ndarray


def _to_0360(lon_arr):
    lon = np.asarray(lon_arr, dtype=float).copy()
    lon = np.mod(lon, 360.0)
    lon[lon < 0] += 360.0
    return lon


def remap(field, source_space, dest_space, method: str = "linear") -> np.ndarray:
    """
    Interpolate a (lat, lon) field from `source_space` onto `dest_space`.

    Source coordinates may be descending in latitude or use [-180, 180)
    longitudes; a duplicated seam column (0 and 360) is dropped.
    """
    try:
        from scipy.interpolate import RegularGridInterpolator
    except Exception as e:
        raise RuntimeError("SciPy is required for regridding. Please install 'scipy'.") from e

    src = np.asarray(field, dtype=float)
    lat = np.asarray(source_space.lat, dtype=float)
    lon = _to_0360(source_space.lon)
    if src.shape != (lat.size, lon.size):
        raise ValueError(f"field shape {src.shape} does not match source grid {(lat.size, lon.size)}")

    if lat.size > 1 and not np.all(np.diff(lat) > 0):
        order = np.argsort(lat)
        lat = lat[order]
        src = src[order, :]
    order = np.argsort(lon, kind="stable")
    lon = lon[order]
    src = src[:, order]
    keep = np.concatenate([[True], np.diff(lon) > 1e-9])
    lon = lon[keep]
    src = src[:, keep]

    tgt_lat = dest_space.lat_mesh.ravel()
    tgt_lon = dest_space.lon_mesh.ravel()

    if lat.size == 1 or lon.size == 1:
        # Degenerate source: nearest neighbour in the remaining direction
        j = np.abs(lat[None, :] - tgt_lat[:, None]).argmin(axis=1)
        dlon = np.abs(((lon[None, :] - tgt_lon[:, None]) + 180.0) % 360.0 - 180.0)
        i = dlon.argmin(axis=1)
        return src[j, i].reshape(dest_space.shape).astype(dest_space.dtype)

    # Build cyclic extension in longitude to avoid seam artifacts
    lon_ext = np.concatenate([lon - 360.0, lon, lon + 360.0])
    field_ext = np.concatenate([src, src, src], axis=1)
    interp = RegularGridInterpolator(
        (lat, lon_ext), field_ext,
        bounds_error=False,
        fill_value=None,
        method=method,
    )
    pts_lat = np.clip(tgt_lat, lat.min(), lat.max())
    vals = interp(np.stack([pts_lat, tgt_lon], axis=-1)).reshape(dest_space.shape)
    return vals.astype(dest_space.dtype)


# ------------------------------
# Land fraction
# ------------------------------


def resolve_data_file(path: str) -> str:
    """
    Return `path` if it exists, else its low-resolution sibling
    (`name_lowres.ext`) with a warning; raise FileNotFoundError otherwise.
    """
    if os.path.isfile(path):
        return path
    root, ext = os.path.splitext(path)
    lowres = f"{root}_lowres{ext}"
    if os.path.isfile(lowres):
        print(f"[Regridder] {path} not found; falling back to low-resolution data {lowres}")
        return lowres
    raise FileNotFoundError(f"Data file not found: {path} (also tried {lowres})")


def read_latlon_field(path: str, varname: str):
    """Read a 2D (lat, lon) variable plus its coordinates from a NetCDF file."""
    try:
        from netCDF4 import Dataset
    except Exception as e:
        raise RuntimeError("netCDF4 is required to read data files. Please install 'netCDF4'.") from e
    with Dataset(path, "r") as ds:
        ds.set_auto_mask(False)
        if varname not in ds.variables:
            raise MissingFieldError(path, varname)
        lat = np.array(ds.variables["lat"][:], dtype=float)
        lon = np.array(ds.variables["lon"][:], dtype=float)
        data = np.array(ds.variables[varname][:], dtype=float)
    return LatLonSpace(lat=lat, lon=lon), data


def land_fraction_from_file(path: str, space, varname: str = "LSMASK", mono_surface: bool = False) -> np.ndarray:
    """Land fraction on `space` from a land-sea mask file (binary if mono_surface)."""
    src_space, data = read_latlon_field(resolve_data_file(path), varname)
    frac = np.clip(remap(data, src_space, space), 0.0, 1.0)
    if mono_surface:
        frac = binary_mask(frac, threshold=0.5)
    return frac.astype(space.dtype)


def idealized_land_fraction(space, mono_surface: bool = False) -> np.ndarray:
    """
    Two idealized continents: 30E-120E between 60S and 60N, and 200E-260E
    between 10N and 70N, with a one-cell transition band of partial land.
    """
    lat = space.lat_mesh
    lon = space.lon_mesh
    frac = space.zeros()

    def _box(lon0, lon1, lat0, lat1):
        inside_lon = np.clip(np.minimum(lon - lon0, lon1 - lon) / space.dlon + 0.5, 0.0, 1.0)
        inside_lat = np.clip(np.minimum(lat - lat0, lat1 - lat) / space.dlat + 0.5, 0.0, 1.0)
        return inside_lon * inside_lat

    frac = np.maximum(frac, _box(30.0, 120.0, -60.0, 60.0))
    frac = np.maximum(frac, _box(200.0, 260.0, 10.0, 70.0))
    if mono_surface:
        frac = binary_mask(frac, threshold=0.5)
    return frac.astype(space.dtype)


# ------------------------------
# Persistence (NetCDF)
# ------------------------------


def persisted_filename(path: str, date: datetime) -> str:
    return f"{path}_{date:%Y%m%dT%H%M%S}.nc"


def write_to_persisted(path: str, varname: str, date: datetime, field, space=None) -> str:
    """
    Write `field` as variable `varname` into the file for (`path`, `date`).

    The file is created on first use and appended to afterwards; an existing
    variable of the same name is overwritten. Scalars become 0-d variables.
    Values are stored in double precision so reads return what was written.
    """
    try:
        from netCDF4 import Dataset
    except Exception as e:
        raise RuntimeError("netCDF4 is required for persistence. Please install 'netCDF4'.") from e

    fname = persisted_filename(path, date)
    os.makedirs(os.path.dirname(fname) or ".", exist_ok=True)
    data = np.asarray(field, dtype=np.float64)
    mode = "a" if os.path.isfile(fname) else "w"
    with Dataset(fname, mode) as ds:
        if mode == "w":
            ds.setncattr("title", "pycoupler persisted fields")
            ds.setncattr("date", date.strftime("%Y-%m-%dT%H:%M:%S"))
        if data.ndim == 2:
            nlat, nlon = data.shape
            if "lat" not in ds.dimensions:
                ds.createDimension("lat", nlat)
                ds.createDimension("lon", nlon)
                if space is not None:
                    vlat = ds.createVariable("lat", "f8", ("lat",))
                    vlon = ds.createVariable("lon", "f8", ("lon",))
                    vlat[:] = space.lat
                    vlon[:] = space.lon
            elif (len(ds.dimensions["lat"]), len(ds.dimensions["lon"])) != (nlat, nlon):
                raise ValueError(f"{varname}: shape {data.shape} does not match file grid in {fname}")
            dims = ("lat", "lon")
        elif data.ndim == 0:
            dims = ()
        else:
            raise ValueError(f"{varname}: only scalars and (lat, lon) fields can be persisted, got ndim={data.ndim}")

        if varname in ds.variables:
            var = ds.variables[varname]
        else:
            var = ds.createVariable(varname, "f8", dims)
        var[...] = data
    return fname


def read_from_persisted(path: str, varname: str, date: datetime) -> np.ndarray:
    """Read variable `varname` from the file for (`path`, `date`)."""
    try:
        from netCDF4 import Dataset
    except Exception as e:
        raise RuntimeError("netCDF4 is required for persistence. Please install 'netCDF4'.") from e

    fname = persisted_filename(path, date)
    if not os.path.isfile(fname):
        raise FileNotFoundError(f"No persisted file for {path!r} at {date}: {fname}")
    with Dataset(fname, "r") as ds:
        ds.set_auto_mask(False)
        if varname not in ds.variables:
            raise MissingFieldError(fname, varname)
        var = ds.variables[varname]
        if var.ndim == 0:
            return np.array(var.getValue(), dtype=np.float64)
        return np.array(var[:], dtype=np.float64)
