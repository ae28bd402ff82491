"""
Run modes and the prescribed inputs they carry.

Modes
- Amip: open system. SST, sea-ice concentration and CO2 are prescribed from
  time-varying inputs evaluated once per coupling step; the ocean is a
  cache-backed stub and the water albedo callback is active. Not
  conservative, so no conservation checks.
- SlabPlanet (+ Aqua / Terra / Eisenman): closed systems with evolving slab
  surfaces and no external forcing besides insolation. Aqua has no land,
  Terra is all land, Eisenman replaces ocean + ice by one sea-ice model.

TimeVaryingInput
- Records (t_k, field_k) interpolated linearly in time, held constant
  outside the record span; or an analytic function of t.
- from_netcdf reads a (time, lat, lon) variable, converts its time axis with
  netCDF4.num2date and remaps each record onto the boundary space.
- read_co2_text reads monthly mean CO2 records in ppm (NOAA Mauna Loa
  format: year, month, decimal date, average, ...) into mol/mol.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Sequence

import numpy as np

from pycoupler import constants as const

from .exceptions import ConfigurationError
from .regridder import LatLonSpace, binary_mask, remap, resolve_data_file

# ---------------------------
# Time-varying inputs
# ---------------------------


class TimeVaryingInput:
    def __init__(self, times: Optional[Sequence[float]] = None, values: Optional[Sequence[Any]] = None,
                 function: Optional[Callable[[float], Any]] = None, name: str = "input") -> None:
        self.name = name
        self.function = function
        if function is None:
            if times is None or values is None or len(times) == 0:
                raise ValueError(f"{name}: a TimeVaryingInput needs records or a function")
            if len(times) != len(values):
                raise ValueError(f"{name}: {len(times)} times but {len(values)} records")
            order = np.argsort(np.asarray(times, dtype=float), kind="stable")
            self.times = np.asarray(times, dtype=float)[order]
            self.values = [np.asarray(values[k], dtype=np.float64) for k in order]
        else:
            self.times = None
            self.values = None

    def __call__(self, t: float):
        if self.function is not None:
            return self.function(float(t))
        times = self.times
        if t <= times[0]:
            return self.values[0]
        if t >= times[-1]:
            return self.values[-1]
        k = int(np.searchsorted(times, t, side="right")) - 1
        w = (t - times[k]) / (times[k + 1] - times[k])
        return (1.0 - w) * self.values[k] + w * self.values[k + 1]

    def evaluate(self, dest: np.ndarray, t: float) -> np.ndarray:
        """Write the input at time t into `dest` (broadcasting scalars)."""
        dest[...] = self(t)
        return dest

    @classmethod
    def from_netcdf(cls, path: str, varname: str, space, reference_date: datetime,
                    preprocess: Optional[Callable[[np.ndarray], np.ndarray]] = None) -> TimeVaryingInput:
        try:
            from netCDF4 import Dataset, num2date
        except Exception as e:
            raise RuntimeError("netCDF4 is required to read prescribed inputs. Please install 'netCDF4'.") from e

        fname = resolve_data_file(path)
        with Dataset(fname, "r") as ds:
            ds.set_auto_mask(False)
            if varname not in ds.variables:
                raise KeyError(f"{fname} has no variable {varname!r}")
            vtime = ds.variables["time"]
            dates = num2date(
                vtime[:], units=vtime.units, calendar=getattr(vtime, "calendar", "standard"),
                only_use_cftime_datetimes=False, only_use_python_datetimes=True,
            )
            src = LatLonSpace(
                lat=np.array(ds.variables["lat"][:], dtype=float),
                lon=np.array(ds.variables["lon"][:], dtype=float),
            )
            data = np.array(ds.variables[varname][:], dtype=float)
        if data.ndim == 2:
            data = data[None, ...]
        times = [(d - reference_date).total_seconds() for d in np.atleast_1d(dates)]
        records = []
        for rec in data:
            if preprocess is not None:
                rec = preprocess(rec)
            records.append(remap(rec, src, space))
        print(f"[Regridder] {varname}: {len(records)} records from {fname}")
        return cls(times, records, name=varname)


def read_co2_text(path: str, reference_date: datetime) -> TimeVaryingInput:
    """Monthly CO2 records (ppm, 4th column), dated mid-month, as mol/mol."""
    times, values = [], []
    with open(path, "r") as fh:
        for line in fh:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            cols = line.split()
            year, month = int(float(cols[0])), int(float(cols[1]))
            date = datetime(year, month, 1) + timedelta(days=14)
            times.append((date - reference_date).total_seconds())
            values.append(float(cols[3]) * 1e-6)
    if not times:
        raise ValueError(f"No CO2 records in {path}")
    return TimeVaryingInput(times, values, name="co2")


def analytic_sst_input(space) -> TimeVaryingInput:
    """Seasonal SST (K): a meridional profile whose warm belt follows the sun."""
    phi = np.deg2rad(space.lat_mesh)
    year = const.YEAR_DAYS * const.DAY_SECONDS

    def sst(t: float) -> np.ndarray:
        season = np.sin(2.0 * np.pi * t / year)
        return 271.35 + 30.8 * np.cos(phi) ** 2 + 2.0 * season * np.sin(phi)

    return TimeVaryingInput(function=sst, name="SST")


def analytic_sic_input(space) -> TimeVaryingInput:
    """Sea-ice concentration (fraction): polar caps poleward of 70 degrees, +/- 5 degrees seasonally."""
    lat = space.lat_mesh
    year = const.YEAR_DAYS * const.DAY_SECONDS

    def sic(t: float) -> np.ndarray:
        season = np.sin(2.0 * np.pi * t / year)
        edge_n = 70.0 + 5.0 * season
        edge_s = -70.0 + 5.0 * season
        return ((lat > edge_n) | (lat < edge_s)).astype(np.float64)

    return TimeVaryingInput(function=sic, name="SEAICE")


def constant_input(value: float, name: str = "input") -> TimeVaryingInput:
    return TimeVaryingInput(times=[0.0], values=[value], name=name)


def get_ice_fraction(sic, mono_surface: bool = False) -> np.ndarray:
    """Ice area fraction from concentration; all-or-nothing for mono-surface runs."""
    sic = np.clip(np.asarray(sic, dtype=np.float64), 0.0, 1.0)
    return binary_mask(sic, threshold=0.5) if mono_surface else sic


# ---------------------------
# Modes
# ---------------------------

SURFACE_ROLES = ("atmos", "land", "ocean", "ice")


@dataclass
class Amip:
    sst_input: TimeVaryingInput
    sic_input: TimeVaryingInput
    co2_input: TimeVaryingInput
    mono_surface: bool = False

    name = "amip"
    required_roles = SURFACE_ROLES
    conserves = False
    water_albedo = True

    def land_fraction(self, land):
        return land

    def evaluate_inputs(self, cs, t: float) -> None:
        """Prescribed SST into the ocean stub, SIC into the ice fraction, CO2 into the atmosphere."""
        space = cs.boundary_space
        sims = cs.model_sims
        sims["ocean"].update_field("surface_temperature", self.sst_input.evaluate(space.zeros(), t))
        sic = self.sic_input.evaluate(space.zeros(), t)
        sims["ice"].update_field("area_fraction", get_ice_fraction(sic, self.mono_surface))
        sims["atmos"].update_field("co2", self.co2_input.evaluate(space.zeros(), t))


@dataclass
class SlabPlanet:
    name = "slabplanet"
    required_roles = SURFACE_ROLES
    conserves = True
    water_albedo = False

    def land_fraction(self, land):
        return land

    def evaluate_inputs(self, cs, t: float) -> None:
        return None


@dataclass
class SlabPlanetAqua(SlabPlanet):
    name = "slabplanet_aqua"

    def land_fraction(self, land):
        return np.zeros_like(land)


@dataclass
class SlabPlanetTerra(SlabPlanet):
    name = "slabplanet_terra"

    def land_fraction(self, land):
        return np.ones_like(land)


@dataclass
class SlabPlanetEisenman(SlabPlanet):
    name = "slabplanet_eisenman"


def make_amip_mode(config, space, date0: datetime) -> Amip:
    """Prescribed inputs from the configured files, or analytic climatologies."""
    if config.sst_file:
        sst = TimeVaryingInput.from_netcdf(config.sst_file, "SST", space, date0,
                                           preprocess=lambda data: data + const.T_FREEZE)
    else:
        print("[Coupler] No SST file configured; using the analytic SST climatology.")
        sst = analytic_sst_input(space)
    if config.sic_file:
        sic = TimeVaryingInput.from_netcdf(config.sic_file, "SEAICE", space, date0,
                                           preprocess=lambda data: data / 100.0)
    else:
        print("[Coupler] No SIC file configured; using analytic polar ice caps.")
        sic = analytic_sic_input(space)
    if config.co2_file:
        co2 = read_co2_text(config.co2_file, date0)
    else:
        co2 = constant_input(config.co2_ppm * 1e-6, name="co2")
    return Amip(sst_input=sst, sic_input=sic, co2_input=co2, mono_surface=config.mono_surface)


_SLAB_MODES = {
    "slabplanet": SlabPlanet,
    "slabplanet_aqua": SlabPlanetAqua,
    "slabplanet_terra": SlabPlanetTerra,
    "slabplanet_eisenman": SlabPlanetEisenman,
}


def make_mode(config, space, date0: datetime):
    if config.mode_name == "amip":
        return make_amip_mode(config, space, date0)
    try:
        return _SLAB_MODES[config.mode_name]()
    except KeyError:
        raise ConfigurationError(f"Unknown mode_name: {config.mode_name!r}") from None
