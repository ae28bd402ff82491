"""
diagnostics.py

Time-mean output of coupler fields.

DiagnosticsHandler accumulates a running sum of selected coupler fields at
every coupling step and, whenever the calendar passes the next output date,
appends their means as one record of a NetCDF file with an unlimited time
axis ("seconds since <start date>"). The output cadence defaults to
get_period(t_start, t_end).
"""

from __future__ import annotations

import os
from datetime import datetime
from typing import Dict, Optional, Sequence

import numpy as np

from .time_manager import Period, get_period

DEFAULT_DIAGNOSTIC_FIELDS = (
    "T_S",
    "F_turb_energy",
    "F_turb_moisture",
    "F_radiative",
    "P_liq",
    "P_snow",
    "P_net",
    "radiative_energy_flux_toa",
)


class DiagnosticsHandler:
    def __init__(self, output_dir: str, job_id: str, space, date0: datetime, t_start: float, t_end: float,
                 field_names: Sequence[str] = DEFAULT_DIAGNOSTIC_FIELDS, period: Optional[Period] = None) -> None:
        self.space = space
        self.date0 = date0
        self.field_names = tuple(field_names)
        self.period = period or get_period(t_start, t_end)
        self.path = os.path.join(output_dir, f"diagnostics_{job_id}.nc")
        self.units = f"seconds since {date0:%Y-%m-%d %H:%M:%S}"
        self.next_output = self.period.advance(date0)
        self._sums: Dict[str, np.ndarray] = {name: np.zeros(space.shape) for name in self.field_names}
        self._count = 0
        self.n_records = 0

    def accumulate(self, fields) -> None:
        for name in self.field_names:
            self._sums[name] += np.asarray(fields[name], dtype=np.float64)
        self._count += 1

    def means(self) -> Dict[str, np.ndarray]:
        n = max(self._count, 1)
        return {name: total / n for name, total in self._sums.items()}

    def reset(self) -> None:
        for total in self._sums.values():
            total[...] = 0.0
        self._count = 0

    def is_due(self, date: datetime) -> bool:
        return date >= self.next_output

    def write(self, date: datetime) -> str:
        """Append the current means as a record at `date` and reset the accumulators."""
        try:
            from netCDF4 import Dataset, date2num
        except Exception as e:
            raise RuntimeError("netCDF4 is required for diagnostics output. Please install 'netCDF4'.") from e

        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        mode = "a" if os.path.isfile(self.path) else "w"
        with Dataset(self.path, mode) as ds:
            if mode == "w":
                ds.createDimension("time", None)
                ds.createDimension("lat", self.space.n_lat)
                ds.createDimension("lon", self.space.n_lon)
                vtime = ds.createVariable("time", "f8", ("time",))
                vtime.units = self.units
                vtime.calendar = "standard"
                vlat = ds.createVariable("lat", "f8", ("lat",))
                vlon = ds.createVariable("lon", "f8", ("lon",))
                vlat[:] = self.space.lat
                vlon[:] = self.space.lon
                for name in self.field_names:
                    ds.createVariable(name, "f8", ("time", "lat", "lon"))
                ds.setncattr("title", "pycoupler diagnostics")
                ds.setncattr("period", str(self.period))
            k = len(ds.dimensions["time"])
            ds.variables["time"][k] = date2num(date, self.units, calendar="standard")
            for name, value in self.means().items():
                ds.variables[name][k, :, :] = value
        self.n_records += 1
        self.reset()
        return self.path

    def update(self, cs) -> bool:
        """Accumulate the coupler fields; write a record if an output date was reached."""
        self.accumulate(cs.fields)
        date = cs.dates.date
        if not self.is_due(date):
            return False
        self.write(date)
        ref = self.period.advance(self.next_output)
        while ref <= date:
            ref = self.period.advance(ref)
        self.next_output = ref
        print(f"[Diagnostics] {date:%Y-%m-%d %H:%M:%S}: wrote {str(self.period)} means to {self.path}")
        return True
