"""
Calendar bookkeeping and periodic callbacks of the coupling loop.

Purpose
- Map the model clock t (seconds) onto calendar dates.
- Provide simple periodic timers (hourly / monthly) that fire an action
  against the coupled simulation when the current date reaches their
  reference date.

Design
- A callback is {interval, action, ref_date, active}. trigger_callback fires
  the action once when current_date >= ref_date, then moves ref_date past the
  current date by whole intervals.
- Month arithmetic keeps the day of month, clamped to the month's length.

Notes
- These are plain timers; there is no cron-like expression support.
"""

from __future__ import annotations

import calendar
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable

from .exceptions import ConfigurationError

_TIME_UNITS = {
    "secs": 1.0,
    "sec": 1.0,
    "s": 1.0,
    "mins": 60.0,
    "min": 60.0,
    "hours": 3600.0,
    "hour": 3600.0,
    "h": 3600.0,
    "days": 86400.0,
    "day": 86400.0,
    "d": 86400.0,
}


def time_to_seconds(value) -> float:
    """
    Convert "400secs", "3hours", "10days" (or a bare number of seconds) to seconds.
    """
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip().lower()
    m = re.fullmatch(r"([-+]?\d*\.?\d+(?:[eE][-+]?\d+)?)\s*([a-z]*)", text)
    if m is None:
        raise ConfigurationError(f"Cannot parse time value: {value!r}")
    number, unit = m.groups()
    if unit == "":
        return float(number)
    if unit not in _TIME_UNITS:
        raise ConfigurationError(f"Unknown time unit {unit!r} in {value!r}")
    return float(number) * _TIME_UNITS[unit]


def add_months(date: datetime, n: int) -> datetime:
    """Shift a date by n calendar months, clamping the day to the month length."""
    month_index = date.month - 1 + int(n)
    year = date.year + month_index // 12
    month = month_index % 12 + 1
    day = min(date.day, calendar.monthrange(year, month)[1])
    return date.replace(year=year, month=month, day=day)


def first_day_of_month(date: datetime) -> datetime:
    return datetime(date.year, date.month, 1)


def current_date(cs: Any, t: float) -> datetime:
    """Calendar date of model time t (seconds since the start date)."""
    return cs.dates.date0 + timedelta(seconds=float(t))


# ---------------------------
# Periodic callbacks
# ---------------------------


@dataclass
class HourlyCallback:
    """Timer with an interval of `hours` hours."""

    hours: float
    action: Callable[[Any], Any]
    ref_date: datetime
    active: bool = True
    name: str = "hourly"

    def advance(self, date: datetime) -> datetime:
        return date + timedelta(hours=float(self.hours))


@dataclass
class MonthlyCallback:
    """Timer with an interval of `months` calendar months."""

    months: int
    action: Callable[[Any], Any]
    ref_date: datetime
    active: bool = True
    name: str = "monthly"

    def advance(self, date: datetime) -> datetime:
        return add_months(date, self.months)


def trigger_callback(cs: Any, callback) -> bool:
    """
    Fire `callback.action(cs)` if the callback is active and due.

    Returns True when the action ran. The reference date is advanced by whole
    intervals until it lies after the current date, so a long coupling step
    fires a callback once rather than replaying a backlog.
    """
    if not callback.active:
        return False
    date = cs.dates.date
    if date < callback.ref_date:
        return False
    callback.action(cs)
    callback.ref_date = next_ref_date(callback, date)
    return True


def next_ref_date(callback, date: datetime) -> datetime:
    """First reference date after `date`, in whole intervals from the current one."""
    ref = callback.advance(callback.ref_date)
    while ref <= date:
        ref = callback.advance(ref)
    return ref


def update_firstdayofmonth(cs: Any) -> None:
    """Monthly action: move the first-day-of-month cursor and flag the new month."""
    cs.dates.date1 = first_day_of_month(cs.dates.date)
    cs.dates.new_month = True
    print(f"[TimeManager] {cs.dates.date:%Y-%m-%d %H:%M:%S} (new month)")


# ---------------------------
# Output cadence
# ---------------------------


@dataclass(frozen=True)
class Period:
    """An output period of `n` units, unit in {"months", "days", "hours"}."""

    n: int
    unit: str = field(default="days")

    def advance(self, date: datetime) -> datetime:
        if self.unit == "months":
            return add_months(date, self.n)
        if self.unit == "days":
            return date + timedelta(days=self.n)
        if self.unit == "hours":
            return date + timedelta(hours=self.n)
        raise ValueError(f"Unknown period unit: {self.unit!r}")

    def __str__(self) -> str:
        return f"{self.n}{self.unit}"


def get_period(t_start: float, t_end: float) -> Period:
    """
    Diagnostics cadence from the run length:
      >= 1 year  -> monthly
      >= 30 days -> every 10 days
      >= 1 day   -> daily
      otherwise  -> hourly
    """
    span = float(t_end) - float(t_start)
    day = 86400.0
    if span >= 365.0 * day:
        return Period(1, "months")
    if span >= 30.0 * day:
        return Period(10, "days")
    if span >= day:
        return Period(1, "days")
    return Period(1, "hours")
