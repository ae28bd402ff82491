from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from pycoupler.coupled.exceptions import ConfigurationError
from pycoupler.coupled.state import Dates
from pycoupler.coupled.time_manager import (
    HourlyCallback,
    MonthlyCallback,
    Period,
    add_months,
    current_date,
    get_period,
    time_to_seconds,
    trigger_callback,
    update_firstdayofmonth,
)


def _cs(date):
    return SimpleNamespace(dates=Dates.from_start(date))


def test_time_to_seconds_units():
    assert time_to_seconds("400secs") == 400.0
    assert time_to_seconds("10days") == 864000.0
    assert time_to_seconds("3hours") == 10800.0
    assert time_to_seconds("1.5h") == 5400.0
    assert time_to_seconds(12) == 12.0
    assert time_to_seconds("90") == 90.0
    with pytest.raises(ConfigurationError):
        time_to_seconds("5fortnights")
    with pytest.raises(ConfigurationError):
        time_to_seconds("soon")


def test_add_months_clamps_day_and_wraps_year():
    assert add_months(datetime(2000, 1, 31), 1) == datetime(2000, 2, 29)
    assert add_months(datetime(2001, 1, 31), 1) == datetime(2001, 2, 28)
    assert add_months(datetime(1999, 12, 15, 6), 1) == datetime(2000, 1, 15, 6)
    assert add_months(datetime(2000, 1, 1), -1) == datetime(1999, 12, 1)
    assert add_months(datetime(2000, 3, 1), 12) == datetime(2001, 3, 1)


def test_current_date_offsets_reference_date():
    cs = _cs(datetime(1979, 3, 1))
    assert current_date(cs, 0.0) == datetime(1979, 3, 1)
    assert current_date(cs, 86400.0 + 400.0) == datetime(1979, 3, 2, 0, 6, 40)


def test_hourly_callback_fires_once_per_crossing():
    d0 = datetime(1979, 3, 1)
    cs = _cs(d0)
    fired = []
    cb = HourlyCallback(hours=1, action=lambda s: fired.append(s.dates.date), ref_date=d0 + timedelta(hours=1))

    assert trigger_callback(cs, cb) is False
    cs.dates.date = d0 + timedelta(minutes=59)
    assert trigger_callback(cs, cb) is False

    cs.dates.date = d0 + timedelta(hours=1)
    assert trigger_callback(cs, cb) is True
    assert cb.ref_date == d0 + timedelta(hours=2)

    # a long jump fires once and moves the reference past the current date
    cs.dates.date = d0 + timedelta(hours=5)
    assert trigger_callback(cs, cb) is True
    assert cb.ref_date == d0 + timedelta(hours=6)
    assert len(fired) == 2


def test_inactive_callback_is_noop():
    d0 = datetime(1979, 3, 1)
    cs = _cs(d0 + timedelta(days=3))
    fired = []
    cb = HourlyCallback(hours=1, action=lambda s: fired.append(1), ref_date=d0, active=False)
    assert trigger_callback(cs, cb) is False
    assert fired == []
    assert cb.ref_date == d0


def test_monthly_callback_updates_first_day_of_month():
    cs = _cs(datetime(1979, 3, 1))
    cb = MonthlyCallback(months=1, action=update_firstdayofmonth, ref_date=add_months(cs.dates.date1, 1))

    cs.dates.date = datetime(1979, 3, 31, 23)
    assert trigger_callback(cs, cb) is False
    assert cs.dates.date1 == datetime(1979, 3, 1)

    cs.dates.date = datetime(1979, 4, 1)
    assert trigger_callback(cs, cb) is True
    assert cs.dates.date1 == datetime(1979, 4, 1)
    assert cs.dates.new_month is True
    assert cb.ref_date == datetime(1979, 5, 1)


def test_month_cursor_catches_up_after_long_steps():
    cs = _cs(datetime(1979, 3, 1))
    cb = MonthlyCallback(months=1, action=update_firstdayofmonth, ref_date=add_months(cs.dates.date1, 1))

    # 40-day steps cross two month boundaries between some firings
    for k in range(1, 5):
        cs.dates.date = datetime(1979, 3, 1) + timedelta(days=40 * k)
        trigger_callback(cs, cb)
    assert cs.dates.date == datetime(1979, 8, 8)
    assert cs.dates.date1 == datetime(1979, 8, 1)
    assert cb.ref_date == datetime(1979, 9, 1)


def test_get_period_cadence():
    day = 86400.0
    assert get_period(0.0, 400.0 * day) == Period(1, "months")
    assert get_period(0.0, 60.0 * day) == Period(10, "days")
    assert get_period(0.0, 2.0 * day) == Period(1, "days")
    assert get_period(0.0, 3600.0) == Period(1, "hours")
    assert str(Period(10, "days")) == "10days"
    assert Period(1, "months").advance(datetime(1979, 1, 31)) == datetime(1979, 2, 28)
