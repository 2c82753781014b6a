"""
Working-hours calculator.

Single source of truth for: period ranges, working-day counts, available hours.
"""
import calendar
from datetime import date, datetime, timedelta
from typing import Iterable, Optional, Set, Tuple, Union

import pandas as pd

DateLike = Union[date, datetime, pd.Timestamp, str]

HOURS_PER_DAY = 8.0
PERIODS = ("week", "month")


def to_date(value: DateLike) -> date:
    """Normalise any date-ish value to a plain date."""
    if isinstance(value, pd.Timestamp):
        return value.date()
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return pd.Timestamp(value).date()


def to_timestamp(value: Optional[DateLike] = None) -> pd.Timestamp:
    """Naive UTC timestamp for ``value`` (now when omitted); offsets are converted to UTC."""
    stamp = pd.Timestamp(value) if value is not None else pd.Timestamp(datetime.now())
    if stamp.tzinfo is not None:
        stamp = stamp.tz_convert("UTC").tz_localize(None)
    return stamp


def holiday_set(holidays: Optional[Iterable[DateLike]]) -> Set[date]:
    """Holiday dates as a set; unparsable entries are dropped."""
    result: Set[date] = set()
    if holidays is None:
        return result
    for value in holidays:
        if value is None or (isinstance(value, float) and pd.isna(value)) or value is pd.NaT:
            continue
        try:
            result.add(to_date(value))
        except (ValueError, TypeError):
            continue
    return result


def working_days(start: DateLike,
                 end: DateLike,
                 holidays: Optional[Iterable[DateLike]] = None) -> int:
    """Weekdays in [start, end] inclusive that are not holidays."""
    start_d, end_d = to_date(start), to_date(end)
    excluded = holiday_set(holidays)

    days = 0
    current = start_d
    while current <= end_d:
        # Monday=0 .. Sunday=6
        if current.weekday() < 5 and current not in excluded:
            days += 1
        current += timedelta(days=1)
    return days


def working_hours(start: DateLike,
                  end: DateLike,
                  holidays: Optional[Iterable[DateLike]] = None,
                  hours_per_day: float = HOURS_PER_DAY) -> float:
    """
    Available working hours in [start, end] inclusive.

    Saturdays, Sundays and holiday dates are excluded; each remaining day
    counts ``hours_per_day`` (8 by default). An inverted range yields 0.
    """
    return working_days(start, end, holidays) * hours_per_day


def period_range(period: str, reference_date: Optional[DateLike] = None) -> Tuple[date, date]:
    """
    Resolve a named period to a concrete [start, end] range.

    - week: today .. today + 6 days
    - month: today .. last day of the current month
    """
    today = to_date(reference_date) if reference_date is not None else date.today()

    if period == "week":
        return today, today + timedelta(days=6)
    if period == "month":
        last_day = calendar.monthrange(today.year, today.month)[1]
        return today, today.replace(day=last_day)
    raise ValueError(f"Unknown period: {period!r} (expected one of {PERIODS})")
