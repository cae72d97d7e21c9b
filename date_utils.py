from __future__ import annotations

import calendar
from datetime import date, timedelta
from typing import Iterator, Tuple

# Day numbers count whole days since 1970-01-01 so span math stays in plain floats.
_EPOCH = date(1970, 1, 1)

ONE_DAY = 1.0


def date_to_x(d: date) -> float:
    """
    Convert a date to a day number.
    Unit: days since 1970-01-01 (float).
    """
    return float((d - _EPOCH).days)


def block_span_inclusive(start: date, end: date) -> Tuple[float, float]:
    """
    Inclusive end-date semantics:
      - A same-day entry spans 1 day of width.
      - Interval is [start, end + 1 day) in day-number units.
    """
    x0 = date_to_x(start)
    x1 = date_to_x(end + timedelta(days=1))
    return x0, x1


def days_inclusive(start: date, end: date) -> int:
    return (end - start).days + 1


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def month_start(d: date) -> date:
    return date(d.year, d.month, 1)


def month_end(d: date) -> date:
    return date(d.year, d.month, days_in_month(d.year, d.month))


def add_months(d: date, months: int) -> date:
    """Shift by whole months, clamping the day to the target month's length (Jan 31 + 1 -> Feb 28/29)."""
    idx = d.year * 12 + (d.month - 1) + months
    year, month0 = divmod(idx, 12)
    day = min(d.day, days_in_month(year, month0 + 1))
    return date(year, month0 + 1, day)


def quarter_start(d: date) -> date:
    qm = ((d.month - 1) // 3) * 3 + 1
    return date(d.year, qm, 1)


def week_start(d: date) -> date:
    # Weeks start on Monday (Mon=0..Sun=6).
    return d - timedelta(days=d.weekday())


def is_weekend(d: date) -> bool:
    return d.weekday() >= 5


def iter_days(start: date, end: date) -> Iterator[date]:
    cur = start
    while cur <= end:
        yield cur
        cur += timedelta(days=1)


def iter_month_starts(start: date, end: date) -> Iterator[date]:
    cur = month_start(start)
    while cur <= end:
        yield cur
        cur = add_months(cur, 1)


def iter_week_starts(start: date, end: date) -> Iterator[date]:
    cur = week_start(start)
    while cur <= end:
        yield cur
        cur += timedelta(days=7)
