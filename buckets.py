from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Iterable, Iterator, List, Optional, Tuple

from date_utils import (
    add_months,
    days_inclusive,
    is_weekend,
    iter_days,
    iter_month_starts,
    iter_week_starts,
    month_end,
    month_start,
    quarter_start,
)
from itinerary_models import TimeBucket, ViewMode

logger = logging.getLogger(__name__)

DAY_VIEW_LENGTH = 7

# How far the toolbar's prev/next buttons move the anchor, per view mode.
# Week view shows a whole year of weeks, so it pages by year.
_NAV_MONTHS = {"year": 12, "week": 12, "quarter": 3, "month": 1}
_NAV_DAYS = {"day": DAY_VIEW_LENGTH}


def _month_bucket(m: date, *, label: str, short_label: str, today: date) -> TimeBucket:
    start = month_start(m)
    end = month_end(m)
    return TimeBucket(
        key=start.strftime("%Y-%m"),
        label=label,
        short_label=short_label,
        start=start,
        end=end,
        day_count=days_inclusive(start, end),
        is_today=start <= today <= end,
    )


def _day_bucket(d: date, *, label: str, short_label: str, today: date) -> TimeBucket:
    return TimeBucket(
        key=d.isoformat(),
        label=label,
        short_label=short_label,
        start=d,
        end=d,
        day_count=1,
        is_today=d == today,
        is_weekend=is_weekend(d),
    )


def _iter_year(anchor: date, today: date) -> Iterator[TimeBucket]:
    for m in iter_month_starts(date(anchor.year, 1, 1), date(anchor.year, 12, 31)):
        yield _month_bucket(m, label=m.strftime("%B"), short_label=m.strftime("%b"), today=today)


def _iter_quarter(anchor: date, today: date) -> Iterator[TimeBucket]:
    q0 = quarter_start(anchor)
    for m in iter_month_starts(q0, month_end(add_months(q0, 2))):
        yield _month_bucket(m, label=m.strftime("%B %Y"), short_label=m.strftime("%b"), today=today)


def _iter_month(anchor: date, today: date) -> Iterator[TimeBucket]:
    for d in iter_days(month_start(anchor), month_end(anchor)):
        label = f"{d:%a} {d.day}"
        yield _day_bucket(d, label=label, short_label=label, today=today)


def _iter_week(anchor: date, today: date) -> Iterator[TimeBucket]:
    """Every Monday-start week touching the anchor's calendar year, including the partial first/last weeks."""
    first = date(anchor.year, 1, 1)
    last = date(anchor.year, 12, 31)
    for i, ws in enumerate(iter_week_starts(first, last), start=1):
        we = ws + timedelta(days=6)
        iso = ws.isocalendar()
        yield TimeBucket(
            key=f"{iso[0]}-W{iso[1]:02d}",
            label=f"W{i}: {ws:%b} {ws.day} - {we:%b} {we.day}",
            short_label=f"W{i}",
            start=ws,
            end=we,
            day_count=7,
            is_today=ws <= today <= we,
        )


def _iter_day(anchor: date, today: date) -> Iterator[TimeBucket]:
    # Starts at the anchor itself, not at the start of its week.
    for d in iter_days(anchor, anchor + timedelta(days=DAY_VIEW_LENGTH - 1)):
        yield _day_bucket(d, label=f"{d:%A}, {d:%B} {d.day}", short_label=f"{d:%a} {d.day}", today=today)


_BUILDERS = {
    "year": _iter_year,
    "quarter": _iter_quarter,
    "month": _iter_month,
    "week": _iter_week,
    "day": _iter_day,
}


def iter_buckets(view_mode: ViewMode, anchor_date: date, *, today: Optional[date] = None) -> Iterator[TimeBucket]:
    """
    Lazily yields the buckets covering the visible window for (view_mode, anchor_date).

    Each call starts a fresh sequence; nothing is cached between calls.
    """
    try:
        builder = _BUILDERS[view_mode]
    except KeyError:
        raise ValueError(f"Unknown view mode: {view_mode!r}. Expected one of: {', '.join(_BUILDERS)}.") from None
    return builder(anchor_date, today or date.today())


def generate_buckets(view_mode: ViewMode, anchor_date: date, *, today: Optional[date] = None) -> List[TimeBucket]:
    buckets = list(iter_buckets(view_mode, anchor_date, today=today))
    logger.debug("Generated %d %s buckets for anchor %s", len(buckets), view_mode, anchor_date)
    return buckets


def bucket_window(buckets: Iterable[TimeBucket]) -> Tuple[date, date]:
    """Returns (first bucket start, last bucket end)."""
    items = list(buckets)
    if not items:
        raise ValueError("bucket_window needs at least one bucket.")
    return items[0].start, items[-1].end


def shift_anchor(view_mode: ViewMode, anchor: date, steps: int = 1) -> date:
    """Move the anchor by `steps` pages of the given view (negative steps go back)."""
    if view_mode in _NAV_DAYS:
        return anchor + timedelta(days=_NAV_DAYS[view_mode] * steps)
    if view_mode in _NAV_MONTHS:
        return add_months(anchor, _NAV_MONTHS[view_mode] * steps)
    raise ValueError(f"Unknown view mode: {view_mode!r}.")
