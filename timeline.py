from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Dict, List, Optional, Tuple

from date_utils import add_months, block_span_inclusive, days_inclusive, month_end, month_start, week_start
from drag import pixels_per_day_for
from itinerary_models import Entry, Resource, ViewMode
from lanes import LaneSpan, assign_lanes, order_spans
from lifecycle import is_effectively_locked

# Bars narrower than this are widened so they stay clickable.
MIN_BAR_WIDTH_PX = 8.0


def timeline_window(view_mode: ViewMode, anchor: date) -> Tuple[date, date]:
    """
    Continuous date window shown by the timeline for a view mode.

    day: the anchor's Monday-start week. week: four weeks from that Monday.
    month: the anchor's month. quarter: three months from the anchor's month.
    year: twelve months from the anchor's month.
    """
    if view_mode == "day":
        start = week_start(anchor)
        return start, start + timedelta(days=6)
    if view_mode == "week":
        start = week_start(anchor)
        return start, start + timedelta(days=27)
    if view_mode == "month":
        return month_start(anchor), month_end(anchor)
    if view_mode == "quarter":
        start = month_start(anchor)
        return start, month_end(add_months(start, 2))
    if view_mode == "year":
        start = month_start(anchor)
        return start, month_end(add_months(start, 11))
    raise ValueError(f"Unknown view mode: {view_mode!r}.")


@dataclass(frozen=True)
class TimelineBar:
    entry_id: str
    title: str
    status: str
    lane_index: int
    lane_count: int
    left_px: float
    width_px: float
    clipped_start: date
    clipped_end: date
    is_locked: bool
    is_grouped: bool


@dataclass(frozen=True)
class TimelineRow:
    resource: Resource
    bars: Tuple[TimelineBar, ...]

    @property
    def lane_count(self) -> int:
        return max((b.lane_count for b in self.bars), default=0)


@dataclass(frozen=True)
class TimelineLayout:
    start: date
    end: date
    pixels_per_day: float
    rows: Tuple[TimelineRow, ...]
    # None when today falls outside the window.
    today_offset_px: Optional[float] = None

    @property
    def total_days(self) -> int:
        return days_inclusive(self.start, self.end)

    @property
    def total_width_px(self) -> float:
        return self.total_days * self.pixels_per_day


def _row_bars(
    entries: List[Entry], window_start: date, window_end: date, pixels_per_day: float, total_width: float
) -> Tuple[TimelineBar, ...]:
    x_origin, _ = block_span_inclusive(window_start, window_start)
    by_id: Dict[str, Entry] = {}
    spans: List[LaneSpan] = []
    for e in entries:
        if e.end_date < window_start or e.start_date > window_end:
            continue
        by_id[e.id] = e
        x0, x1 = block_span_inclusive(max(e.start_date, window_start), min(e.end_date, window_end))
        spans.append(LaneSpan(entry_id=e.id, start=x0, end=x1))

    bars: List[TimelineBar] = []
    ordered = order_spans(spans)
    for span, lane in zip(ordered, assign_lanes(ordered)):
        e = by_id[span.entry_id]
        left = (span.start - x_origin) * pixels_per_day
        width = max((span.end - span.start) * pixels_per_day, MIN_BAR_WIDTH_PX)
        width = min(width, total_width - left)
        bars.append(
            TimelineBar(
                entry_id=e.id,
                title=e.title,
                status=e.status,
                lane_index=lane.lane_index,
                lane_count=lane.lane_count,
                left_px=left,
                width_px=width,
                clipped_start=max(e.start_date, window_start),
                clipped_end=min(e.end_date, window_end),
                is_locked=is_effectively_locked(e),
                is_grouped=e.is_grouped,
            )
        )
    return tuple(bars)


def timeline_rows(
    entries: Iterable[Entry],
    resources: Iterable[Resource],
    view_mode: ViewMode,
    anchor: date,
    *,
    today: Optional[date] = None,
    pixels_per_day: Optional[float] = None,
) -> TimelineLayout:
    """
    One row of horizontal bars per vessel, in the order `resources` is given.

    Overlapping bars on the same vessel get separate lanes, exactly as in the
    grid; entries outside the window are left out and the rest are clipped to it.
    """
    start, end = timeline_window(view_mode, anchor)
    ppd = pixels_per_day if pixels_per_day is not None else pixels_per_day_for(view_mode)
    total_days = days_inclusive(start, end)
    total_width = total_days * ppd

    entry_list = list(entries)
    rows = tuple(
        TimelineRow(
            resource=r,
            bars=_row_bars([e for e in entry_list if r.id in e.resource_ids], start, end, ppd, total_width),
        )
        for r in resources
    )

    today = today or date.today()
    today_offset = (today - start).days
    today_px = today_offset * ppd if 0 <= today_offset <= total_days else None

    return TimelineLayout(start=start, end=end, pixels_per_day=ppd, rows=rows, today_offset_px=today_px)
