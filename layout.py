from __future__ import annotations

from collections.abc import Iterable
from datetime import date
from typing import Dict, List, Optional, Tuple

from date_utils import ONE_DAY, block_span_inclusive
from errors import InvalidRangeError, UnknownResourceError
from itinerary_models import Entry, LaneAssignment, Placement, TimeBucket
from lanes import LaneSpan, assign_lanes, order_spans

# Keeps zero-length and very short trips visible (and clickable) in long buckets.
DEFAULT_MIN_VISIBLE_HEIGHT_PERCENT = 4.0


def check_range(entry: Entry) -> None:
    """Refuse entries whose end precedes their start (possible only when validation was bypassed)."""
    if entry.end_date < entry.start_date:
        raise InvalidRangeError(entry.id, entry.start_date, entry.end_date)


def check_resources(entry: Entry, known_resource_ids: Iterable[str]) -> None:
    known = set(known_resource_ids)
    for rid in entry.resource_ids:
        if rid not in known:
            raise UnknownResourceError(entry.id, rid)


def intersects(entry: Entry, bucket: TimeBucket) -> bool:
    return entry.start_date <= bucket.end and entry.end_date >= bucket.start


def clip_to_bucket(entry: Entry, bucket: TimeBucket) -> Tuple[date, date]:
    return max(entry.start_date, bucket.start), min(entry.end_date, bucket.end)


def span_in_bucket(entry: Entry, bucket: TimeBucket) -> LaneSpan:
    start, end = clip_to_bucket(entry, bucket)
    x0, x1 = block_span_inclusive(start, end)
    return LaneSpan(entry_id=entry.id, start=x0, end=x1)


def map_position(
    entry: Entry,
    bucket: TimeBucket,
    lane: LaneAssignment,
    *,
    min_visible_height_percent: float = DEFAULT_MIN_VISIBLE_HEIGHT_PERCENT,
) -> Placement:
    """
    Geometry of one entry inside one bucket.

    Single-day buckets: the block fills the cell (top 0, height 100) and only
    the lane tells overlapping blocks apart.

    Multi-day buckets: offsets are fractions of the bucket's span, both measured
    as half-open day intervals, so an entry covering the whole bucket maps to
    exactly (0, 100). The minimum height can push a short block at the very end
    of a bucket past 100%; its top is then pulled up to keep it inside.
    """
    clipped_start, clipped_end = clip_to_bucket(entry, bucket)

    if bucket.is_single_day:
        top = 0.0
        height = 100.0
    else:
        b0, b1 = block_span_inclusive(bucket.start, bucket.end)
        duration = max(b1 - b0, ONE_DAY)
        e0, e1 = block_span_inclusive(clipped_start, clipped_end)
        top = (e0 - b0) / duration * 100.0
        height = max((e1 - e0) / duration * 100.0, min_visible_height_percent)
        height = min(height, 100.0)
        if top + height > 100.0:
            top = max(100.0 - height, 0.0)

    return Placement(
        entry_id=entry.id,
        lane_index=lane.lane_index,
        lane_count=lane.lane_count,
        top_percent=top,
        height_percent=height,
        clipped_start=clipped_start,
        clipped_end=clipped_end,
    )


def entries_for_cell(
    entries: Iterable[Entry],
    resource_id: str,
    bucket: TimeBucket,
    *,
    known_resource_ids: Optional[Iterable[str]] = None,
) -> List[Entry]:
    """
    Entries on `resource_id` that intersect `bucket`.

    Raises InvalidRangeError for a malformed entry, and UnknownResourceError for
    one that also names a vessel outside `known_resource_ids` (when given).
    """
    known = None if known_resource_ids is None else set(known_resource_ids)
    out: List[Entry] = []
    for e in entries:
        if resource_id not in e.resource_ids:
            continue
        check_range(e)
        if known is not None:
            check_resources(e, known)
        if intersects(e, bucket):
            out.append(e)
    return out


def layout_entries(
    entries: Iterable[Entry],
    resource_id: str,
    bucket: TimeBucket,
    *,
    known_resource_ids: Optional[Iterable[str]] = None,
    min_visible_height_percent: float = DEFAULT_MIN_VISIBLE_HEIGHT_PERCENT,
) -> List[Placement]:
    """Lane assignment + geometry for every entry in one (vessel, bucket) cell, in lane order."""
    cell = entries_for_cell(entries, resource_id, bucket, known_resource_ids=known_resource_ids)
    if not cell:
        return []

    by_id: Dict[str, Entry] = {e.id: e for e in cell}
    spans = order_spans(span_in_bucket(e, bucket) for e in cell)
    lanes = assign_lanes(spans, single_day=bucket.is_single_day)

    return [
        map_position(by_id[lane.entry_id], bucket, lane, min_visible_height_percent=min_visible_height_percent)
        for lane in lanes
    ]
