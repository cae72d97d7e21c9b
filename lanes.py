from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

from itinerary_models import LaneAssignment


@dataclass(frozen=True)
class LaneSpan:
    """A clipped entry inside one (vessel, bucket) cell, as a half-open [start, end) interval in day numbers."""

    entry_id: str
    start: float
    end: float


def order_spans(spans: Iterable[LaneSpan]) -> List[LaneSpan]:
    """Sort by clipped start; ties broken by entry id so the layout is stable."""
    return sorted(spans, key=lambda s: (s.start, s.entry_id))


def assign_lanes(spans: Sequence[LaneSpan], *, single_day: bool = False) -> List[LaneAssignment]:
    """
    Greedy interval partitioning for one vessel inside one bucket.

    `spans` must already be in `order_spans` order. Each span goes to the first
    lane whose last end is <= the span's start, otherwise a new lane opens.
    For interval graphs this uses exactly as many lanes as the largest number
    of spans active at once, so lane_count is the minimum possible.

    Single-day buckets have no sub-day times, so every entry in them overlaps
    every other: lanes are handed out by position and stack horizontally.
    """
    if not spans:
        return []

    if single_day:
        n = len(spans)
        return [LaneAssignment(entry_id=s.entry_id, lane_index=i, lane_count=n) for i, s in enumerate(spans)]

    lane_ends: List[float] = []
    picked: List[Tuple[str, int]] = []

    for s in spans:
        assigned_lane = None
        for lane_idx, last_end in enumerate(lane_ends):
            if last_end <= s.start:
                assigned_lane = lane_idx
                lane_ends[lane_idx] = s.end
                break

        if assigned_lane is None:
            assigned_lane = len(lane_ends)
            lane_ends.append(s.end)

        picked.append((s.entry_id, assigned_lane))

    lane_count = len(lane_ends)
    return [LaneAssignment(entry_id=eid, lane_index=lane, lane_count=lane_count) for eid, lane in picked]


def max_concurrency(spans: Iterable[LaneSpan]) -> int:
    """
    Brute-force sweep: the most spans active on any single day.

    Day numbers are whole days, so checking each integer day start is exhaustive.
    """
    items = list(spans)
    if not items:
        return 0
    first = int(min(s.start for s in items))
    last = int(max(s.end for s in items))
    best = 0
    for day in range(first, last):
        active = sum(1 for s in items if s.start <= day < s.end)
        best = max(best, active)
    return best


def validate_no_overlaps_per_lane(
    spans: Iterable[LaneSpan],
    assignments: Iterable[LaneAssignment],
) -> Tuple[bool, str]:
    """
    Utility for tests/debug: confirms no two spans sharing a lane overlap.

    Returns (ok, message).
    """
    by_id = {s.entry_id: s for s in spans}
    by_lane: Dict[int, List[LaneSpan]] = {}
    for a in assignments:
        if a.entry_id not in by_id:
            return False, f"Lane assignment for unknown entry {a.entry_id}."
        by_lane.setdefault(a.lane_index, []).append(by_id[a.entry_id])

    for lane, lane_spans in by_lane.items():
        prev = None
        for cur in order_spans(lane_spans):
            if prev is not None and prev.end > cur.start:
                return False, f"Overlap detected in lane={lane}: {prev.entry_id} vs {cur.entry_id}"
            prev = cur

    return True, "ok"
