from __future__ import annotations

import random
import sys
from dataclasses import dataclass
from datetime import date, timedelta
from pathlib import Path
from typing import List, Tuple

# Allow running this file directly via: python scripts/smoke_test.py
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from board import PlanningBoard
from buckets import generate_buckets
from drag import DragPhase
from entry_store import InMemoryEntryStore
from excel_io import build_models, entries_to_frame, read_itinerary_excel, resources_to_frame, view_settings_to_dict, write_itinerary_excel_bytes
from export import export_layout_xlsx_bytes
from itinerary_models import ALL_STATUSES, VIEW_MODES, Entry, Resource, ViewSettings
from lanes import max_concurrency, order_spans, validate_no_overlaps_per_lane
from layout import span_in_bucket


@dataclass
class SmokeResult:
    iteration: int
    vessels: int
    entries: int
    placements: int
    max_lanes: int
    layout_xlsx_bytes: int


def build_random_case(iteration: int) -> Tuple[List[Resource], List[Entry]]:
    random.seed(1000 + iteration)

    year_start = date(2026, 1, 1)
    resources = [Resource(id=f"V{i}", name=f"M/Y Vessel {i}") for i in range(1, 6)]

    entries: List[Entry] = []
    entry_id = 1
    for r in resources:
        for _ in range(15):
            start = year_start + timedelta(days=random.randint(-20, 380))
            dur = random.choice([0, 0, 1, 3, 6, 13, 30, 45])
            crew = [r.id]
            if random.random() < 0.1:
                crew.append(random.choice([x.id for x in resources if x.id != r.id]))
            entries.append(
                Entry(
                    id=f"E{entry_id:04d}",
                    title=f"Trip {entry_id}",
                    resource_ids=tuple(crew),
                    start_date=start,
                    end_date=start + timedelta(days=dur),
                    status=random.choice(ALL_STATUSES),
                    is_locked=random.random() < 0.1,
                )
            )
            entry_id += 1

    return resources, entries


def check_buckets(anchor: date) -> None:
    for mode in VIEW_MODES:
        buckets = generate_buckets(mode, anchor, today=anchor)
        for prev, cur in zip(buckets, buckets[1:]):
            assert cur.start == prev.end + timedelta(days=1), f"{mode}: gap or overlap at {cur.key}"
        assert len({b.key for b in buckets}) == len(buckets), f"{mode}: duplicate bucket keys"


def main() -> None:
    results: List[SmokeResult] = []
    today = date(2026, 7, 1)

    for i in range(1, 6):
        resources, entries = build_random_case(i)

        # Round-trip through the workbook writer/reader to simulate the app flow.
        settings = ViewSettings(view_mode=VIEW_MODES[i % len(VIEW_MODES)], anchor_date=date(2026, 3, 14))
        xlsx = write_itinerary_excel_bytes(
            view_settings_to_dict(settings), resources_to_frame(resources), entries_to_frame(entries)
        )
        models = build_models(read_itinerary_excel(xlsx))
        assert not models.errors, models.errors
        assert len(models.entries) == len(entries)

        check_buckets(settings.anchor_date)

        store = InMemoryEntryStore(models.entries, models.resources)
        with PlanningBoard(store, models.view_settings, today=today, backoff_s=0.0) as board:
            board.load()
            grid = board.grid()
            by_id = {e.id: e for e in board.entries}

            max_lanes = 0
            for r in grid.resources:
                for b in grid.buckets:
                    placements = grid.placements(r.id, b.key)
                    if not placements:
                        continue
                    spans = order_spans(span_in_bucket(by_id[p.entry_id], b) for p in placements)
                    ok, msg = validate_no_overlaps_per_lane(spans, placements)
                    assert ok, msg
                    lane_count = placements[0].lane_count
                    expected = len(spans) if b.is_single_day else max_concurrency(spans)
                    assert lane_count == expected, f"{r.id}/{b.key}: {lane_count} lanes, expected {expected}"
                    for p in placements:
                        assert 0.0 <= p.top_percent <= 100.0
                        assert 0.0 <= p.height_percent <= 100.0
                        assert p.top_percent + p.height_percent <= 100.0 + 1e-9
                    max_lanes = max(max_lanes, lane_count)

            # Everything that ended before today is completed and locked unless explicitly unlocked.
            for e in board.entries:
                if e.end_date < today and e.status != "cancelled" and not e.lock_override:
                    assert e.status == "completed" and e.is_locked, e.id

            movable = next(e for e in board.entries if not e.is_locked and e.status != "completed")
            result = board.shift_entry(movable.id, 3)
            assert result.phase is DragPhase.APPLIED, result
            assert result.entry.duration_days == movable.duration_days

            layout_xlsx = export_layout_xlsx_bytes(board.grid(), by_id, board.timeline())
            assert layout_xlsx[:2] == b"PK"

        results.append(
            SmokeResult(
                iteration=i,
                vessels=len(models.resources),
                entries=len(models.entries),
                placements=grid.placement_count,
                max_lanes=max_lanes,
                layout_xlsx_bytes=len(layout_xlsx),
            )
        )

    print("Smoke test results")
    for r in results:
        print(
            f"- Iter {r.iteration}: vessels={r.vessels}, entries={r.entries}, placements={r.placements}, "
            f"max_lanes={r.max_lanes}, layout_xlsx={r.layout_xlsx_bytes:,} B"
        )

    print("OK: all iterations laid out, rescheduled and exported successfully.")


if __name__ == "__main__":
    main()
