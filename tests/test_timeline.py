from datetime import date

import pytest

from itinerary_models import Entry, Resource
from timeline import MIN_BAR_WIDTH_PX, timeline_rows, timeline_window

V1 = Resource(id="V1", name="M/Y Aurora")
V2 = Resource(id="V2", name="R/V Calypso")


def _entry(eid, start, end, vessels=("V1",), **kw):
    return Entry(id=eid, title=eid, resource_ids=vessels, start_date=start, end_date=end, **kw)


@pytest.mark.parametrize(
    "mode, expected",
    [
        ("day", (date(2026, 4, 6), date(2026, 4, 12))),
        ("week", (date(2026, 4, 6), date(2026, 5, 3))),
        ("month", (date(2026, 4, 1), date(2026, 4, 30))),
        ("quarter", (date(2026, 4, 1), date(2026, 6, 30))),
        ("year", (date(2026, 4, 1), date(2027, 3, 31))),
    ],
)
def test_window_per_view_mode(mode, expected):
    # 2026-04-08 is a Wednesday
    assert timeline_window(mode, date(2026, 4, 8)) == expected


def test_window_rejects_unknown_mode():
    with pytest.raises(ValueError):
        timeline_window("decade", date(2026, 4, 8))


def test_bars_positioned_in_pixels():
    entries = [_entry("A", date(2026, 4, 3), date(2026, 4, 5))]
    tl = timeline_rows(entries, [V1], "month", date(2026, 4, 15), today=date(2026, 4, 15), pixels_per_day=10)

    assert tl.total_days == 30
    assert tl.total_width_px == 300
    (bar,) = tl.rows[0].bars
    assert bar.left_px == 20
    assert bar.width_px == 30
    assert tl.today_offset_px == 140


def test_bars_clipped_to_window_and_outside_entries_dropped():
    entries = [
        _entry("EARLY", date(2026, 3, 28), date(2026, 4, 2)),
        _entry("LATE", date(2026, 4, 29), date(2026, 5, 10)),
        _entry("GONE", date(2026, 5, 1), date(2026, 5, 3)),
    ]
    tl = timeline_rows(entries, [V1], "month", date(2026, 4, 1), today=date(2026, 1, 1), pixels_per_day=10)
    bars = {b.entry_id: b for b in tl.rows[0].bars}

    assert set(bars) == {"EARLY", "LATE"}
    assert (bars["EARLY"].left_px, bars["EARLY"].width_px) == (0, 20)
    assert (bars["LATE"].left_px, bars["LATE"].width_px) == (280, 20)
    assert bars["LATE"].clipped_end == date(2026, 4, 30)
    assert tl.today_offset_px is None


def test_overlapping_bars_get_lanes_and_short_bars_stay_visible():
    entries = [
        _entry("A", date(2026, 1, 1), date(2026, 1, 20)),
        _entry("B", date(2026, 1, 10), date(2026, 1, 10)),
        _entry("C", date(2026, 1, 21), date(2026, 1, 25), vessels=("V1", "V2")),
    ]
    tl = timeline_rows(entries, [V1, V2], "year", date(2026, 1, 1), today=date(2026, 1, 1))
    v1 = {b.entry_id: b for b in tl.rows[0].bars}

    assert (v1["A"].lane_index, v1["B"].lane_index, v1["C"].lane_index) == (0, 1, 0)
    assert tl.rows[0].lane_count == 2
    assert v1["B"].width_px == MIN_BAR_WIDTH_PX  # 1 day at 2 px/day
    assert v1["C"].is_grouped
    assert [b.entry_id for b in tl.rows[1].bars] == ["C"]


def test_locked_flag_follows_effective_lock():
    entries = [_entry("DONE", date(2026, 1, 2), date(2026, 1, 3), status="completed")]
    tl = timeline_rows(entries, [V1], "month", date(2026, 1, 1), today=date(2026, 1, 1))
    assert tl.rows[0].bars[0].is_locked
