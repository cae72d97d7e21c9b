from datetime import date

import pytest

from buckets import generate_buckets
from errors import InvalidRangeError, UnknownResourceError
from itinerary_models import Entry, LaneAssignment, TimeBucket
from layout import check_range, clip_to_bucket, intersects, layout_entries, map_position

LANE0 = LaneAssignment(entry_id="X", lane_index=0, lane_count=1)


def _entry(eid, start, end, vessels=("V1",)):
    return Entry(id=eid, title=eid, resource_ids=vessels, start_date=start, end_date=end)


def _month(year, month):
    return next(b for b in generate_buckets("year", date(year, 1, 1), today=date(year, 1, 1)) if b.start.month == month)


def test_entry_covering_bucket_maps_to_full_height():
    bucket = _month(2026, 4)
    p = map_position(_entry("X", date(2026, 3, 20), date(2026, 5, 3)), bucket, LANE0)
    assert p.top_percent == pytest.approx(0.0)
    assert p.height_percent == pytest.approx(100.0)
    assert p.clipped_start == date(2026, 4, 1)
    assert p.clipped_end == date(2026, 4, 30)


def test_entry_inside_bucket_offsets_by_days():
    bucket = _month(2026, 4)  # 30 days
    p = map_position(_entry("X", date(2026, 4, 16), date(2026, 4, 30)), bucket, LANE0)
    assert p.top_percent == pytest.approx(50.0)
    assert p.height_percent == pytest.approx(50.0)


def test_short_entry_gets_minimum_height():
    bucket = _month(2026, 1)  # 31 days, one day is ~3.2%
    p = map_position(_entry("X", date(2026, 1, 10), date(2026, 1, 10)), bucket, LANE0, min_visible_height_percent=5.0)
    assert p.height_percent == pytest.approx(5.0)
    assert p.top_percent == pytest.approx(9 / 31 * 100)


def test_minimum_height_near_bucket_end_stays_inside():
    bucket = _month(2026, 1)
    p = map_position(_entry("X", date(2026, 1, 31), date(2026, 1, 31)), bucket, LANE0, min_visible_height_percent=10.0)
    assert p.height_percent == pytest.approx(10.0)
    assert p.top_percent + p.height_percent <= 100.0 + 1e-9
    assert p.top_percent == pytest.approx(90.0)


def test_single_day_bucket_fills_cell():
    bucket = generate_buckets("month", date(2026, 1, 1), today=date(2026, 1, 1))[4]
    p = map_position(_entry("X", date(2025, 12, 20), date(2026, 2, 1)), bucket, LaneAssignment(entry_id="X", lane_index=1, lane_count=2))
    assert (p.top_percent, p.height_percent) == (0.0, 100.0)
    assert (p.lane_index, p.lane_count) == (1, 2)


@pytest.mark.parametrize("mode", ["day", "week", "month", "quarter", "year"])
def test_geometry_stays_in_bounds(mode):
    entries = [
        _entry("A", date(2026, 1, 1), date(2026, 1, 1)),
        _entry("B", date(2025, 12, 25), date(2026, 1, 3)),
        _entry("C", date(2026, 1, 2), date(2026, 3, 31)),
        _entry("D", date(2026, 1, 31), date(2026, 2, 1)),
    ]
    for bucket in generate_buckets(mode, date(2026, 1, 1), today=date(2026, 1, 1)):
        for p in layout_entries(entries, "V1", bucket):
            assert 0.0 <= p.top_percent <= 100.0
            assert 0.0 <= p.height_percent <= 100.0
            assert p.top_percent + p.height_percent <= 100.0 + 1e-9
            assert bucket.start <= p.clipped_start <= p.clipped_end <= bucket.end


def test_intersection_and_clipping():
    bucket = _month(2026, 2)
    e = _entry("X", date(2026, 1, 30), date(2026, 2, 2))
    assert intersects(e, bucket)
    assert clip_to_bucket(e, bucket) == (date(2026, 2, 1), date(2026, 2, 2))
    assert not intersects(_entry("Y", date(2026, 3, 1), date(2026, 3, 2)), bucket)


def test_layout_only_uses_entries_on_the_vessel():
    bucket = _month(2026, 2)
    entries = [
        _entry("A", date(2026, 2, 1), date(2026, 2, 5), vessels=("V1",)),
        _entry("B", date(2026, 2, 1), date(2026, 2, 5), vessels=("V2", "V1")),
        _entry("C", date(2026, 2, 1), date(2026, 2, 5), vessels=("V2",)),
    ]
    placed = layout_entries(entries, "V1", bucket)
    assert [p.entry_id for p in placed] == ["A", "B"]
    assert [p.entry_id for p in layout_entries(entries, "V2", bucket)] == ["B", "C"]


def test_inverted_range_is_refused_not_swapped():
    bad = Entry.model_construct(
        id="BAD", title="bad", resource_ids=("V1",), start_date=date(2026, 2, 10), end_date=date(2026, 2, 1),
        status="draft", is_locked=False, lock_override=False,
    )
    with pytest.raises(InvalidRangeError) as exc:
        check_range(bad)
    assert exc.value.entry_id == "BAD"
    with pytest.raises(InvalidRangeError):
        layout_entries([bad], "V1", _month(2026, 2))


def test_unknown_vessel_refused_when_registry_given():
    bucket = _month(2026, 2)
    e = _entry("G", date(2026, 2, 1), date(2026, 2, 3), vessels=("V1", "V9"))
    assert len(layout_entries([e], "V1", bucket)) == 1
    with pytest.raises(UnknownResourceError) as exc:
        layout_entries([e], "V1", bucket, known_resource_ids={"V1"})
    assert exc.value.resource_id == "V9"


def test_bucket_rejects_inconsistent_day_count():
    with pytest.raises(ValueError):
        TimeBucket(key="k", label="k", short_label="k", start=date(2026, 1, 1), end=date(2026, 1, 3), day_count=2)
