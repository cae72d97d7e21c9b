from datetime import date, timedelta

import pytest

from itinerary_models import Entry
from lifecycle import apply_auto_completion, is_effectively_locked, lock_fields, should_auto_complete, unlock_fields

TODAY = date(2026, 6, 15)
YESTERDAY = TODAY - timedelta(days=1)


def _entry(eid="E1", end=YESTERDAY, **kw):
    kw.setdefault("status", "tentative")
    return Entry(id=eid, title=eid, resource_ids=("V1",), start_date=end - timedelta(days=2), end_date=end, **kw)


def test_yesterday_tentative_becomes_completed_and_locked():
    e = _entry()
    (out,) = apply_auto_completion([e], TODAY)
    assert out.status == "completed"
    assert out.is_locked is True
    # input untouched
    assert e.status == "tentative" and e.is_locked is False


def test_entry_ending_today_is_not_completed():
    e = _entry(end=TODAY)
    (out,) = apply_auto_completion([e], TODAY)
    assert out is e


@pytest.mark.parametrize("status", ["completed", "cancelled"])
def test_terminal_statuses_untouched(status):
    e = _entry(status=status)
    assert apply_auto_completion([e], TODAY)[0] is e


def test_auto_completion_is_idempotent():
    entries = [
        _entry("A"),
        _entry("B", end=TODAY + timedelta(days=3), status="confirmed"),
        _entry("C", status="cancelled"),
        _entry("D", status="draft", lock_override=True),
    ]
    once = apply_auto_completion(entries, TODAY)
    twice = apply_auto_completion(once, TODAY)
    assert twice == once
    assert [e.status for e in once] == ["completed", "confirmed", "cancelled", "draft"]


def test_explicit_unlock_is_sticky():
    completed = apply_auto_completion([_entry()], TODAY)[0]
    unlocked = completed.model_copy(update=unlock_fields())
    assert not is_effectively_locked(unlocked)

    # later passes never relock it
    again = apply_auto_completion([unlocked], TODAY + timedelta(days=30))[0]
    assert again.is_locked is False
    assert again.lock_override is True
    assert not is_effectively_locked(again)


def test_unlocked_past_entry_with_open_status_is_left_alone():
    # User unlocked it and changed the status back; automatic completion stays out of the way.
    e = _entry(status="confirmed", lock_override=True)
    assert should_auto_complete(e, TODAY) is False
    assert apply_auto_completion([e], TODAY)[0] is e


def test_relock_hands_entry_back_to_auto_completion():
    e = _entry(status="confirmed", lock_override=True).model_copy(update=lock_fields())
    assert e.lock_override is False
    assert should_auto_complete(e, TODAY) is True


def test_unlock_without_override_would_be_relocked():
    # Clearing is_locked alone is not an explicit unlock: the next pass locks it again.
    e = _entry(status="confirmed").model_copy(update={"is_locked": False})
    assert apply_auto_completion([e], TODAY)[0].is_locked is True


def test_effective_lock():
    assert is_effectively_locked(_entry(end=TODAY, is_locked=True))
    assert is_effectively_locked(_entry(end=TODAY, status="completed"))
    assert not is_effectively_locked(_entry(end=TODAY, status="completed", lock_override=True))
    assert not is_effectively_locked(_entry(end=TODAY, status="confirmed"))
