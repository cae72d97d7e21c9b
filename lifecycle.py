from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date
from typing import Any, Dict, List

from itinerary_models import TERMINAL_STATUSES, Entry

logger = logging.getLogger(__name__)


def should_auto_complete(entry: Entry, today: date) -> bool:
    """
    True when the entry's range has fully elapsed and nobody has taken manual control of it.

    An explicit unlock (lock_override) is sticky: once a user has unlocked an
    entry the automatic pass never touches it again, so it cannot re-lock it.
    """
    if entry.lock_override:
        return False
    if entry.status in TERMINAL_STATUSES:
        return False
    return entry.end_date < today


def apply_auto_completion(entries: Iterable[Entry], today: date) -> List[Entry]:
    """
    Past entries auto-complete and lock.

    Pure and idempotent: completed entries are terminal, so a second pass over
    the output finds nothing to change. Untouched entries are returned as-is.
    """
    out: List[Entry] = []
    completed = 0
    for e in entries:
        if should_auto_complete(e, today):
            out.append(e.model_copy(update={"status": "completed", "is_locked": True}))
            completed += 1
        else:
            out.append(e)
    if completed:
        logger.info("Auto-completed %d elapsed entr%s (as of %s)", completed, "y" if completed == 1 else "ies", today)
    return out


def is_effectively_locked(entry: Entry) -> bool:
    """Locked entries, and completed ones the user has not explicitly unlocked, cannot be moved."""
    if entry.is_locked:
        return True
    return entry.status == "completed" and not entry.lock_override


def unlock_fields() -> Dict[str, Any]:
    """Store update for an explicit user unlock; the override keeps later automatic passes from relocking."""
    return {"is_locked": False, "lock_override": True}


def lock_fields() -> Dict[str, Any]:
    """Store update for an explicit relock; hands the entry back to automatic completion."""
    return {"is_locked": True, "lock_override": False}
