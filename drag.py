from __future__ import annotations

import logging
import math
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from entry_store import EntryStore
from errors import DragInFlightError, EntryNotFoundError, ItineraryError, LockedEntryError, PersistenceError
from itinerary_models import Entry, ViewMode
from lifecycle import is_effectively_locked

logger = logging.getLogger(__name__)

# Horizontal scale of the timeline view, per view mode.
DEFAULT_PIXELS_PER_DAY: Dict[str, float] = {
    "day": 48.0,
    "week": 24.0,
    "month": 32.0,
    "quarter": 12.0,
    "year": 2.0,
}


def pixels_per_day_for(view_mode: ViewMode) -> float:
    return DEFAULT_PIXELS_PER_DAY[view_mode]


def day_offset(pixel_delta: float, pixels_per_day: float) -> int:
    """Snap a pixel delta to whole days, rounding halves away from zero."""
    if pixels_per_day <= 0:
        raise ValueError("pixels_per_day must be positive.")
    days = abs(pixel_delta) / pixels_per_day
    return int(math.copysign(math.floor(days + 0.5), pixel_delta))


def shifted_range(entry: Entry, days: int) -> Tuple[date, date]:
    """Both endpoints move by the same offset, so the duration never changes."""
    delta = timedelta(days=days)
    return entry.start_date + delta, entry.end_date + delta


class DragPhase(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    APPLIED = "applied"
    ROLLED_BACK = "rolled_back"
    REJECTED = "rejected"
    DISCARDED = "discarded"


@dataclass(frozen=True)
class DragResult:
    """
    Outcome of one drag gesture.

    entry is the stored entry after an applied drag, and the untouched
    pre-drag entry otherwise (None when the id was unknown).
    """

    entry_id: str
    phase: DragPhase
    entry: Optional[Entry] = None
    error: Optional[ItineraryError] = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.phase is DragPhase.APPLIED

    def unwrap(self) -> Entry:
        if self.error is not None:
            raise self.error
        if self.entry is None:
            raise EntryNotFoundError(self.entry_id)
        return self.entry


def _done(result: DragResult) -> "Future[DragResult]":
    fut: Future = Future()
    fut.set_result(result)
    return fut


class DragRescheduler:
    """
    Turns drag gestures into store updates.

    One request per entry may be in flight; a second drag on the same entry is
    rejected until the first resolves. Nothing local changes until the store
    confirms, so a failed request leaves the prior position in place. After
    close(), late results are discarded instead of applied.
    """

    def __init__(
        self,
        store: EntryStore,
        lookup: Callable[[str], Optional[Entry]],
        *,
        on_applied: Optional[Callable[[Entry], None]] = None,
        timeout_s: float = 10.0,
        max_attempts: int = 3,
        backoff_s: float = 0.25,
        max_workers: int = 4,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1.")
        self._store = store
        self._lookup = lookup
        self._on_applied = on_applied
        self.timeout_s = timeout_s
        self.max_attempts = max_attempts
        self.backoff_s = backoff_s

        self._lock = threading.Lock()
        self._closed = False
        self._phases: Dict[str, DragPhase] = {}
        self._pending: Dict[str, Tuple[date, date]] = {}
        self._workers = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="drag")
        self._io = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="drag-io")

    # -----------------
    # State
    # -----------------

    @property
    def closed(self) -> bool:
        return self._closed

    def phase(self, entry_id: str) -> DragPhase:
        """Current phase of the entry's latest drag (IDLE if it was never dragged)."""
        with self._lock:
            return self._phases.get(entry_id, DragPhase.IDLE)

    def is_pending(self, entry_id: str) -> bool:
        with self._lock:
            return entry_id in self._pending

    def pending_ranges(self) -> Dict[str, Tuple[date, date]]:
        """Optimistic (start, end) of every in-flight drag, for display only."""
        with self._lock:
            return dict(self._pending)

    # -----------------
    # Drags
    # -----------------

    def submit_drag(self, entry_id: str, pixel_delta: float, pixels_per_day: float) -> "Future[DragResult]":
        days = day_offset(pixel_delta, pixels_per_day)
        entry = self._lookup(entry_id)

        if entry is None:
            return _done(DragResult(entry_id, DragPhase.REJECTED, error=EntryNotFoundError(entry_id)))
        if is_effectively_locked(entry):
            logger.info("Drag rejected: entry %s is locked", entry_id)
            return _done(DragResult(entry_id, DragPhase.REJECTED, entry=entry, error=LockedEntryError(entry_id)))
        if days == 0:
            return _done(DragResult(entry_id, DragPhase.IDLE, entry=entry))

        new_start, new_end = shifted_range(entry, days)
        with self._lock:
            if self._closed:
                logger.info("Drag discarded: rescheduler is closed (entry %s)", entry_id)
                return _done(DragResult(entry_id, DragPhase.DISCARDED, entry=entry))
            if entry_id in self._pending:
                logger.info("Drag rejected: entry %s already has a request in flight", entry_id)
                return _done(DragResult(entry_id, DragPhase.REJECTED, entry=entry, error=DragInFlightError(entry_id)))
            self._pending[entry_id] = (new_start, new_end)
            self._phases[entry_id] = DragPhase.PENDING

        logger.info("Drag submitted: entry %s moves %+d day(s) to %s..%s", entry_id, days, new_start, new_end)
        return self._workers.submit(self._run, entry, {"start_date": new_start, "end_date": new_end})

    def reschedule_by_drag(self, entry_id: str, pixel_delta: float, pixels_per_day: float) -> DragResult:
        """Blocking form of submit_drag."""
        return self.submit_drag(entry_id, pixel_delta, pixels_per_day).result()

    def _run(self, entry: Entry, fields: Mapping[str, Any]) -> DragResult:
        updated: Optional[Entry] = None
        error: Optional[PersistenceError] = None
        attempts = 0

        if not self._closed:
            try:
                updated, error, attempts = self._persist(entry.id, fields)
            except Exception as e:
                logger.exception("Store raised an unexpected error for entry %s", entry.id)
                error = PersistenceError(f"Update of entry {entry.id} failed: {e}", entry_id=entry.id)

        with self._lock:
            self._pending.pop(entry.id, None)
            if self._closed:
                self._phases[entry.id] = DragPhase.DISCARDED
                logger.info("Drag result for entry %s discarded: view was closed", entry.id)
                return DragResult(entry.id, DragPhase.DISCARDED, entry=entry, attempts=attempts)

            if error is not None:
                self._phases[entry.id] = DragPhase.ROLLED_BACK
                logger.warning("Drag rolled back for entry %s: %s", entry.id, error)
                return DragResult(entry.id, DragPhase.ROLLED_BACK, entry=entry, error=error, attempts=attempts)

            self._phases[entry.id] = DragPhase.APPLIED
            if self._on_applied is not None:
                self._on_applied(updated)

        logger.info("Drag applied for entry %s after %d attempt(s)", entry.id, attempts)
        return DragResult(entry.id, DragPhase.APPLIED, entry=updated, attempts=attempts)

    def _persist(
        self, entry_id: str, fields: Mapping[str, Any]
    ) -> Tuple[Optional[Entry], Optional[PersistenceError], int]:
        """
        One logical update with a bounded policy: each attempt times out after
        timeout_s, and only transient failures are retried, up to max_attempts.

        Returns (stored entry, None, attempts) or (None, last error, attempts).
        """
        last_error: Optional[PersistenceError] = None
        attempt = 0
        for attempt in range(1, self.max_attempts + 1):
            if self._closed:
                break
            if attempt > 1:
                time.sleep(self.backoff_s * (attempt - 1))
            fut = self._io.submit(self._store.update_entry, entry_id, dict(fields))
            try:
                return fut.result(timeout=self.timeout_s), None, attempt
            except FuturesTimeoutError:
                fut.cancel()
                last_error = PersistenceError(
                    f"Update of entry {entry_id} timed out after {self.timeout_s:g}s.", entry_id=entry_id, transient=True
                )
            except PersistenceError as e:
                last_error = e
            if not last_error.transient:
                break
            logger.info("Attempt %d for entry %s failed (%s)", attempt, entry_id, last_error)
        return None, last_error, attempt

    def close(self, *, wait: bool = False) -> None:
        """Tear down: in-flight requests may finish, but their results are no longer applied."""
        with self._lock:
            self._closed = True
        self._workers.shutdown(wait=wait)
        self._io.shutdown(wait=wait)

    def __enter__(self) -> "DragRescheduler":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
