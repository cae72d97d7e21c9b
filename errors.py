from __future__ import annotations

from datetime import date
from typing import Optional


class ItineraryError(Exception):
    """Base class for every error raised by the itinerary layout engine."""


class InvalidRangeError(ItineraryError, ValueError):
    def __init__(self, entry_id: str, start_date: date, end_date: date) -> None:
        self.entry_id = entry_id
        self.start_date = start_date
        self.end_date = end_date
        super().__init__(
            f"Entry {entry_id}: end_date {end_date.isoformat()} is before start_date {start_date.isoformat()}."
        )


class LockedEntryError(ItineraryError):
    def __init__(self, entry_id: str) -> None:
        self.entry_id = entry_id
        super().__init__(f"Entry {entry_id} is locked and cannot be rescheduled.")


class UnknownResourceError(ItineraryError):
    def __init__(self, entry_id: str, resource_id: str) -> None:
        self.entry_id = entry_id
        self.resource_id = resource_id
        super().__init__(f"Entry {entry_id} references vessel {resource_id}, which is not in the current vessel set.")


class EntryNotFoundError(ItineraryError):
    def __init__(self, entry_id: str) -> None:
        self.entry_id = entry_id
        super().__init__(f"Entry {entry_id} does not exist.")


class DragInFlightError(ItineraryError):
    def __init__(self, entry_id: str) -> None:
        self.entry_id = entry_id
        super().__init__(f"Entry {entry_id} already has a reschedule request in flight.")


class PersistenceError(ItineraryError):
    """
    The entry store could not complete a request.

    transient=True marks failures worth retrying (timeouts, dropped connections).
    """

    def __init__(self, message: str, *, entry_id: Optional[str] = None, transient: bool = False) -> None:
        self.entry_id = entry_id
        self.transient = transient
        super().__init__(message)
