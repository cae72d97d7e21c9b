from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Iterable, Mapping
from typing import Any, Dict, List, Optional, Protocol

from pydantic import ValidationError

from errors import PersistenceError
from itinerary_models import Entry, Resource

logger = logging.getLogger(__name__)

DEFAULT_COMPANY_SCOPE = "default"

# Fields a plain update may never change.
_IMMUTABLE_FIELDS = frozenset({"id"})


class EntryStore(Protocol):
    """The persistence collaborator. Every failure surfaces as PersistenceError."""

    def list_entries(self, company_scope: str) -> List[Entry]: ...

    def list_resources(self, company_scope: str) -> List[Resource]: ...

    def update_entry(self, entry_id: str, fields: Mapping[str, Any]) -> Entry: ...

    def create_entry(self, fields: Mapping[str, Any]) -> Entry: ...

    def delete_entry(self, entry_id: str) -> None: ...


def _validation_message(ve: ValidationError) -> str:
    parts = []
    for err in ve.errors():
        loc = ".".join(str(x) for x in err.get("loc", []))
        msg = err.get("msg", "Invalid value")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts)


def merge_update(entry: Entry, fields: Mapping[str, Any]) -> Entry:
    """Apply a partial update with full validation (model_copy would skip it)."""
    bad = _IMMUTABLE_FIELDS.intersection(fields)
    if bad:
        raise PersistenceError(f"Cannot update {', '.join(sorted(bad))} of entry {entry.id}.", entry_id=entry.id)
    data = entry.model_dump()
    data.update(fields)
    try:
        updated = Entry.model_validate(data)
    except ValidationError as ve:
        raise PersistenceError(f"Entry {entry.id} rejected: {_validation_message(ve)}", entry_id=entry.id) from ve
    if "resource_ids" in fields and "group_id" not in fields:
        updated = _regroup(updated)
    return updated


def _regroup(entry: Entry) -> Entry:
    """Group id follows the vessel count: set for multi-vessel entries, cleared otherwise."""
    if entry.is_grouped and not entry.group_id:
        return entry.model_copy(update={"group_id": str(uuid.uuid4())})
    if not entry.is_grouped and entry.group_id:
        return entry.model_copy(update={"group_id": None})
    return entry


def build_new_entry(fields: Mapping[str, Any]) -> Entry:
    """Validate creation fields. New entries get an id if none is given; multi-vessel ones get a group id."""
    data: Dict[str, Any] = dict(fields)
    if not str(data.get("id") or "").strip():
        data["id"] = str(uuid.uuid4())
    data.setdefault("status", "draft")
    data.setdefault("is_locked", False)
    try:
        entry = Entry.model_validate(data)
    except ValidationError as ve:
        raise PersistenceError(f"New entry rejected: {_validation_message(ve)}") from ve
    return _regroup(entry)


class InMemoryEntryStore:
    """
    Dict-backed store for a single company scope.

    Thread-safe: drag requests reach it from worker threads.
    """

    def __init__(
        self,
        entries: Iterable[Entry] = (),
        resources: Iterable[Resource] = (),
        *,
        company_scope: str = DEFAULT_COMPANY_SCOPE,
    ) -> None:
        self.company_scope = company_scope
        self._entries: Dict[str, Entry] = {e.id: e for e in entries}
        self._resources: List[Resource] = list(resources)
        self._lock = threading.Lock()
        self.update_calls = 0

    def list_entries(self, company_scope: str = DEFAULT_COMPANY_SCOPE) -> List[Entry]:
        if company_scope != self.company_scope:
            return []
        with self._lock:
            return sorted(self._entries.values(), key=lambda e: (e.start_date, e.id))

    def list_resources(self, company_scope: str = DEFAULT_COMPANY_SCOPE) -> List[Resource]:
        if company_scope != self.company_scope:
            return []
        return sorted(self._resources, key=lambda r: r.name)

    def get_entry(self, entry_id: str) -> Optional[Entry]:
        with self._lock:
            return self._entries.get(entry_id)

    def update_entry(self, entry_id: str, fields: Mapping[str, Any]) -> Entry:
        with self._lock:
            self.update_calls += 1
            current = self._entries.get(entry_id)
            if current is None:
                raise PersistenceError(f"Entry {entry_id} not found.", entry_id=entry_id)
            updated = merge_update(current, fields)
            self._entries[entry_id] = updated
        logger.debug("Updated entry %s: %s", entry_id, sorted(fields))
        return updated

    def create_entry(self, fields: Mapping[str, Any]) -> Entry:
        entry = build_new_entry(fields)
        with self._lock:
            if entry.id in self._entries:
                raise PersistenceError(f"Entry {entry.id} already exists.", entry_id=entry.id)
            self._entries[entry.id] = entry
        logger.debug("Created entry %s", entry.id)
        return entry

    def delete_entry(self, entry_id: str) -> None:
        with self._lock:
            if self._entries.pop(entry_id, None) is None:
                raise PersistenceError(f"Entry {entry_id} not found.", entry_id=entry_id)
        logger.debug("Deleted entry %s", entry_id)
