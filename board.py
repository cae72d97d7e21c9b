"""
Planning board: the loaded itinerary, the vessel registry and the view settings,
run through the layout pipeline on demand.

    store -> auto-completion -> buckets -> lanes per (vessel, bucket) -> positions

Results are cached per (entries version, view settings, today, in-flight drags)
and recomputed only when one of those changes.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Mapping
from concurrent.futures import Future
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from buckets import generate_buckets, shift_anchor
from config import AppConfig
from drag import DragPhase, DragRescheduler, DragResult, pixels_per_day_for
from entry_store import DEFAULT_COMPANY_SCOPE, EntryStore
from errors import InvalidRangeError, UnknownResourceError
from itinerary_models import Entry, Placement, Resource, TimeBucket, ViewMode, ViewSettings
from layout import check_range, check_resources, layout_entries
from lifecycle import apply_auto_completion, lock_fields, unlock_fields
from timeline import TimelineLayout, timeline_rows

logger = logging.getLogger(__name__)

WARNING_KINDS = ("invalid_range", "unknown_resource")


@dataclass(frozen=True)
class GridLayout:
    settings: ViewSettings
    buckets: Tuple[TimeBucket, ...]
    resources: Tuple[Resource, ...]
    # (vessel id, bucket key) -> placements in lane order; empty cells are absent.
    cells: Mapping[Tuple[str, str], Tuple[Placement, ...]]
    # kind -> ids of the entries it applies to.
    warnings: Mapping[str, Tuple[str, ...]]

    def placements(self, resource_id: str, bucket_key: str) -> Tuple[Placement, ...]:
        return self.cells.get((resource_id, bucket_key), ())

    @property
    def placement_count(self) -> int:
        return sum(len(p) for p in self.cells.values())

    @property
    def has_warnings(self) -> bool:
        return any(self.warnings.values())


class PlanningBoard:
    def __init__(
        self,
        store: EntryStore,
        settings: ViewSettings,
        *,
        company_scope: str = DEFAULT_COMPANY_SCOPE,
        today: Optional[date] = None,
        timeout_s: float = 10.0,
        max_attempts: int = 3,
        backoff_s: float = 0.25,
    ) -> None:
        self._store = store
        self._settings = settings
        self.company_scope = company_scope
        self._today = today

        self._lock = threading.RLock()
        self._entries: Dict[str, Entry] = {}
        self._resources: Tuple[Resource, ...] = ()
        self._version = 0
        self._cache_key: Optional[Tuple[Any, ...]] = None
        self._cache: Optional[GridLayout] = None

        self._drags = DragRescheduler(
            store,
            self.get_entry,
            on_applied=self._apply_drag,
            timeout_s=timeout_s,
            max_attempts=max_attempts,
            backoff_s=backoff_s,
        )

    @classmethod
    def from_config(
        cls, store: EntryStore, settings: ViewSettings, config: AppConfig, *, today: Optional[date] = None
    ) -> "PlanningBoard":
        settings = settings.model_copy(update={"min_visible_height_percent": config.min_visible_height_percent})
        return cls(
            store,
            settings,
            company_scope=config.company_scope,
            today=today,
            timeout_s=config.persistence_timeout_s,
            max_attempts=config.persistence_max_attempts,
            backoff_s=config.persistence_backoff_s,
        )

    # -----------------
    # State
    # -----------------

    @property
    def today(self) -> date:
        return self._today or date.today()

    def set_today(self, today: Optional[date]) -> None:
        """Pin "today" (None follows the wall clock). Call load() again to re-run auto-completion."""
        self._today = today

    @property
    def settings(self) -> ViewSettings:
        return self._settings

    @property
    def version(self) -> int:
        return self._version

    @property
    def entries(self) -> Tuple[Entry, ...]:
        with self._lock:
            return tuple(self._entries.values())

    @property
    def resources(self) -> Tuple[Resource, ...]:
        return self._resources

    def get_entry(self, entry_id: str) -> Optional[Entry]:
        with self._lock:
            return self._entries.get(entry_id)

    def load(self) -> None:
        """(Re)read entries and vessels from the store and apply auto-completion as of today."""
        entries = self._store.list_entries(self.company_scope)
        resources = self._store.list_resources(self.company_scope)
        entries = apply_auto_completion(entries, self.today)
        with self._lock:
            self._entries = {e.id: e for e in entries}
            self._resources = tuple(resources)
            self._bump()
        logger.info("Loaded %d entries and %d vessels for scope %s", len(entries), len(resources), self.company_scope)

    def invalidate(self) -> None:
        with self._lock:
            self._cache_key = None
            self._cache = None

    def _bump(self) -> None:
        self._version += 1
        self._cache_key = None
        self._cache = None

    def _replace(self, entry: Entry) -> Entry:
        entry = apply_auto_completion([entry], self.today)[0]
        with self._lock:
            self._entries[entry.id] = entry
            self._bump()
        return entry

    # -----------------
    # View settings
    # -----------------

    def update_settings(self, **changes: Any) -> ViewSettings:
        data = self._settings.model_dump()
        data.update(changes)
        self._settings = ViewSettings.model_validate(data)
        return self._settings

    def set_view_mode(self, view_mode: ViewMode) -> ViewSettings:
        return self.update_settings(view_mode=view_mode)

    def set_anchor(self, anchor_date: date) -> ViewSettings:
        return self.update_settings(anchor_date=anchor_date)

    def set_status_filter(self, statuses: Iterable[str]) -> ViewSettings:
        return self.update_settings(status_filter=tuple(statuses))

    def set_resource_filter(self, resource_ids: Optional[Iterable[str]]) -> ViewSettings:
        return self.update_settings(resource_filter=None if resource_ids is None else tuple(resource_ids))

    def navigate(self, steps: int = 1) -> ViewSettings:
        s = self._settings
        return self.set_anchor(shift_anchor(s.view_mode, s.anchor_date, steps))

    def jump_to_today(self) -> ViewSettings:
        return self.set_anchor(self.today)

    # -----------------
    # Pipeline
    # -----------------

    def visible_resources(self) -> Tuple[Resource, ...]:
        wanted = self._settings.resource_filter
        if wanted is None:
            return self._resources
        return tuple(r for r in self._resources if r.id in wanted)

    def visible_entries(self, pending: Optional[Mapping[str, Tuple[date, date]]] = None) -> List[Entry]:
        """Entries passing the status filter, with in-flight drags shown at their optimistic dates."""
        pending = self._drags.pending_ranges() if pending is None else pending
        statuses = set(self._settings.status_filter)
        out: List[Entry] = []
        for e in self.entries:
            if e.status not in statuses:
                continue
            if e.id in pending:
                start, end = pending[e.id]
                e = e.model_copy(update={"start_date": start, "end_date": end})
            out.append(e)
        return out

    def _screen(self, entries: Iterable[Entry]) -> Tuple[List[Entry], Dict[str, Tuple[str, ...]]]:
        """Drop malformed entries and flag ones naming unregistered vessels (their known legs still show)."""
        known = {r.id for r in self._resources}
        found: Dict[str, List[str]] = {kind: [] for kind in WARNING_KINDS}
        valid: List[Entry] = []
        for e in entries:
            try:
                check_range(e)
            except InvalidRangeError as exc:
                logger.warning("Excluding entry: %s", exc)
                found["invalid_range"].append(e.id)
                continue
            try:
                check_resources(e, known)
            except UnknownResourceError as exc:
                logger.warning("Partially excluding entry: %s", exc)
                found["unknown_resource"].append(e.id)
            valid.append(e)
        return valid, {kind: tuple(ids) for kind, ids in found.items()}

    def grid(self) -> GridLayout:
        # Read outside the board lock: the rescheduler calls back into the board while holding its own.
        pending = self._drags.pending_ranges()
        today = self.today
        settings = self._settings
        key = (self._version, settings, today, tuple(sorted(pending.items())))

        with self._lock:
            if self._cache is not None and self._cache_key == key:
                return self._cache

        entries, warnings = self._screen(self.visible_entries(pending))
        resources = self.visible_resources()
        buckets = tuple(generate_buckets(settings.view_mode, settings.anchor_date, today=today))

        by_resource: Dict[str, List[Entry]] = {r.id: [] for r in resources}
        for e in entries:
            for rid in e.resource_ids:
                if rid in by_resource:
                    by_resource[rid].append(e)

        cells: Dict[Tuple[str, str], Tuple[Placement, ...]] = {}
        for r in resources:
            for b in buckets:
                placed = layout_entries(
                    by_resource[r.id], r.id, b, min_visible_height_percent=settings.min_visible_height_percent
                )
                if placed:
                    cells[(r.id, b.key)] = tuple(placed)

        layout = GridLayout(settings=settings, buckets=buckets, resources=resources, cells=cells, warnings=warnings)
        logger.debug(
            "Grid recomputed: %d buckets x %d vessels, %d placements", len(buckets), len(resources), layout.placement_count
        )
        with self._lock:
            self._cache_key = key
            self._cache = layout
        return layout

    def timeline(self, *, pixels_per_day: Optional[float] = None) -> TimelineLayout:
        entries, _ = self._screen(self.visible_entries())
        s = self._settings
        return timeline_rows(
            entries, self.visible_resources(), s.view_mode, s.anchor_date, today=self.today, pixels_per_day=pixels_per_day
        )

    # -----------------
    # Edits
    # -----------------

    def submit_drag(
        self, entry_id: str, pixel_delta: float, pixels_per_day: Optional[float] = None
    ) -> "Future[DragResult]":
        ppd = pixels_per_day if pixels_per_day is not None else pixels_per_day_for(self._settings.view_mode)
        return self._drags.submit_drag(entry_id, pixel_delta, ppd)

    def reschedule_by_drag(
        self, entry_id: str, pixel_delta: float, pixels_per_day: Optional[float] = None
    ) -> DragResult:
        return self.submit_drag(entry_id, pixel_delta, pixels_per_day).result()

    def shift_entry(self, entry_id: str, days: int) -> DragResult:
        """Move an entry by whole days through the same path a drag takes."""
        ppd = pixels_per_day_for(self._settings.view_mode)
        return self.reschedule_by_drag(entry_id, days * ppd, ppd)

    def drag_phase(self, entry_id: str) -> DragPhase:
        return self._drags.phase(entry_id)

    def _apply_drag(self, entry: Entry) -> None:
        self._replace(entry)

    def unlock(self, entry_id: str) -> Entry:
        """Explicit unlock; sticky, so later auto-completion passes leave the entry alone."""
        entry = self._replace(self._store.update_entry(entry_id, unlock_fields()))
        logger.info("Entry %s unlocked", entry_id)
        return entry

    def lock(self, entry_id: str) -> Entry:
        entry = self._replace(self._store.update_entry(entry_id, lock_fields()))
        logger.info("Entry %s locked", entry_id)
        return entry

    def create_entry(self, fields: Mapping[str, Any]) -> Entry:
        return self._replace(self._store.create_entry(fields))

    def delete_entry(self, entry_id: str) -> None:
        self._store.delete_entry(entry_id)
        with self._lock:
            self._entries.pop(entry_id, None)
            self._bump()

    def close(self) -> None:
        self._drags.close()

    def __enter__(self) -> "PlanningBoard":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
