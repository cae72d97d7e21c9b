from __future__ import annotations

from datetime import date
from typing import Any, Dict, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

EntryStatus = Literal["draft", "tentative", "confirmed", "postponed", "cancelled", "completed"]
ViewMode = Literal["day", "week", "month", "quarter", "year"]

ALL_STATUSES: Tuple[EntryStatus, ...] = ("draft", "tentative", "confirmed", "postponed", "cancelled", "completed")
VIEW_MODES: Tuple[ViewMode, ...] = ("day", "week", "month", "quarter", "year")

# Statuses the automatic completion pass never touches.
TERMINAL_STATUSES = frozenset({"completed", "cancelled"})

# Display label + block opacity per status (the grid fades drafts and cancelled trips).
STATUS_CONFIG: Dict[str, Dict[str, Any]] = {
    "draft": {"label": "Draft", "opacity": 0.35},
    "tentative": {"label": "Tentative", "opacity": 0.6},
    "confirmed": {"label": "Confirmed", "opacity": 1.0},
    "postponed": {"label": "Postponed", "opacity": 0.5},
    "cancelled": {"label": "Cancelled", "opacity": 0.3},
    "completed": {"label": "Completed", "opacity": 0.75},
}

# Vessel name prefixes dropped from column headers.
_VESSEL_NAME_PREFIXES = ("M/Y ", "R/V ")


def _strip_or_none(v: Any) -> Optional[str]:
    if v is None:
        return None
    v = str(v).strip()
    return v or None


def _split_ids(v: Any) -> Tuple[str, ...]:
    """Accepts a sequence or a comma-separated string; trims, drops blanks, de-duplicates in order."""
    if v is None:
        return ()
    if isinstance(v, str):
        parts = v.split(",")
    else:
        parts = list(v)
    out = []
    for p in parts:
        s = str(p).strip()
        if s and s not in out:
            out.append(s)
    return tuple(out)


class Resource(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str

    @field_validator("id", "name")
    @classmethod
    def _not_empty(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("vessel id and name are required.")
        return v

    @property
    def display_name(self) -> str:
        name = self.name
        for prefix in _VESSEL_NAME_PREFIXES:
            name = name.replace(prefix, "")
        return name


class Entry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    resource_ids: Tuple[str, ...]
    start_date: date
    end_date: date
    status: EntryStatus = "draft"
    is_locked: bool = False
    # Set when a user explicitly unlocks the entry; automatic completion leaves it alone afterwards.
    lock_override: bool = False

    title: str
    group_id: Optional[str] = None
    location: Optional[str] = None
    country: Optional[str] = None
    trip_type: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("id")
    @classmethod
    def _id_not_empty(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("id is required.")
        return v

    @field_validator("resource_ids", mode="before")
    @classmethod
    def _normalize_resource_ids(cls, v: Any) -> Tuple[str, ...]:
        ids = _split_ids(v)
        if not ids:
            raise ValueError("an entry must be assigned to at least one vessel.")
        return ids

    @field_validator("title")
    @classmethod
    def _title_not_empty(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("title is required.")
        return v

    @field_validator("group_id", "location", "country", "trip_type", "notes", mode="before")
    @classmethod
    def _optional_text(cls, v: Any) -> Optional[str]:
        return _strip_or_none(v)

    @model_validator(mode="after")
    def _dates_valid(self) -> "Entry":
        if self.end_date < self.start_date:
            raise ValueError("end_date must be on/after start_date.")
        return self

    @property
    def is_grouped(self) -> bool:
        return len(self.resource_ids) > 1

    @property
    def duration_days(self) -> int:
        return (self.end_date - self.start_date).days + 1


class TimeBucket(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    label: str
    short_label: str
    start: date
    end: date
    day_count: int = Field(ge=1)
    is_today: bool = False
    # Only meaningful for single-day buckets.
    is_weekend: Optional[bool] = None

    @model_validator(mode="after")
    def _span_consistent(self) -> "TimeBucket":
        if self.end < self.start:
            raise ValueError("bucket end must be on/after bucket start.")
        if (self.end - self.start).days + 1 != self.day_count:
            raise ValueError("day_count must match the bucket's inclusive span.")
        return self

    @property
    def is_single_day(self) -> bool:
        return self.day_count == 1

    def contains(self, d: date) -> bool:
        return self.start <= d <= self.end


class LaneAssignment(BaseModel):
    model_config = ConfigDict(frozen=True)

    entry_id: str
    lane_index: int = Field(ge=0)
    lane_count: int = Field(ge=1)

    @model_validator(mode="after")
    def _lane_in_range(self) -> "LaneAssignment":
        if self.lane_index >= self.lane_count:
            raise ValueError("lane_index must be below lane_count.")
        return self


class Placement(LaneAssignment):
    top_percent: float
    height_percent: float
    clipped_start: date
    clipped_end: date


class ViewSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    view_mode: ViewMode = "month"
    anchor_date: date
    status_filter: Tuple[EntryStatus, ...] = ALL_STATUSES
    # None shows every registered vessel.
    resource_filter: Optional[Tuple[str, ...]] = None
    min_visible_height_percent: float = Field(default=4.0, ge=0.0, le=100.0)

    @field_validator("status_filter", mode="before")
    @classmethod
    def _normalize_statuses(cls, v: Any) -> Tuple[str, ...]:
        return _split_ids(v)

    @field_validator("resource_filter", mode="before")
    @classmethod
    def _normalize_resources(cls, v: Any) -> Optional[Tuple[str, ...]]:
        if v is None:
            return None
        return _split_ids(v)
