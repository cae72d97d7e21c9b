from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from io import BytesIO
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import pandas as pd
from openpyxl import Workbook, load_workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.worksheet.datavalidation import DataValidation
from pydantic import ValidationError

from entry_store import DEFAULT_COMPANY_SCOPE, build_new_entry, merge_update
from errors import InvalidRangeError, PersistenceError
from itinerary_models import ALL_STATUSES, VIEW_MODES, Entry, Resource, ViewSettings

logger = logging.getLogger(__name__)

SETTINGS_KEYS = [
    "company_scope",
    "view_mode",
    "anchor_date",
    "status_filter",
    "resource_filter",
    "min_visible_height_percent",
]

VESSEL_COLUMNS = ["id", "name"]

ENTRY_COLUMNS = [
    "id",
    "title",
    "resource_ids",
    "start_date",
    "end_date",
    "status",
    "is_locked",
    "lock_override",
    "group_id",
    "location",
    "country",
    "trip_type",
    "notes",
]

_DATE_COLUMNS = ("start_date", "end_date")
_BOOL_COLUMNS = ("is_locked", "lock_override")
_TEXT_COLUMNS = ("id", "title", "resource_ids", "status", "group_id", "location", "country", "trip_type", "notes")


@dataclass(frozen=True)
class ExcelPayload:
    settings: Dict[str, Any]
    vessels_df: pd.DataFrame
    entries_df: pd.DataFrame


@dataclass
class WorkbookModels:
    view_settings: Optional[ViewSettings]
    company_scope: str
    resources: List[Resource] = field(default_factory=list)
    entries: List[Entry] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


def _is_blank(value: Any) -> bool:
    """True if value is None/NaN/NaT/pd.NA or an empty/whitespace string."""
    if value is None:
        return True
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    try:
        if pd.isna(value):
            return True
    except (TypeError, ValueError):
        pass
    if isinstance(value, str):
        return value.strip() == ""
    return False


def _text(value: Any) -> Optional[str]:
    """Cell value as stripped text; numeric ids like 101 come back from Excel as numbers."""
    if _is_blank(value):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def _coerce_date(value: Any) -> Optional[date]:
    """Convert a cell value into a Python date (or None). Handles Excel dates, datetimes, strings, and pandas timestamps."""
    if _is_blank(value):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    # pandas sometimes gives Timestamp
    if hasattr(value, "to_pydatetime"):
        dt = value.to_pydatetime()
        if isinstance(dt, datetime):
            return dt.date()
    if isinstance(value, str):
        v = value.strip()
        for fmt in ("%Y-%m-%d", "%d/%m/%Y", "%d-%b-%Y", "%b %d %Y"):
            try:
                return datetime.strptime(v, fmt).date()
            except ValueError:
                continue
    return None


def _coerce_bool(v: Any) -> Optional[bool]:
    if _is_blank(v):
        return None
    if isinstance(v, bool):
        return v
    if isinstance(v, str):
        s = v.strip().lower()
        if s in {"true", "yes", "y", "1"}:
            return True
        if s in {"false", "no", "n", "0"}:
            return False
        return None
    if isinstance(v, (int, float)):
        return bool(v)
    return None


def style_header_row(ws) -> None:
    header_fill = PatternFill(start_color="F0F0F0", end_color="F0F0F0", fill_type="solid")
    for c in ws[1]:
        c.font = Font(bold=True)
        c.fill = header_fill
        c.alignment = Alignment(horizontal="left")
    ws.freeze_panes = "A2"


def build_template_workbook() -> Workbook:
    """Create the blank itinerary workbook (Settings, Vessels, Entries) with dropdown validations."""
    wb = Workbook()
    wb.remove(wb.active)

    ws = wb.create_sheet("Settings")
    ws.append(["key", "value"])
    style_header_row(ws)

    defaults: Dict[str, Any] = {
        "company_scope": DEFAULT_COMPANY_SCOPE,
        "view_mode": "month",
        "anchor_date": date.today(),
        "status_filter": ",".join(ALL_STATUSES),
        "resource_filter": "",
        "min_visible_height_percent": 4.0,
    }
    for key in SETTINGS_KEYS:
        ws.append([key, defaults.get(key, "")])

    ws.column_dimensions["A"].width = 28
    ws.column_dimensions["B"].width = 60

    key_to_row = {ws.cell(row=r, column=1).value: r for r in range(2, ws.max_row + 1)}
    dv_view = DataValidation(type="list", formula1='"' + ",".join(VIEW_MODES) + '"', allow_blank=False)
    ws.add_data_validation(dv_view)
    dv_view.add(ws.cell(row=key_to_row["view_mode"], column=2))
    ws.cell(row=key_to_row["anchor_date"], column=2).number_format = "yyyy-mm-dd"

    ws_v = wb.create_sheet("Vessels")
    ws_v.append(VESSEL_COLUMNS)
    style_header_row(ws_v)
    ws_v.column_dimensions["A"].width = 16
    ws_v.column_dimensions["B"].width = 30

    ws_e = wb.create_sheet("Entries")
    ws_e.append(ENTRY_COLUMNS)
    style_header_row(ws_e)
    col_widths = {
        "A": 14,  # id
        "B": 30,  # title
        "C": 24,  # resource_ids
        "D": 14,  # start
        "E": 14,  # end
        "F": 14,  # status
        "G": 10,  # is_locked
        "H": 14,  # lock_override
        "I": 16,  # group_id
        "J": 22,  # location
        "K": 16,  # country
        "L": 16,  # trip_type
        "M": 40,  # notes
    }
    for col, w in col_widths.items():
        ws_e.column_dimensions[col].width = w

    dv_status = DataValidation(type="list", formula1='"' + ",".join(ALL_STATUSES) + '"', allow_blank=True)
    dv_bool = DataValidation(type="list", formula1='"TRUE,FALSE"', allow_blank=True)
    ws_e.add_data_validation(dv_status)
    ws_e.add_data_validation(dv_bool)
    dv_status.add("F2:F1000")
    dv_bool.add("G2:H1000")

    for cell_range in ("D2:D1000", "E2:E1000"):
        for row in ws_e[cell_range]:
            for cell in row:
                cell.number_format = "yyyy-mm-dd"

    return wb


def template_bytes() -> bytes:
    """Return the template workbook as raw .xlsx bytes (ready for a download button)."""
    wb = build_template_workbook()
    bio = BytesIO()
    wb.save(bio)
    return bio.getvalue()


def _settings_cell_value(key: str, v: Any) -> Any:
    if _is_blank(v):
        return None
    if key == "anchor_date":
        return _coerce_date(v)
    if key in {"status_filter", "resource_filter"} and not isinstance(v, str):
        return ",".join(str(x) for x in v)
    return v


def write_itinerary_excel_bytes(
    settings: Mapping[str, Any],
    vessels_df: Optional[pd.DataFrame],
    entries_df: Optional[pd.DataFrame],
) -> bytes:
    """Serialize settings, vessels and entries into an .xlsx workbook."""
    wb = build_template_workbook()

    ws = wb["Settings"]
    key_to_row = {ws.cell(row=r, column=1).value: r for r in range(2, ws.max_row + 1)}
    for k in SETTINGS_KEYS:
        r = key_to_row[k]
        ws.cell(row=r, column=2, value=_settings_cell_value(k, settings.get(k)))

    ws_v = wb["Vessels"]
    df_v = vessels_df.copy() if vessels_df is not None else pd.DataFrame(columns=VESSEL_COLUMNS)
    for c in VESSEL_COLUMNS:
        if c not in df_v.columns:
            df_v[c] = pd.NA
    for _, row in df_v[VESSEL_COLUMNS].iterrows():
        if _is_blank(row.get("id")) and _is_blank(row.get("name")):
            continue
        ws_v.append([_text(row.get("id")), _text(row.get("name"))])

    ws_e = wb["Entries"]
    df_e = entries_df.copy() if entries_df is not None else pd.DataFrame(columns=ENTRY_COLUMNS)
    for c in ENTRY_COLUMNS:
        if c not in df_e.columns:
            df_e[c] = pd.NA
    # The template pre-formats the date columns, so max_row is past the data: place rows explicitly.
    row_no = 1
    for _, row in df_e[ENTRY_COLUMNS].iterrows():
        if all(_is_blank(row.get(c)) for c in ("id", "title", "start_date", "end_date")):
            continue
        out_row = []
        for c in ENTRY_COLUMNS:
            v = row.get(c)
            if c == "resource_ids" and isinstance(v, (list, tuple)):
                out_row.append(",".join(v))
                continue
            if _is_blank(v):
                out_row.append(None)
            elif c in _DATE_COLUMNS:
                out_row.append(_coerce_date(v) or v)
            elif c in _BOOL_COLUMNS:
                out_row.append(bool(_coerce_bool(v)))
            else:
                out_row.append(str(v).strip() if isinstance(v, str) else v)
        row_no += 1
        for col, v in enumerate(out_row, start=1):
            ws_e.cell(row=row_no, column=col, value=v)
        ws_e.cell(row=row_no, column=4).number_format = "yyyy-mm-dd"
        ws_e.cell(row=row_no, column=5).number_format = "yyyy-mm-dd"

    bio = BytesIO()
    wb.save(bio)
    return bio.getvalue()


def read_itinerary_excel(excel_bytes: bytes) -> ExcelPayload:
    """
    Reads the three-sheet itinerary workbook.

    Returns the raw settings dict plus two DataFrames (Vessels, Entries).
    Model validation happens in build_models so callers can report row-level issues.
    """
    try:
        wb = load_workbook(BytesIO(excel_bytes), data_only=True)
    except Exception as e:
        raise ValueError(f"Unable to read .xlsx file. Make sure it's an Excel workbook (.xlsx). Details: {e}") from e

    required_sheets = {"Settings", "Vessels", "Entries"}
    missing = required_sheets - set(wb.sheetnames)
    if missing:
        raise ValueError(f"Missing required sheet(s): {', '.join(sorted(missing))}. Expected: Settings, Vessels, Entries.")

    settings: Dict[str, Any] = {}
    for row in wb["Settings"].iter_rows(min_row=2, values_only=True):
        if not row or row[0] is None:
            continue
        key_s = str(row[0]).strip()
        if key_s:
            settings[key_s] = row[1] if len(row) > 1 else None

    buf = BytesIO(excel_bytes)
    try:
        vessels_df = pd.read_excel(buf, sheet_name="Vessels", engine="openpyxl", dtype=object)
        buf.seek(0)
        entries_df = pd.read_excel(buf, sheet_name="Entries", engine="openpyxl", dtype=object)
    except Exception as e:
        raise ValueError(f"Unable to parse Vessels/Entries sheets. Details: {e}") from e

    for col in VESSEL_COLUMNS:
        if col not in vessels_df.columns:
            vessels_df[col] = pd.NA
    vessels_df = vessels_df[VESSEL_COLUMNS]

    for col in ENTRY_COLUMNS:
        if col not in entries_df.columns:
            entries_df[col] = pd.NA
    entries_df = entries_df[ENTRY_COLUMNS]

    # Unparsable dates stay as they were typed so the row can be reported and written back untouched.
    for dc in _DATE_COLUMNS:
        entries_df[dc] = entries_df[dc].apply(lambda v: None if _is_blank(v) else (_coerce_date(v) or v))
    for bc in _BOOL_COLUMNS:
        entries_df[bc] = entries_df[bc].apply(lambda v: bool(_coerce_bool(v)))

    if "anchor_date" in settings:
        settings["anchor_date"] = _coerce_date(settings.get("anchor_date"))
    for k in ("company_scope", "view_mode", "status_filter", "resource_filter"):
        if k in settings and settings[k] is not None:
            settings[k] = str(settings[k]).strip()

    return ExcelPayload(settings=settings, vessels_df=vessels_df, entries_df=entries_df)


def _row_errors(prefix: str, ve: ValidationError) -> List[str]:
    out = []
    for err in ve.errors():
        loc = ".".join(str(x) for x in err.get("loc", []))
        out.append(f"{prefix}: {loc} - {err.get('msg', 'Invalid value')}")
    return out


def _entry_row_data(row: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
    """Model fields for one Entries row, or None for a blank row."""
    data = {c: (None if _is_blank(row.get(c)) else row.get(c)) for c in ENTRY_COLUMNS}
    for c in _TEXT_COLUMNS:
        data[c] = _text(data[c])
    if all(data.get(c) is None for c in ("id", "title", "start_date", "end_date")):
        return None
    data["is_locked"] = bool(data.get("is_locked"))
    data["lock_override"] = bool(data.get("lock_override"))
    if data.get("status") is None:
        data.pop("status")
    return data


def build_models(payload: ExcelPayload) -> WorkbookModels:
    """Validate a payload into models. Bad rows are skipped and reported; they never reach the layout."""
    errors: List[str] = []

    s = dict(payload.settings)
    company_scope = str(s.pop("company_scope", None) or DEFAULT_COMPANY_SCOPE).strip() or DEFAULT_COMPANY_SCOPE
    if _is_blank(s.get("resource_filter")):
        s["resource_filter"] = None
    if _is_blank(s.get("status_filter")):
        s.pop("status_filter", None)
    if _is_blank(s.get("min_visible_height_percent")):
        s.pop("min_visible_height_percent", None)
    if _is_blank(s.get("anchor_date")):
        s["anchor_date"] = date.today()
    if isinstance(s.get("view_mode"), str):
        s["view_mode"] = s["view_mode"].lower()

    view_settings: Optional[ViewSettings]
    try:
        view_settings = ViewSettings(**{k: v for k, v in s.items() if k in SETTINGS_KEYS})
    except ValidationError as ve:
        view_settings = None
        errors.extend(_row_errors("Settings", ve))

    resources: List[Resource] = []
    for i, row in payload.vessels_df.iterrows():
        if _is_blank(row.get("id")) and _is_blank(row.get("name")):
            continue
        try:
            resources.append(Resource(id=_text(row.get("id")) or "", name=_text(row.get("name")) or ""))
        except ValidationError as ve:
            errors.extend(_row_errors(f"Vessels row {i + 2}", ve))

    entries: List[Entry] = []
    seen_ids = set()
    for i, row in payload.entries_df.iterrows():
        data = _entry_row_data(row)
        if data is None:
            continue
        label = f"Entries row {i + 2}"
        start, end = data.get("start_date"), data.get("end_date")
        if isinstance(start, date) and isinstance(end, date) and end < start:
            errors.append(f"{label}: {InvalidRangeError(str(data.get('id') or '?'), start, end)}")
            continue
        try:
            entry = Entry(**data)
        except ValidationError as ve:
            errors.extend(_row_errors(label, ve))
            continue
        if entry.id in seen_ids:
            errors.append(f"{label}: duplicate id {entry.id}.")
            continue
        seen_ids.add(entry.id)
        entries.append(entry)

    return WorkbookModels(
        view_settings=view_settings,
        company_scope=company_scope,
        resources=resources,
        entries=entries,
        errors=errors,
    )


def entries_to_frame(entries: List[Entry]) -> pd.DataFrame:
    rows = []
    for e in entries:
        d = e.model_dump()
        d["resource_ids"] = ",".join(e.resource_ids)
        rows.append({c: d.get(c) for c in ENTRY_COLUMNS})
    return pd.DataFrame(rows, columns=ENTRY_COLUMNS)


def resources_to_frame(resources: List[Resource]) -> pd.DataFrame:
    return pd.DataFrame([{"id": r.id, "name": r.name} for r in resources], columns=VESSEL_COLUMNS)


def view_settings_to_dict(view_settings: ViewSettings, company_scope: str = DEFAULT_COMPANY_SCOPE) -> Dict[str, Any]:
    d = view_settings.model_dump()
    d["company_scope"] = company_scope
    return d


class WorkbookEntryStore:
    """
    Entry store backed by an itinerary workbook on disk.

    The workbook is the source of truth: every call re-reads it. A mutation
    touches only the target row of the raw sheets and writes everything else
    back as it was read, including rows that fail validation.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> ExcelPayload:
        try:
            return read_itinerary_excel(self.path.read_bytes())
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Cannot read itinerary workbook {self.path}: {e}") from e

    def _load(self) -> WorkbookModels:
        models = build_models(self._read())
        for msg in models.errors:
            logger.warning("%s: %s", self.path.name, msg)
        return models

    def _write(self, payload: ExcelPayload) -> None:
        data = write_itinerary_excel_bytes(payload.settings, payload.vessels_df, payload.entries_df)
        try:
            self.path.write_bytes(data)
        except OSError as e:
            raise PersistenceError(f"Cannot write itinerary workbook {self.path}: {e}", transient=True) from e

    def _find(self, entries_df: pd.DataFrame, entry_id: str) -> Tuple[Any, Entry]:
        """Row label and model of the row list_entries serves for entry_id (the first valid one)."""
        problem: Optional[ValidationError] = None
        for idx, row in entries_df.iterrows():
            if _text(row.get("id")) != entry_id:
                continue
            try:
                return idx, Entry(**(_entry_row_data(row) or {}))
            except ValidationError as ve:
                problem = problem or ve
        if problem is not None:
            raise PersistenceError(
                f"Entry {entry_id} cannot be changed until its row in {self.path.name} is fixed: "
                + "; ".join(_row_errors(entry_id, problem)),
                entry_id=entry_id,
            ) from problem
        raise PersistenceError(f"Entry {entry_id} not found.", entry_id=entry_id)

    def load_view_settings(self) -> Optional[ViewSettings]:
        with self._lock:
            return self._load().view_settings

    def list_entries(self, company_scope: str = DEFAULT_COMPANY_SCOPE) -> List[Entry]:
        with self._lock:
            models = self._load()
        if models.company_scope != company_scope:
            return []
        logger.info("Loaded %d entries from %s", len(models.entries), self.path.name)
        return sorted(models.entries, key=lambda e: (e.start_date, e.id))

    def list_resources(self, company_scope: str = DEFAULT_COMPANY_SCOPE) -> List[Resource]:
        with self._lock:
            models = self._load()
        if models.company_scope != company_scope:
            return []
        return sorted(models.resources, key=lambda r: r.name)

    def update_entry(self, entry_id: str, fields: Mapping[str, Any]) -> Entry:
        with self._lock:
            payload = self._read()
            idx, current = self._find(payload.entries_df, entry_id)
            updated = merge_update(current, fields)
            new_row = entries_to_frame([updated]).iloc[0]
            for c in ENTRY_COLUMNS:
                payload.entries_df.at[idx, c] = new_row[c]
            self._write(payload)
        logger.info("Updated entry %s in %s", entry_id, self.path.name)
        return updated

    def create_entry(self, fields: Mapping[str, Any]) -> Entry:
        entry = build_new_entry(fields)
        with self._lock:
            payload = self._read()
            if any(_text(v) == entry.id for v in payload.entries_df["id"]):
                raise PersistenceError(f"Entry {entry.id} already exists.", entry_id=entry.id)
            new_rows = entries_to_frame([entry])
            if payload.entries_df.empty:
                entries_df = new_rows
            else:
                entries_df = pd.concat([payload.entries_df, new_rows], ignore_index=True)
            self._write(ExcelPayload(payload.settings, payload.vessels_df, entries_df))
        logger.info("Created entry %s in %s", entry.id, self.path.name)
        return entry

    def delete_entry(self, entry_id: str) -> None:
        with self._lock:
            payload = self._read()
            idx, _ = self._find(payload.entries_df, entry_id)
            entries_df = payload.entries_df.drop(index=idx)
            self._write(ExcelPayload(payload.settings, payload.vessels_df, entries_df))
        logger.info("Deleted entry %s from %s", entry_id, self.path.name)



def sample_workbook_bytes(*, anchor: Optional[date] = None) -> bytes:
    """A small fleet with overlapping trips, handy for demos and the smoke script."""
    anchor = anchor or date.today()
    m0 = date(anchor.year, anchor.month, 1)

    resources = [
        Resource(id="V1", name="M/Y Aurora"),
        Resource(id="V2", name="M/Y Boreas"),
        Resource(id="V3", name="R/V Calypso"),
    ]
    entries = [
        Entry(id="E-001", title="Norwegian Fjords", resource_ids=("V1",), start_date=m0, end_date=m0 + timedelta(days=4), status="confirmed", location="Bergen", country="Norway"),
        Entry(id="E-002", title="Lofoten Whales", resource_ids=("V1",), start_date=m0 + timedelta(days=2), end_date=m0 + timedelta(days=6), status="tentative", location="Tromso", country="Norway"),
        Entry(id="E-003", title="Shipyard Maintenance", resource_ids=("V1",), start_date=m0 + timedelta(days=9), end_date=m0 + timedelta(days=11), status="confirmed", trip_type="maintenance"),
        Entry(id="E-004", title="Svalbard Expedition", resource_ids=("V2", "V3"), group_id="G-1", start_date=m0 + timedelta(days=3), end_date=m0 + timedelta(days=13), status="draft", location="Longyearbyen"),
        Entry(id="E-005", title="Crew Changeover", resource_ids=("V3",), start_date=m0 + timedelta(days=13), end_date=m0 + timedelta(days=13), status="confirmed"),
        Entry(id="E-006", title="Faroe Islands", resource_ids=("V2",), start_date=m0 - timedelta(days=20), end_date=m0 - timedelta(days=12), status="tentative"),
    ]
    settings = view_settings_to_dict(ViewSettings(view_mode="quarter", anchor_date=anchor))
    return write_itinerary_excel_bytes(settings, resources_to_frame(resources), entries_to_frame(entries))


def write_sample_workbook(path: Union[str, Path], *, anchor: Optional[date] = None) -> None:
    Path(path).write_bytes(sample_workbook_bytes(anchor=anchor))
