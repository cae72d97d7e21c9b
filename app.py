from __future__ import annotations

import hashlib
from datetime import date, datetime
from typing import Dict, List, Optional

import pandas as pd
import streamlit as st

from board import GridLayout, PlanningBoard
from config import AppConfig, init_logging, load_config
from drag import DragPhase
from entry_store import EntryStore, InMemoryEntryStore
from errors import PersistenceError
from excel_io import (
    ExcelPayload,
    WorkbookEntryStore,
    build_models,
    entries_to_frame,
    read_itinerary_excel,
    resources_to_frame,
    sample_workbook_bytes,
    template_bytes,
    view_settings_to_dict,
    write_itinerary_excel_bytes,
)
from export import export_layout_xlsx_bytes, timeline_frame
from itinerary_models import ALL_STATUSES, STATUS_CONFIG, VIEW_MODES, Entry, ViewSettings
from lifecycle import is_effectively_locked

APP_TITLE = "Fleet Itinerary Planner"
APP_SUBTITLE = "Vessel itinerary grid and timeline: overlapping trips in lanes, day-snapped rescheduling, Excel in and out"

XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


# ----------------------------
# Caching helpers
# ----------------------------


@st.cache_data(show_spinner=False)
def _cached_read_excel(excel_bytes: bytes) -> ExcelPayload:
    return read_itinerary_excel(excel_bytes)


@st.cache_data(show_spinner=False)
def _cached_template_bytes() -> bytes:
    return template_bytes()


@st.cache_data(show_spinner=False)
def _cached_sample_bytes(anchor_iso: str) -> bytes:
    return sample_workbook_bytes(anchor=date.fromisoformat(anchor_iso))


# ----------------------------
# Board lifecycle
# ----------------------------


def _board() -> Optional[PlanningBoard]:
    return st.session_state.get("board")


def _install_board(store: EntryStore, settings: ViewSettings, config: AppConfig, *, source_name: str) -> None:
    """Hard-replace the active board. The previous one is closed, so its in-flight drags are discarded."""
    old = _board()
    if old is not None:
        old.close()

    board = PlanningBoard.from_config(store, settings, config)
    board.load()

    st.session_state["board"] = board
    st.session_state["_active_source"] = source_name
    st.session_state["_loaded_at"] = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    st.session_state.pop("last_layout_xlsx", None)
    st.session_state.pop("last_drag_message", None)


def _load_workbook_bytes(data: bytes, *, source_name: str, config: AppConfig) -> List[str]:
    """Load a workbook into an in-memory store for this session. Returns row-level problems."""
    payload = _cached_read_excel(data)
    models = build_models(payload)
    store = InMemoryEntryStore(models.entries, models.resources, company_scope=models.company_scope)
    settings = models.view_settings or ViewSettings(anchor_date=date.today())
    _install_board(
        store,
        settings,
        config.model_copy(update={"company_scope": models.company_scope}),
        source_name=source_name,
    )
    return models.errors


def _open_configured_workbook(config: AppConfig) -> None:
    store = WorkbookEntryStore(config.workbook_path)
    settings = store.load_view_settings() or ViewSettings(anchor_date=date.today())
    _install_board(store, settings, config, source_name=str(config.workbook_path))


def _itinerary_workbook_bytes(board: PlanningBoard) -> bytes:
    return write_itinerary_excel_bytes(
        view_settings_to_dict(board.settings, board.company_scope),
        resources_to_frame(list(board.resources)),
        entries_to_frame(list(board.entries)),
    )


# ----------------------------
# Display helpers
# ----------------------------


def _block_label(entry: Optional[Entry], lane_index: int, lane_count: int) -> str:
    if entry is None:
        return "?"
    label = entry.title
    if lane_count > 1:
        label += f" [{lane_index + 1}/{lane_count}]"
    if is_effectively_locked(entry):
        label += " (locked)"
    return label


def _grid_table(grid: GridLayout, entries: Dict[str, Entry]) -> pd.DataFrame:
    """Buckets as rows, vessels as columns, overlapping blocks listed in lane order."""
    data = {}
    for r in grid.resources:
        col = []
        for b in grid.buckets:
            blocks = grid.placements(r.id, b.key)
            col.append("; ".join(_block_label(entries.get(p.entry_id), p.lane_index, p.lane_count) for p in blocks))
        data[r.display_name] = col
    index = [f"> {b.label}" if b.is_today else b.label for b in grid.buckets]
    return pd.DataFrame(data, index=index)


def _entry_option_label(entry: Entry) -> str:
    return f"{entry.id}: {entry.title} ({entry.start_date} to {entry.end_date}, {STATUS_CONFIG[entry.status]['label']})"


def main() -> None:
    """Streamlit entry point: load a workbook, browse the grid and timeline, reschedule, export."""
    st.set_page_config(page_title=APP_TITLE, page_icon="⚓", layout="wide")

    config = load_config()
    if not st.session_state.get("_logging_ready"):
        init_logging(config)
        st.session_state["_logging_ready"] = True

    st.title(APP_TITLE)
    st.caption(APP_SUBTITLE)

    tabs = st.tabs(["1 Load", "2 Plan", "3 Export"])

    # -----------------
    # Load tab
    # -----------------
    with tabs[0]:
        st.subheader("Load an itinerary workbook")

        c1, c2, c3 = st.columns([1.0, 1.0, 2.0])
        with c1:
            st.download_button(
                "Download blank template",
                data=_cached_template_bytes(),
                file_name="itinerary_template.xlsx",
                mime=XLSX_MIME,
                use_container_width=True,
            )
        with c2:
            try_sample = st.button("Try sample fleet", use_container_width=True)
        with c3:
            if config.workbook_path is not None:
                if st.button(f"Open {config.workbook_path.name}", use_container_width=True):
                    try:
                        _open_configured_workbook(config)
                    except PersistenceError as e:
                        st.error(str(e))

        uploaded = st.file_uploader("Upload .xlsx", type=["xlsx"])

        errors: List[str] = []
        if try_sample:
            errors = _load_workbook_bytes(
                _cached_sample_bytes(date.today().isoformat()), source_name="sample fleet", config=config
            )
        elif uploaded is not None:
            data = uploaded.getvalue()
            upload_hash = hashlib.sha256(data).hexdigest()
            if upload_hash != st.session_state.get("_last_upload_hash"):
                st.session_state["_last_upload_hash"] = upload_hash
                try:
                    errors = _load_workbook_bytes(data, source_name=uploaded.name, config=config)
                except ValueError as e:
                    st.error(str(e))

        if errors:
            with st.expander(f"Skipped rows ({len(errors)})", expanded=True):
                for msg in errors:
                    st.write(f"- {msg}")

        board = _board()
        if board is None:
            st.info("No itinerary loaded yet. Upload a workbook or click 'Try sample fleet'.")
        else:
            m1, m2, m3 = st.columns([1, 1, 2])
            m1.metric("Vessels", len(board.resources))
            m2.metric("Entries", len(board.entries))
            m3.caption(f"Source: {st.session_state.get('_active_source')} • Loaded at: {st.session_state.get('_loaded_at', '')}")

    board = _board()
    if board is None:
        return

    # -----------------
    # Sidebar: view controls
    # -----------------
    with st.sidebar:
        st.header("View")
        s = board.settings

        mode = st.selectbox("View mode", options=list(VIEW_MODES), index=VIEW_MODES.index(s.view_mode))
        if mode != s.view_mode:
            board.set_view_mode(mode)

        anchor = st.date_input("Anchor date", value=board.settings.anchor_date)
        if anchor != board.settings.anchor_date:
            board.set_anchor(anchor)

        n1, n2, n3 = st.columns(3)
        if n1.button("Prev", use_container_width=True):
            board.navigate(-1)
            st.rerun()
        if n2.button("Today", use_container_width=True):
            board.jump_to_today()
            st.rerun()
        if n3.button("Next", use_container_width=True):
            board.navigate(1)
            st.rerun()

        statuses = st.multiselect(
            "Statuses",
            options=list(ALL_STATUSES),
            default=list(board.settings.status_filter),
            format_func=lambda v: STATUS_CONFIG[v]["label"],
        )
        if tuple(statuses) != board.settings.status_filter:
            board.set_status_filter(statuses)

        vessel_names = {r.id: r.display_name for r in board.resources}
        current = board.settings.resource_filter
        chosen = st.multiselect(
            "Vessels",
            options=list(vessel_names),
            default=list(vessel_names) if current is None else [v for v in current if v in vessel_names],
            format_func=lambda v: vessel_names[v],
        )
        if set(chosen) != set(vessel_names) or current is not None:
            board.set_resource_filter(None if set(chosen) == set(vessel_names) else chosen)

    entries_by_id = {e.id: e for e in board.entries}

    # -----------------
    # Plan tab
    # -----------------
    with tabs[1]:
        grid = board.grid()
        st.subheader(f"{board.settings.view_mode.title()} view from {grid.buckets[0].start} to {grid.buckets[-1].end}")

        if grid.has_warnings:
            with st.expander("Entries with problems", expanded=False):
                for eid in grid.warnings.get("invalid_range", ()):
                    st.write(f"- {eid}: end date before start date (not shown)")
                for eid in grid.warnings.get("unknown_resource", ()):
                    st.write(f"- {eid}: assigned to a vessel that is not registered")

        if not grid.resources:
            st.info("No vessels selected. Use the sidebar to show vessel columns.")
        else:
            st.dataframe(_grid_table(grid, entries_by_id), use_container_width=True)

        with st.expander("Timeline", expanded=False):
            st.dataframe(timeline_frame(board.timeline()), use_container_width=True, hide_index=True)

        st.divider()
        st.subheader("Reschedule")

        movable = sorted(entries_by_id.values(), key=lambda e: (e.start_date, e.id))
        if not movable:
            st.info("No entries to reschedule.")
        else:
            r1, r2, r3 = st.columns([2.5, 1.0, 1.0])
            with r1:
                picked = st.selectbox("Entry", options=[e.id for e in movable], format_func=lambda i: _entry_option_label(entries_by_id[i]))
            with r2:
                days = st.number_input("Shift by days", min_value=-365, max_value=365, value=1, step=1)
            with r3:
                st.write("")
                if st.button("Shift entry", use_container_width=True):
                    result = board.shift_entry(picked, int(days))
                    if result.phase is DragPhase.APPLIED:
                        st.session_state["last_drag_message"] = ("success", f"{picked} moved to {result.entry.start_date} to {result.entry.end_date}.")
                    elif result.phase is DragPhase.IDLE:
                        st.session_state["last_drag_message"] = ("info", "Nothing to move.")
                    else:
                        st.session_state["last_drag_message"] = ("error", str(result.error))
                    st.rerun()

            entry = entries_by_id.get(picked)
            if entry is not None:
                l1, l2 = st.columns(2)
                if is_effectively_locked(entry):
                    if l1.button("Unlock entry", use_container_width=True):
                        try:
                            board.unlock(picked)
                        except PersistenceError as e:
                            st.error(str(e))
                        st.rerun()
                elif l2.button("Lock entry", use_container_width=True):
                    try:
                        board.lock(picked)
                    except PersistenceError as e:
                        st.error(str(e))
                    st.rerun()

        msg = st.session_state.get("last_drag_message")
        if msg:
            kind, text = msg
            getattr(st, kind)(text)

    # -----------------
    # Export tab
    # -----------------
    with tabs[2]:
        st.subheader("Export")

        col1, col2 = st.columns(2)
        with col1:
            if st.button("Generate layout workbook", use_container_width=True):
                st.session_state["last_layout_xlsx"] = export_layout_xlsx_bytes(board.grid(), entries_by_id, board.timeline())
            st.download_button(
                "Download layout (.xlsx)",
                data=st.session_state.get("last_layout_xlsx", b""),
                file_name=f"itinerary_layout_{board.settings.view_mode}_{board.settings.anchor_date}.xlsx",
                mime=XLSX_MIME,
                use_container_width=True,
                disabled=("last_layout_xlsx" not in st.session_state),
            )
        with col2:
            st.download_button(
                "Download itinerary workbook",
                data=_itinerary_workbook_bytes(board),
                file_name="itinerary.xlsx",
                mime=XLSX_MIME,
                use_container_width=True,
            )

        st.caption("The itinerary workbook can be uploaded again later; the layout workbook is a read-only snapshot of the current view.")


if __name__ == "__main__":
    main()
