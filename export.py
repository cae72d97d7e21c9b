from __future__ import annotations

from io import BytesIO
from typing import Dict, List

import pandas as pd
from openpyxl import Workbook
from openpyxl.utils import get_column_letter

from board import GridLayout
from excel_io import style_header_row
from itinerary_models import Entry
from timeline import TimelineLayout

GRID_COLUMNS = [
    "vessel_id",
    "vessel",
    "bucket",
    "bucket_start",
    "bucket_end",
    "entry_id",
    "title",
    "status",
    "lane_index",
    "lane_count",
    "top_percent",
    "height_percent",
    "clipped_start",
    "clipped_end",
]

TIMELINE_COLUMNS = [
    "vessel_id",
    "vessel",
    "entry_id",
    "title",
    "status",
    "lane_index",
    "lane_count",
    "left_px",
    "width_px",
    "clipped_start",
    "clipped_end",
    "locked",
    "grouped",
]


def grid_layout_frame(grid: GridLayout, entries: Dict[str, Entry]) -> pd.DataFrame:
    """One row per placed block, ordered by vessel, then bucket, then lane."""
    rows: List[dict] = []
    for r in grid.resources:
        for b in grid.buckets:
            for p in grid.placements(r.id, b.key):
                e = entries.get(p.entry_id)
                rows.append(
                    {
                        "vessel_id": r.id,
                        "vessel": r.display_name,
                        "bucket": b.label,
                        "bucket_start": b.start,
                        "bucket_end": b.end,
                        "entry_id": p.entry_id,
                        "title": e.title if e else None,
                        "status": e.status if e else None,
                        "lane_index": p.lane_index,
                        "lane_count": p.lane_count,
                        "top_percent": round(p.top_percent, 2),
                        "height_percent": round(p.height_percent, 2),
                        "clipped_start": p.clipped_start,
                        "clipped_end": p.clipped_end,
                    }
                )
    return pd.DataFrame(rows, columns=GRID_COLUMNS)


def timeline_frame(timeline: TimelineLayout) -> pd.DataFrame:
    rows: List[dict] = []
    for row in timeline.rows:
        for bar in row.bars:
            rows.append(
                {
                    "vessel_id": row.resource.id,
                    "vessel": row.resource.display_name,
                    "entry_id": bar.entry_id,
                    "title": bar.title,
                    "status": bar.status,
                    "lane_index": bar.lane_index,
                    "lane_count": bar.lane_count,
                    "left_px": bar.left_px,
                    "width_px": bar.width_px,
                    "clipped_start": bar.clipped_start,
                    "clipped_end": bar.clipped_end,
                    "locked": bar.is_locked,
                    "grouped": bar.is_grouped,
                }
            )
    return pd.DataFrame(rows, columns=TIMELINE_COLUMNS)


def warnings_frame(grid: GridLayout) -> pd.DataFrame:
    rows = [{"kind": kind, "entry_id": eid} for kind, ids in grid.warnings.items() for eid in ids]
    return pd.DataFrame(rows, columns=["kind", "entry_id"])


def _append_frame(wb: Workbook, title: str, df: pd.DataFrame) -> None:
    ws = wb.create_sheet(title)
    ws.append(list(df.columns))
    for values in df.astype(object).itertuples(index=False):
        ws.append([None if pd.isna(v) else v for v in values])
    style_header_row(ws)
    for idx, col in enumerate(df.columns, start=1):
        ws.column_dimensions[get_column_letter(idx)].width = max(12, len(str(col)) + 2)


def export_layout_xlsx_bytes(
    grid: GridLayout,
    entries: Dict[str, Entry],
    timeline: TimelineLayout,
) -> bytes:
    """The computed layout (grid placements, timeline bars, warnings) as a downloadable workbook."""
    wb = Workbook()
    wb.remove(wb.active)

    _append_frame(wb, "Grid", grid_layout_frame(grid, entries))
    _append_frame(wb, "Timeline", timeline_frame(timeline))
    _append_frame(wb, "Warnings", warnings_frame(grid))

    ws = wb.create_sheet("View", 0)
    ws.append(["key", "value"])
    s = grid.settings
    ws.append(["view_mode", s.view_mode])
    ws.append(["anchor_date", s.anchor_date])
    ws.append(["status_filter", ",".join(s.status_filter)])
    ws.append(["resource_filter", ",".join(s.resource_filter) if s.resource_filter is not None else None])
    ws.append(["window_start", grid.buckets[0].start if grid.buckets else None])
    ws.append(["window_end", grid.buckets[-1].end if grid.buckets else None])
    style_header_row(ws)
    ws.column_dimensions["A"].width = 18
    ws.column_dimensions["B"].width = 40

    bio = BytesIO()
    wb.save(bio)
    return bio.getvalue()
