from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill
from openpyxl.utils.cell import get_column_letter
from openpyxl.worksheet.table import Table, TableStyleInfo
from openpyxl.worksheet.worksheet import Worksheet

from ..logging import get_logger
from ..normalize.schema import COLLECTION_TITLES
from ..util.errors import ExportError
from .csv import cell_text

LOG = get_logger(__name__)

_MAX_SHEET_NAME_LEN = 31
_MAX_WIDTH = 80
_WIDTH_SAMPLE_ROWS = 250

TIER_FILLS: Dict[str, str] = {
    "Green": "C6EFCE",
    "Yellow": "FFEB9C",
    "Red": "FFC7CE",
}


def _table_name(collection: str) -> str:
    stem = "".join(c if c.isalnum() else "_" for c in collection.title())
    if stem and stem[0].isdigit():
        stem = "_" + stem
    return f"tbl{stem}"[:_MAX_SHEET_NAME_LEN]


def _cell_value(value: Any) -> Any:
    # keep numbers numeric so Excel can sort and sum them
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    return cell_text(value)


def _autosize(ws: Worksheet) -> None:
    for idx in range(1, ws.max_column + 1):
        letter = get_column_letter(idx)
        sample = [c.value for c in ws[letter][:_WIDTH_SAMPLE_ROWS]]
        width = max((len(str(v)) for v in sample if v is not None), default=8) + 2
        ws.column_dimensions[letter].width = min(width, _MAX_WIDTH)


def _write_sheet(wb: Workbook, collection: str, fields: Sequence[str], rows: Sequence[Mapping[str, Any]]) -> None:
    title = COLLECTION_TITLES.get(collection, collection)[:_MAX_SHEET_NAME_LEN]
    ws = wb.create_sheet(title)
    ws.append(list(fields))
    for row in rows:
        ws.append([_cell_value(row.get(f)) for f in fields])
    if rows:
        ref = f"A1:{get_column_letter(ws.max_column)}{ws.max_row}"
        tbl = Table(displayName=_table_name(collection), ref=ref)
        tbl.tableStyleInfo = TableStyleInfo(name="TableStyleMedium9", showRowStripes=True)
        ws.add_table(tbl)
    else:
        for cell in ws[1]:
            cell.font = Font(bold=True)
    ws.freeze_panes = "A2"
    _autosize(ws)


def _write_summary(wb: Workbook, summary: Sequence[Tuple[str, Any]], tier: Optional[str]) -> None:
    ws = wb.create_sheet("Summary", 0)
    ws.append(["Metric", "Value"])
    for label, value in summary:
        ws.append([label, _cell_value(value)])
        if label == "Risk tier" and tier in TIER_FILLS:
            ws.cell(row=ws.max_row, column=2).fill = PatternFill(
                start_color=TIER_FILLS[tier], end_color=TIER_FILLS[tier], fill_type="solid"
            )
    for cell in ws[1]:
        cell.font = Font(bold=True)
    ws.freeze_panes = "A2"
    _autosize(ws)


def write_workbook(
    collections: Mapping[str, Sequence[Mapping[str, Any]]],
    fields_by_collection: Mapping[str, Sequence[str]],
    path: Path,
    *,
    summary: Optional[List[Tuple[str, Any]]] = None,
    tier: Optional[str] = None,
) -> Path:
    """
    Write one worksheet per collection (in the mapping's order) as a styled
    Excel table, with an optional Summary sheet first.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    wb = Workbook()
    wb.remove(wb.active)
    for name, rows in collections.items():
        _write_sheet(wb, name, fields_by_collection[name], rows)
    if summary:
        _write_summary(wb, summary, tier)
    try:
        wb.save(path)
    except OSError as exc:
        LOG.error(
            "Failed to save workbook; is the file open?",
            extra={"step": "export", "phase": "error", "artifact": "xlsx", "error": str(exc)},
        )
        raise ExportError(f"Failed to write {path}: {exc}") from exc
    return path
