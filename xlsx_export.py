"""Spreadsheet serialization for stored tables."""

from __future__ import annotations

import io
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from openpyxl import Workbook, load_workbook

logger = logging.getLogger("tabula.export")

_SHEET_TITLE_BAD = re.compile(r"[\[\]:*?/\\]")
_FILENAME_BAD = re.compile(r"[^A-Za-z0-9._ -]+")


class TableExportError(ValueError):
    pass


def _sheet_title(title: str | None) -> str:
    cleaned = _SHEET_TITLE_BAD.sub(" ", title or "").strip()
    return (cleaned or "Table")[:31]


def _cell_value(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool, datetime)):
        return value
    return str(value)


def validate_table(table: Any) -> None:
    if not isinstance(table, dict):
        raise TableExportError("table must be object")
    if not isinstance(table.get("columns"), list) or not isinstance(table.get("rows"), list):
        raise TableExportError("table requires columns and rows lists")


def table_to_workbook(table: dict) -> Workbook:
    validate_table(table)
    columns = [c for c in table["columns"] if isinstance(c, dict)]
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = _sheet_title(table.get("title"))
    sheet.append([c.get("label") or c.get("key") for c in columns])
    for row in table["rows"]:
        if not isinstance(row, dict):
            continue
        sheet.append([_cell_value(row.get(c.get("key"))) for c in columns])
    return workbook


def default_filename(table: dict) -> str:
    stem = _FILENAME_BAD.sub("_", table.get("title") or "table").strip() or "table"
    return f"{stem}_{datetime.now(timezone.utc).strftime('%Y-%m-%d')}.xlsx"


def export_table_to_xlsx(table: dict, directory: str | Path, filename: str | None = None) -> Path:
    workbook = table_to_workbook(table)
    target_dir = Path(directory)
    target_dir.mkdir(parents=True, exist_ok=True)
    path = target_dir / (filename or default_filename(table))
    workbook.save(path)
    logger.info("table_exported key=%s path=%s rows=%s", table.get("key"), path, len(table["rows"]))
    return path


def table_to_xlsx_bytes(table: dict) -> bytes:
    buffer = io.BytesIO()
    table_to_workbook(table).save(buffer)
    return buffer.getvalue()


def xlsx_bytes_to_table(data: bytes, title: str, key: str) -> dict | None:
    """Rebuild a table from the first sheet; the header row becomes columns."""
    try:
        workbook = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except Exception as exc:
        logger.warning("xlsx_read_failed key=%s error=%s", key, exc)
        return None
    sheet = workbook.worksheets[0]
    values = [list(r) for r in sheet.iter_rows(values_only=True)]
    workbook.close()
    if len(values) < 2:
        return None
    headers = values[0]
    columns = [{"key": f"col{idx}", "label": "" if h is None else str(h)} for idx, h in enumerate(headers)]
    rows = []
    for row_idx, cells in enumerate(values[1:]):
        row = {"id": f"row-{row_idx}"}
        for cell_idx, cell in enumerate(cells):
            row[f"col{cell_idx}"] = cell
        rows.append(row)
    return {"key": key, "title": title, "columns": columns, "rows": rows, "actions": []}
