from __future__ import annotations

import io
import re
from datetime import date, datetime
from decimal import Decimal

from openpyxl import Workbook

from practice_lab.services.dataset_models import DatasetPreview

DEFAULT_SHEET_TITLE = "Dataset"
_INVALID_SHEET_CHARACTERS = re.compile(r"[\[\]:*?/\\]")
_MAX_SHEET_TITLE = 31


def sheet_title(label: str | None) -> str:
    cleaned = _INVALID_SHEET_CHARACTERS.sub("_", (label or "").strip())[:_MAX_SHEET_TITLE]
    return cleaned or DEFAULT_SHEET_TITLE


def workbook_filename(label: str | None) -> str:
    stem = re.sub(r"[^0-9a-zA-Z_-]+", "_", (label or "").strip()).strip("_").lower()
    return f"{stem or 'dataset'}.xlsx"


def _cell_value(value: object) -> object:
    if value is None or isinstance(value, (bool, int, float, str, datetime, date)):
        return value
    if isinstance(value, Decimal):
        return float(value)
    return str(value)


def export_preview_workbook(preview: DatasetPreview, *, title: str | None = None) -> bytes:
    """Render a preview as a single-sheet workbook: header row then sample rows."""
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = sheet_title(title)
    sheet.append(list(preview.columns))
    for row in preview.rows:
        sheet.append([_cell_value(value) for value in row])

    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()
