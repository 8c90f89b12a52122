"""Excel workbook conversion to delimited text."""

from __future__ import annotations

import csv
import io
from datetime import date, datetime

from openpyxl import load_workbook

WORKBOOK_SUFFIXES = {".xlsx", ".xlsm"}


def _cell_text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat() if value.time() == datetime.min.time() else value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def workbook_to_csv(raw: bytes, *, sheet_name: str | None = None) -> str:
    """Convert one worksheet of an ``.xlsx`` payload into comma-delimited text.

    The active sheet is used unless ``sheet_name`` is given. Fully empty rows
    become blank lines so line numbers match sheet rows; trailing empty cells
    are trimmed.
    """

    workbook = load_workbook(io.BytesIO(raw), read_only=True, data_only=True)
    try:
        sheet = workbook[sheet_name] if sheet_name else workbook.active
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")

        for values in sheet.iter_rows(values_only=True):
            cells = [_cell_text(value) for value in values]
            while cells and not cells[-1]:
                cells.pop()
            writer.writerow(cells)
    finally:
        workbook.close()

    return buffer.getvalue()
