"""Parser for the tool inventory spreadsheet (tool matrix).

The workbook carries a free-form preamble; the table starts at the first row
that has both a ``Tételkód`` (item code) and a ``Mennyiség`` (quantity)
header.  Only the first sheet is read.
"""

from __future__ import annotations

import logging
import numbers
import re
from pathlib import Path
from typing import Any, Protocol

import pandas as pd

from toolmanager.core.errors import ExtractionError
from toolmanager.core.schema import InventoryLine

logger = logging.getLogger(__name__)

ITEM_CODE_COLUMNS = ["tételkód", "tetelkod", "item code"]
QUANTITY_COLUMNS = ["mennyiség", "mennyiseg", "quantity"]
DESCRIPTION_COLUMNS = ["megnevezés", "megnevezes", "leírás", "description"]

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


class InventoryExtractor(Protocol):
    """Turns an inventory source into inventory lines without touching it."""

    def extract(self, path: Path) -> list[InventoryLine]: ...


def _cell_text(value: Any) -> str:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return ""
    return str(value).strip()


def _find_column(row: list[Any], candidates: list[str]) -> int | None:
    lowered = [_cell_text(cell).lower() for cell in row]
    for candidate in candidates:
        for index, cell in enumerate(lowered):
            if cell and candidate in cell:
                return index
    return None


def find_header_row(rows: list[list[Any]]) -> int | None:
    for index, row in enumerate(rows):
        if _find_column(row, ITEM_CODE_COLUMNS) is not None and _find_column(row, QUANTITY_COLUMNS) is not None:
            return index
    return None


def _safe_quantity(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, numbers.Number):
        if pd.isna(value):
            return None
        return int(value)
    match = _LEADING_INT.match(str(value))
    return int(match.group(1)) if match else None


def clean_item_code(value: Any) -> str:
    return _cell_text(value).upper()


def parse_rows(rows: list[list[Any]]) -> list[InventoryLine]:
    header_index = find_header_row(rows)
    if header_index is None:
        raise ExtractionError('no header row with "Tételkód" and "Mennyiség"')
    header = rows[header_index]
    code_column = _find_column(header, ITEM_CODE_COLUMNS)
    quantity_column = _find_column(header, QUANTITY_COLUMNS)
    description_column = _find_column(header, DESCRIPTION_COLUMNS)

    quantities: dict[str, int] = {}
    descriptions: dict[str, str] = {}
    for row in rows[header_index + 1 :]:
        if code_column >= len(row) or quantity_column >= len(row):
            continue
        code = clean_item_code(row[code_column])
        quantity = _safe_quantity(row[quantity_column])
        if not code or quantity is None or quantity <= 0:
            continue
        quantities[code] = quantities.get(code, 0) + quantity
        if description_column is not None and description_column < len(row) and code not in descriptions:
            descriptions[code] = _cell_text(row[description_column])

    return [
        InventoryLine(tool_id=code, description=descriptions.get(code, ""), quantity=quantity)
        for code, quantity in quantities.items()
    ]


class SpreadsheetInventoryExtractor:
    """Reads the first worksheet of an ``.xlsx``/``.xls``/``.xlsm`` inventory file."""

    def __init__(self, sheet_name: str | int = 0) -> None:
        self.sheet_name = sheet_name

    def read_rows(self, path: Path) -> list[list[Any]]:
        try:
            dataframe = pd.read_excel(path, sheet_name=self.sheet_name, header=None, dtype=object)
        except Exception as exc:
            raise ExtractionError(f"cannot read inventory workbook {Path(path).name}: {exc}") from exc
        dataframe = dataframe.dropna(how="all")
        return dataframe.astype(object).where(pd.notna(dataframe), None).values.tolist()

    def extract(self, path: Path) -> list[InventoryLine]:
        lines = parse_rows(self.read_rows(path))
        logger.info("Extracted %d unique tool codes from %s", len(lines), Path(path).name)
        return lines
