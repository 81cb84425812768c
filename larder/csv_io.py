"""
CSV export and import for entity collections.

Export writes a header row and one row per entity: text cells are wrapped
in double quotes without escaping embedded quotes, numbers are written
bare, and lists are joined with ";" inside one quoted cell.

Import trusts column positions, not header names: the first line is
skipped and each following row maps onto the columns in order.
"""

import csv
import io
import logging
import math
from typing import Any, Iterable, Sequence

from .entity_types import CsvColumn
from .types import Entity, is_number

logger = logging.getLogger(__name__)

LIST_SEPARATOR = ";"


def _format_cell(column: CsvColumn, value: Any) -> str:
    if column.kind in ("number", "integer"):
        if is_number(value):
            return str(value)
        return "" if value is None else f'"{value}"'
    if column.kind == "list":
        items = value if isinstance(value, list) else ([] if value is None else [value])
        return '"' + LIST_SEPARATOR.join(str(v) for v in items) + '"'
    return f'"{"" if value is None else value}"'


def export_csv(entities: Iterable[Entity], columns: Sequence[CsvColumn]) -> str:
    """Render entities as CSV text."""
    lines = [",".join(c.header for c in columns)]
    for entity in entities:
        lines.append(",".join(_format_cell(c, entity.get(c.field)) for c in columns))
    return "\n".join(lines) + "\n"


def _parse_number(cell: str) -> float:
    number = float(cell.replace(",", ""))
    if not math.isfinite(number):
        raise ValueError(f"not a finite number: {cell!r}")
    return number


def _parse_cell(column: CsvColumn, cell: str) -> Any:
    """Parse one cell; raises ValueError for an unparseable number."""
    cell = cell.strip()
    if column.kind == "number":
        return _parse_number(cell)
    if column.kind == "integer":
        return int(_parse_number(cell))
    if column.kind == "list":
        return [part.strip() for part in cell.split(LIST_SEPARATOR) if part.strip()]
    return cell


def import_csv(text: str, columns: Sequence[CsvColumn]) -> list[dict[str, Any]]:
    """
    Parse CSV text into partial entities (no ids).

    Rows shorter than the column list, and rows with a non-empty numeric
    cell that does not parse, are skipped. Empty numeric cells are left
    out so repository defaults apply.
    """
    reader = csv.reader(io.StringIO(text))
    rows = list(reader)
    entities = []
    skipped = 0
    for line_no, row in enumerate(rows[1:], start=2):
        if not any(cell.strip() for cell in row):
            continue
        if len(row) < len(columns):
            skipped += 1
            logger.debug("Skipping short CSV row %d (%d cells)", line_no, len(row))
            continue
        entity: dict[str, Any] = {}
        try:
            for column, cell in zip(columns, row):
                if column.kind in ("number", "integer") and not cell.strip():
                    continue
                entity[column.field] = _parse_cell(column, cell)
        except (ValueError, OverflowError) as e:
            skipped += 1
            logger.debug("Skipping CSV row %d: %s", line_no, e)
            continue
        entities.append(entity)
    if skipped:
        logger.info("CSV import skipped %d malformed rows", skipped)
    return entities
