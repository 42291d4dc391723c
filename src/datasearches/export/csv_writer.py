"""Delimited text output.

Format rules:
- one row per line, comma separated, CRLF line endings
- a value whose text contains a comma is wrapped in double quotes; embedded
  quotes are NOT escaped, so such values do not round-trip
- literal column tokens ('"Designated"') are written verbatim on every row
- numbers in the field named exactly 'Distance' are truncated to integers
- whole floats lose their trailing '.0', nulls are written as empty text
- the header, when written, is the cleaned column specification
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any

from datasearches.core.errors import ErrorCategory, SchemaMismatch
from datasearches.core.logging import SearchLog, get_logger
from datasearches.core.models import FieldInfo
from datasearches.engine.workspace import Workspace, find_field
from datasearches.export.columns import is_literal, project
from datasearches.export.ordering import ordered_rows

logger = get_logger(__name__)

DELIMITER = ","
QUOTE = '"'
LINE_END = "\r\n"
DISTANCE_COLUMN = "Distance"
DATETIME_FORMAT = "%d/%m/%Y %H:%M:%S"
DATE_FORMAT = "%d/%m/%Y"


@dataclass(frozen=True)
class OutputColumn:
    """A column of the output: a literal token or a resolved field name."""

    token: str
    field_name: str | None = None

    @property
    def is_literal(self) -> bool:
        return self.field_name is None


def resolve_columns(tokens: Sequence[str], fields: Sequence[FieldInfo]) -> list[OutputColumn]:
    """Resolve field tokens by name, then alias. Unknown tokens are dropped."""
    columns: list[OutputColumn] = []
    for token in tokens:
        if is_literal(token):
            columns.append(OutputColumn(token=token))
            continue
        f = find_field(fields, token)
        if f is not None:
            columns.append(OutputColumn(token=token, field_name=f.name))
    return columns


def format_value(value: Any, column_name: str | None = None) -> str:
    """Text form of one value, before quoting."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value)
    if column_name == DISTANCE_COLUMN and isinstance(value, int | float):
        return str(int(value))
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else str(value)
    if isinstance(value, datetime):
        return value.strftime(DATETIME_FORMAT)
    if isinstance(value, date):
        return value.strftime(DATE_FORMAT)
    if isinstance(value, bytes | bytearray):
        return ""
    return str(value)


def quote(text: str) -> str:
    return f"{QUOTE}{text}{QUOTE}" if DELIMITER in text else text


def format_row(row: Mapping[str, Any], columns: Sequence[OutputColumn]) -> str:
    parts = []
    for column in columns:
        if column.field_name is None:
            parts.append(column.token)
        else:
            parts.append(quote(format_value(row.get(column.field_name), column.field_name)))
    return DELIMITER.join(parts)


def write_csv(
    rows: Iterable[Mapping[str, Any]],
    out_path: Path,
    columns: Sequence[OutputColumn],
    header: str | None = None,
    append: bool = False,
) -> int:
    """Write rows to a delimited text file.

    Args:
        rows: Rows keyed by field name, written as they are produced
        out_path: Output file
        columns: Output columns in order
        header: Header line; ignored when appending
        append: Append to the file instead of replacing it

    Returns:
        Number of data rows written (the header is not counted)
    """
    out_path.parent.mkdir(parents=True, exist_ok=True)
    count = 0
    with open(out_path, "a" if append else "w", encoding="utf-8", newline="") as f:
        if header is not None and not append:
            f.write(header + LINE_END)
        for row in rows:
            f.write(format_row(row, columns) + LINE_END)
            count += 1
    return count


def copy_to_csv(
    workspace: Workspace,
    dataset: str,
    out_path: Path,
    column_spec: str,
    order_spec: str | None = None,
    append: bool = False,
    include_header: bool = True,
    log: SearchLog | None = None,
    mismatches: list[SchemaMismatch] | None = None,
) -> int:
    """Project, order and write a dataset to delimited text.

    Returns:
        Rows written; 0 when there is nothing to export; -1 when the dataset
        does not exist
    """
    log = log or SearchLog()
    if not workspace.exists(dataset):
        log.error(f"Cannot find table {dataset}")
        logger.warning(
            "input_missing", dataset=dataset, category=ErrorCategory.INPUT_MISSING.value
        )
        return -1

    fields = workspace.list_fields(dataset)
    projection = project(column_spec, fields)
    if projection.missing:
        log.warning(
            f"The following columns cannot be found in {dataset}: {', '.join(projection.missing)}"
        )
        if mismatches is not None:
            mismatches.extend(SchemaMismatch(dataset, name, "output") for name in projection.missing)
    if projection.is_empty:
        log.warning(f"No columns to export from {dataset}")
        return 0

    rows = ordered_rows(workspace, dataset, order_spec)
    count = write_csv(
        rows,
        out_path,
        resolve_columns(projection.tokens, fields),
        header=projection.spec if include_header else None,
        append=append,
    )
    logger.debug("csv_written", dataset=dataset, path=str(out_path), rows=count, append=append)
    return count
