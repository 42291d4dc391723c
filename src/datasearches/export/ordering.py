"""Ordering of rows before they are written out."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from typing import Any

from datasearches.core.models import FieldInfo
from datasearches.engine.workspace import Workspace, find_field
from datasearches.export.columns import split_columns


def resolve_order(order_spec: str | Sequence[str] | None, fields: Sequence[FieldInfo]) -> list[str]:
    """Keep only the order columns that exist, resolved to their field names."""
    names = split_columns(order_spec) if isinstance(order_spec, str) or order_spec is None else order_spec
    resolved: list[str] = []
    for name in names:
        f = find_field(fields, name)
        if f is not None and f.name not in resolved:
            resolved.append(f.name)
    return resolved


def ordered_rows(
    workspace: Workspace,
    dataset: str,
    order_spec: str | Sequence[str] | None = None,
    object_ids: frozenset[int] | None = None,
) -> Iterator[dict[str, Any]]:
    """Rows of a dataset sorted ascending by the order columns that exist.

    Strings compare case-insensitively and nulls sort last. Without any valid
    order column the rows come back in cursor (OBJECTID) order. The sort is
    done by the database over the whole result before the first row is
    returned.
    """
    order = resolve_order(order_spec, workspace.list_fields(dataset))
    return workspace.search(dataset, object_ids=object_ids, order_by=order)
