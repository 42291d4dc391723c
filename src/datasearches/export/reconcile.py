"""Restore caller field names after a grouping operation.

The grouping operations name their aggregate fields themselves
('SUM_Area', 'FIRST_SiteName', ...). The reconciler does not parse those
names. It relies on the output layout instead:

    [2 system fields] [group fields...] [one field per statistic, in order]

so statistic i sits at index LEADING_SYSTEM_FIELD_COUNT + len(group) + i.
Every generated name is read before anything is changed; adding and
deleting fields would otherwise shift the indices.

Changing LEADING_SYSTEM_FIELD_COUNT breaks compatibility with existing
grouping outputs.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from datasearches.core.errors import ReconcileError
from datasearches.core.logging import SearchLog, get_logger
from datasearches.core.models import FieldInfo, FieldType
from datasearches.engine.jobs import GeoprocessingEngine
from datasearches.engine.workspace import find_field
from datasearches.export.columns import Statistic

logger = get_logger(__name__)

# OBJECTID + FREQUENCY for statistics tables, OBJECTID + Shape for dissolve output
LEADING_SYSTEM_FIELD_COUNT = 2


def generated_field_index(group_count: int, position: int) -> int:
    """Index of the generated field for the statistic at `position`."""
    return LEADING_SYSTEM_FIELD_COUNT + group_count + position


def types_compatible(generated: FieldType, target: FieldType) -> bool:
    """Can values of the generated field be copied into the target type?"""
    return generated == target or target == FieldType.STRING or (
        generated.is_numeric and target.is_numeric
    )


@dataclass(frozen=True)
class PlannedRename:
    statistic: Statistic
    generated: FieldInfo
    target: FieldInfo


def plan_renames(
    group_columns: Sequence[str],
    statistics: Sequence[Statistic],
    output_fields: Sequence[FieldInfo],
    input_fields: Sequence[FieldInfo],
    placeholder: Statistic | None = None,
    log: SearchLog | None = None,
) -> list[PlannedRename]:
    """Work out which generated field goes back to which original field.

    Raises:
        ReconcileError: If the output has fewer fields than the layout requires
    """
    planned: list[PlannedRename] = []
    claimed: set[str] = set()
    for i, stat in enumerate(statistics):
        index = generated_field_index(len(group_columns), i)
        if index >= len(output_fields):
            raise ReconcileError(
                "reconcile",
                f"Expected a generated field at position {index} for '{stat}', "
                f"output has {len(output_fields)} fields",
            )
        if stat == placeholder:
            continue
        generated = output_fields[index]
        target = find_field(input_fields, stat.field)
        if target is None:
            continue
        existing = find_field(output_fields, target.name)
        if target.name.lower() in claimed or (existing is not None and existing.name != generated.name):
            _warn(log, f"Cannot rename {generated.name} to {target.name}: field already exists")
            continue
        if not types_compatible(generated.field_type, target.field_type):
            _warn(
                log,
                f"Cannot rename {generated.name} to {target.name}: "
                f"{generated.field_type.value} values do not fit a {target.field_type.value} field",
            )
            continue
        claimed.add(target.name.lower())
        planned.append(PlannedRename(statistic=stat, generated=generated, target=target))
    return planned


def _warn(log: SearchLog | None, message: str) -> None:
    if log is not None:
        log.warning(message)
    else:
        logger.warning("reconcile_skipped", reason=message)


def reconcile(
    engine: GeoprocessingEngine,
    group_columns: Sequence[str],
    statistics: Sequence[Statistic],
    output_dataset: str,
    input_dataset: str,
    placeholder: Statistic | None = None,
    log: SearchLog | None = None,
) -> list[str]:
    """Rename each statistic's generated field back to its source field name.

    For every statistic: add the original field (type and length from the
    input dataset), copy the generated values across, delete the generated
    field.

    Returns:
        Names of the fields restored
    """
    workspace = engine.workspace
    planned = plan_renames(
        group_columns,
        statistics,
        workspace.list_fields(output_dataset),
        workspace.list_fields(input_dataset),
        placeholder=placeholder,
        log=log,
    )

    restored: list[str] = []
    for rename in planned:
        generated, target = rename.generated.name, rename.target
        to_string = target.field_type == FieldType.STRING

        def copy_value(row: dict, source: str = generated, as_text: bool = to_string):
            value = row[source]
            return str(value) if as_text and value is not None and not isinstance(value, str) else value

        engine.run(
            "add_field",
            dataset=output_dataset,
            field_name=target.name,
            field_type=target.field_type,
            length=target.length,
            alias=target.alias,
        )
        engine.run("calculate_field", dataset=output_dataset, field=target.name, expression=copy_value)
        engine.run("delete_field", dataset=output_dataset, fields=generated)
        restored.append(target.name)
        logger.debug("field_reconciled", generated=generated, restored=target.name)
    return restored
