"""Grouping and summary statistics over an export's working dataset.

The run is linear: validate the group and statistic specifications against
the dataset, inject a placeholder statistic when only grouping was asked for,
then execute the grouping operation and block until it finishes.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from datasearches.core.models import AggregateFunction, FieldInfo
from datasearches.engine.jobs import GeoprocessingEngine
from datasearches.export.columns import Statistic
from datasearches.export.derived import RADIUS_FIELD
from datasearches.export.schema import field_exists

PLACEHOLDER_FUNCTION = AggregateFunction.FIRST


@dataclass
class AggregationPlan:
    """Validated group columns and statistics, ready for the grouping operation."""

    group_columns: list[str] = field(default_factory=list)
    statistics: list[Statistic] = field(default_factory=list)
    placeholder: Statistic | None = None

    @property
    def requires_aggregation(self) -> bool:
        return bool(self.group_columns or self.statistics)

    @property
    def statistic_params(self) -> list[tuple[str, str]]:
        return [s.as_param() for s in self.statistics]


def plan_aggregation(
    group_columns: Sequence[str],
    statistics: Sequence[Statistic],
    fields: Sequence[FieldInfo],
    radius_field: bool = False,
) -> AggregationPlan:
    """Validate the specifications and inject the placeholder statistic.

    Unknown group and statistic fields are dropped silently, as are repeated
    statistics. When group columns remain but no statistic does, a single
    (first group column, FIRST) statistic is added, because the grouping
    operation needs at least one aggregate.

    Args:
        group_columns: Requested group-by fields, in order
        statistics: Requested statistics, in order
        fields: Fields of the dataset that will be grouped
        radius_field: Carry the Radius tag through with FIRST when statistics exist
    """
    groups = [name for name in group_columns if field_exists(fields, name)]
    stats: list[Statistic] = []
    for stat in statistics:
        if field_exists(fields, stat.field) and stat not in stats:
            stats.append(stat)

    placeholder = None
    if groups and not stats:
        placeholder = Statistic(field=groups[0], function=PLACEHOLDER_FUNCTION)
        stats.append(placeholder)

    if radius_field and stats and field_exists(fields, RADIUS_FIELD):
        radius_stat = Statistic(field=RADIUS_FIELD, function=AggregateFunction.FIRST)
        # a grouped Radius is already in the output
        if radius_stat not in stats and RADIUS_FIELD.lower() not in (g.lower() for g in groups):
            stats.append(radius_stat)

    return AggregationPlan(group_columns=groups, statistics=stats, placeholder=placeholder)


def run_statistics(
    engine: GeoprocessingEngine, plan: AggregationPlan, in_dataset: str, out_table: str
) -> str:
    """Summary statistics into a standalone table (one row per group)."""
    return engine.run(
        "statistics",
        in_dataset=in_dataset,
        out_table=out_table,
        statistics=plan.statistic_params,
        case_fields=plan.group_columns,
    )


def run_dissolve(
    engine: GeoprocessingEngine, plan: AggregationPlan, in_dataset: str, out_dataset: str
) -> str:
    """Dissolve into a feature class (one merged feature per group)."""
    return engine.run(
        "dissolve",
        in_dataset=in_dataset,
        out_dataset=out_dataset,
        dissolve_fields=plan.group_columns,
        statistics=plan.statistic_params,
    )
