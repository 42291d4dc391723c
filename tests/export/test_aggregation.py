"""Tests for aggregation planning and execution."""

from datasearches.core.models import AggregateFunction, FieldInfo, FieldType
from datasearches.export.aggregation import (
    PLACEHOLDER_FUNCTION,
    plan_aggregation,
    run_dissolve,
    run_statistics,
)
from datasearches.export.columns import Statistic

FIELDS = [
    FieldInfo(name="OBJECTID", field_type=FieldType.INTEGER, required=True),
    FieldInfo(name="Site", field_type=FieldType.STRING),
    FieldInfo(name="Area", field_type=FieldType.DOUBLE),
    FieldInfo(name="Radius", field_type=FieldType.STRING),
]

AREA_SUM = Statistic(field="Area", function=AggregateFunction.SUM)


class TestPlanAggregation:
    """Validation and placeholder injection."""

    def test_group_without_statistics_injects_one_placeholder(self):
        plan = plan_aggregation(["Site"], [], FIELDS)

        assert plan.placeholder == Statistic(field="Site", function=AggregateFunction.FIRST)
        assert plan.statistics == [plan.placeholder]
        assert PLACEHOLDER_FUNCTION == AggregateFunction.FIRST

    def test_placeholder_uses_first_surviving_group_column(self):
        plan = plan_aggregation(["Nope", "Area", "Site"], [], FIELDS)

        assert plan.group_columns == ["Area", "Site"]
        assert plan.statistic_params == [("Area", "FIRST")]

    def test_unknown_fields_are_dropped(self):
        unknown = Statistic(field="Nope", function=AggregateFunction.MAX)

        plan = plan_aggregation(["Nope"], [unknown, AREA_SUM, AREA_SUM], FIELDS)

        assert plan.group_columns == []
        assert plan.statistics == [AREA_SUM]
        assert plan.placeholder is None

    def test_nothing_requested(self):
        plan = plan_aggregation([], [], FIELDS)

        assert not plan.requires_aggregation
        assert plan.statistics == []

    def test_radius_is_carried_with_first(self):
        plan = plan_aggregation(["Site"], [AREA_SUM], FIELDS, radius_field=True)

        assert plan.statistic_params == [("Area", "SUM"), ("Radius", "FIRST")]

    def test_radius_not_added_when_grouped_on(self):
        plan = plan_aggregation(["Radius"], [AREA_SUM], FIELDS, radius_field=True)

        assert plan.statistic_params == [("Area", "SUM")]

    def test_radius_requires_the_field(self):
        fields = [f for f in FIELDS if f.name != "Radius"]

        plan = plan_aggregation(["Site"], [AREA_SUM], fields, radius_field=True)

        assert plan.statistic_params == [("Area", "SUM")]


class TestRunAggregation:
    def test_run_statistics(self, workspace, engine, sites):
        plan = plan_aggregation(["Site"], [], workspace.list_fields(sites))

        assert run_statistics(engine, plan, sites, "Stats") == "Stats"
        rows = list(workspace.search("Stats", fields=["Site", "FIRST_Site"]))
        assert rows == [{"Site": "A", "FIRST_Site": "A"}, {"Site": "B", "FIRST_Site": "B"}]

    def test_run_dissolve(self, workspace, engine, sites):
        plan = plan_aggregation([], [AREA_SUM], workspace.list_fields(sites))

        run_dissolve(engine, plan, sites, "Merged")

        assert [r["SUM_Area"] for r in workspace.search("Merged", fields=["SUM_Area"])] == [22.0]
