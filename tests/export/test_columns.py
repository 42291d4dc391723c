"""Tests for column, group and statistic specifications."""

import pytest

from datasearches.core.models import AggregateFunction, FieldInfo, FieldType
from datasearches.export.columns import (
    Statistic,
    format_statistics,
    is_literal,
    parse_statistics,
    project,
    split_columns,
    split_group_columns,
)
from datasearches.export.schema import dataset_exists, field_exists, filter_existing

FIELDS = [
    FieldInfo(name="OBJECTID", field_type=FieldType.INTEGER, required=True),
    FieldInfo(name="SiteName", alias="Site Name", field_type=FieldType.STRING),
    FieldInfo(name="Area", field_type=FieldType.DOUBLE),
    FieldInfo(name="Status", field_type=FieldType.STRING),
]


class TestSplitting:
    def test_split_columns_trims(self):
        assert split_columns(" SiteName , Area,,Status ") == ["SiteName", "Area", "Status"]
        assert split_columns("") == []
        assert split_columns(None) == []

    def test_split_group_columns_accepts_both_separators(self):
        assert split_group_columns("SiteName; Status") == ["SiteName", "Status"]
        assert split_group_columns("SiteName,Status") == ["SiteName", "Status"]

    def test_is_literal(self):
        assert is_literal('"Designated"')
        assert not is_literal("Designated")


class TestProject:
    """Projection of a column specification onto a schema."""

    def test_removes_exactly_the_unknown_names(self):
        projection = project("Nope, Status, SiteName, Other, Area", FIELDS)

        assert projection.tokens == ["Status", "SiteName", "Area"]
        assert projection.missing == ["Nope", "Other"]
        assert projection.spec == "Status,SiteName,Area"

    def test_matches_alias_and_case(self):
        projection = project("site name,AREA", FIELDS)

        assert projection.tokens == ["site name", "AREA"]
        assert projection.missing == []

    def test_literals_pass_through_unvalidated(self):
        projection = project('"SiteRef","Company"', FIELDS)

        assert projection.tokens == ['"SiteRef"', '"Company"']
        assert projection.missing == []
        assert projection.field_tokens == []
        assert not projection.is_empty

    def test_all_unknown_is_empty(self):
        projection = project("Nope,Other", FIELDS)

        assert projection.is_empty
        assert projection.spec == ""


class TestStatistic:
    def test_parse(self):
        stat = Statistic.parse("Area sum")

        assert stat == Statistic(field="Area", function=AggregateFunction.SUM)
        assert stat.as_param() == ("Area", "SUM")
        assert str(stat) == "Area SUM"

    @pytest.mark.parametrize("text", ["Area", "Area SUM extra", "Area TOTAL"])
    def test_parse_invalid(self, text):
        with pytest.raises(ValueError):
            Statistic.parse(text)

    def test_parse_statistics_collects_invalid_entries(self):
        statistics, invalid = parse_statistics("Area SUM; Status FIRST;Area TOTAL;;")

        assert [str(s) for s in statistics] == ["Area SUM", "Status FIRST"]
        assert invalid == ["Area TOTAL"]
        assert format_statistics(statistics) == "Area SUM;Status FIRST"


class TestSchema:
    def test_field_exists(self):
        assert field_exists(FIELDS, "sitename")
        assert field_exists(FIELDS, "SITE NAME")
        assert not field_exists(FIELDS, "Site")

    def test_filter_existing_preserves_order(self):
        assert filter_existing(FIELDS, ["Status", "Nope", "Area"]) == (["Status", "Area"], ["Nope"])

    def test_dataset_exists_in_catalog(self, workspace, sites):
        assert dataset_exists(workspace, "sites")
        assert not dataset_exists(workspace, "Missing")

    def test_single_file_dataset_checks_disk(self, workspace, tmp_path):
        path = tmp_path / "sites.shp"
        assert not dataset_exists(workspace, str(path))

        path.write_bytes(b"")
        assert dataset_exists(workspace, str(path))

    def test_server_workspace_is_assumed_to_exist(self, workspace):
        assert dataset_exists(workspace, "connections/gis.sde/Anything")

    def test_closed_workspace_reads_as_missing(self, workspace, sites):
        workspace.close()

        assert not dataset_exists(workspace, sites)
