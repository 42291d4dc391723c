"""Tests for the selection export pipeline."""

import pytest

import datasearches.export.pipeline as pipeline_module
from datasearches.core.errors import ErrorCategory, SchemaMismatch
from datasearches.core.models import AreaUnit, FieldInfo, FieldType
from datasearches.engine.workspace import OBJECTID, SHAPE
from datasearches.export.pipeline import (
    ExportRequest,
    export_selection_to_csv,
    export_selection_to_feature_class,
)


def read(path):
    return path.read_bytes().decode("utf-8")


@pytest.fixture
def loaded(export_ctx, sites):
    """Sites loaded in the session without a selection."""
    export_ctx.session.add_layer(sites)
    return sites


class RecordingLogger:
    """Stands in for a module logger and keeps every event."""

    def __init__(self):
        self.events = []

    def __getattr__(self, level):
        return lambda event, **kw: self.events.append((level, event, kw))


def assert_no_temporaries(ctx):
    for name in (ctx.temp_feature_class, ctx.temp_table):
        assert not ctx.workspace.exists(name)
        assert not ctx.session.has_layer(name)
        assert not ctx.session.has_table(name)


class TestExportToCsv:
    """export_selection_to_csv scenarios."""

    def test_group_and_sum(self, export_ctx, loaded, tmp_path):
        out = tmp_path / "sites.csv"
        request = ExportRequest(
            layer=loaded,
            output=str(out),
            columns="Site,Area",
            group_columns="Site",
            statistics_columns="Area SUM",
        )

        assert export_selection_to_csv(export_ctx, request) == 2
        assert read(out) == "Site,Area\r\nA,15\r\nB,7\r\n"
        assert_no_temporaries(export_ctx)

    def test_selection_is_exported(self, export_ctx, loaded, tmp_path):
        out = tmp_path / "sites.csv"
        export_ctx.session.select_by_attributes(loaded, "\"Status\" = 'Open'")

        rows = export_selection_to_csv(
            export_ctx, ExportRequest(layer=loaded, output=str(out), columns="Site,Status")
        )

        assert rows == 2
        assert read(out) == "Site,Status\r\nA,Open\r\nB,Open\r\n"

    def test_zero_rows(self, export_ctx, loaded, tmp_path):
        out = tmp_path / "sites.csv"
        export_ctx.session.select_by_attributes(loaded, "FALSE")

        rows = export_selection_to_csv(
            export_ctx, ExportRequest(layer=loaded, output=str(out), columns="Site,Area")
        )

        assert rows == 0
        assert read(out) == "Site,Area\r\n"
        assert_no_temporaries(export_ctx)

    def test_zero_rows_without_header(self, export_ctx, loaded, tmp_path):
        out = tmp_path / "sites.csv"
        export_ctx.session.select_by_attributes(loaded, "FALSE")
        request = ExportRequest(
            layer=loaded, output=str(out), columns="Site", include_headers=False
        )

        assert export_selection_to_csv(export_ctx, request) == 0
        assert read(out) == ""

    def test_all_literal_columns(self, export_ctx, loaded, tmp_path):
        out = tmp_path / "sites.csv"

        rows = export_selection_to_csv(
            export_ctx,
            ExportRequest(layer=loaded, output=str(out), columns='"SiteRef","Company"'),
        )

        assert rows == 3
        line = '"SiteRef","Company"\r\n'
        assert read(out) == line * 4

    def test_append(self, export_ctx, loaded, tmp_path):
        out = tmp_path / "sites.csv"
        first = ExportRequest(layer=loaded, output=str(out), columns="Site", order_columns="Site")
        second = first.model_copy(update={"overwrite": False})

        export_selection_to_csv(export_ctx, first)
        export_selection_to_csv(export_ctx, second)

        assert read(out) == "Site\r\nA\r\nA\r\nB\r\nA\r\nA\r\nB\r\n"

    def test_append_creates_missing_file_without_header(self, export_ctx, loaded, tmp_path):
        out = tmp_path / "combined.csv"
        request = ExportRequest(layer=loaded, output=str(out), columns="Site", overwrite=False)

        assert export_selection_to_csv(export_ctx, request) == 3
        assert read(out) == "A\r\nA\r\nB\r\n"

    def test_missing_layer(self, export_ctx, tmp_path):
        notices = []
        export_ctx.notify = notices.append

        rows = export_selection_to_csv(
            export_ctx, ExportRequest(layer="Missing", output=str(tmp_path / "x.csv"))
        )

        assert rows == -1
        assert notices == ["Cannot find layer Missing"]
        assert export_ctx.log.lines == ["Cannot find layer Missing"]

    def test_missing_layer_is_categorised(self, export_ctx, tmp_path, monkeypatch):
        recorder = RecordingLogger()
        monkeypatch.setattr(pipeline_module, "logger", recorder)

        export_selection_to_csv(
            export_ctx, ExportRequest(layer="Missing", output=str(tmp_path / "x.csv"))
        )

        assert (
            "warning",
            "input_missing",
            {"dataset": "Missing", "category": ErrorCategory.INPUT_MISSING.value},
        ) in recorder.events

    def test_check_for_selection(self, export_ctx, loaded, tmp_path):
        request = ExportRequest(
            layer=loaded, output=str(tmp_path / "x.csv"), columns="Site", check_for_selection=True
        )

        assert export_selection_to_csv(export_ctx, request) == -1
        assert "There are no features selected in Sites" in export_ctx.log.lines

    def test_missing_columns_degrade(self, export_ctx, loaded, tmp_path):
        out = tmp_path / "sites.csv"
        request = ExportRequest(
            layer=loaded,
            output=str(out),
            columns="Site,Nope",
            group_columns="Site;Gone",
            statistics_columns="Missing SUM",
        )

        assert export_selection_to_csv(export_ctx, request) == 2
        assert read(out) == "Site\r\nA\r\nB\r\n"
        assert SchemaMismatch("TempOutput", "Gone", "group") in export_ctx.mismatches
        assert SchemaMismatch("TempOutput", "Missing", "statistics") in export_ctx.mismatches
        assert SchemaMismatch("TempTable", "Nope", "output") in export_ctx.mismatches
        assert "The following columns cannot be found in TempTable: Nope" in export_ctx.log.lines

    def test_ordering(self, export_ctx, loaded, tmp_path):
        out = tmp_path / "sites.csv"
        request = ExportRequest(
            layer=loaded, output=str(out), columns="Status,Area", order_columns="Status"
        )

        export_selection_to_csv(export_ctx, request)

        assert read(out) == "Status,Area\r\nclosed,5\r\nOpen,10\r\nOpen,7\r\n"

    def test_area(self, export_ctx, loaded, tmp_path):
        out = tmp_path / "sites.csv"
        request = ExportRequest(
            layer=loaded,
            output=str(out),
            columns="Site,Area",
            include_area=True,
            area_unit=AreaUnit.SQUARE_METERS,
        )

        export_selection_to_csv(export_ctx, request)

        assert read(out) == "Site,Area\r\nA,100\r\nA,100\r\nB,100\r\n"
        # the source layer keeps its own values
        values = [r["Area"] for r in export_ctx.workspace.search(loaded, fields=["Area"])]
        assert values == [10.0, 5.0, 7.0]

    def test_distance(self, export_ctx, loaded, targets, tmp_path):
        out = tmp_path / "sites.csv"
        request = ExportRequest(
            layer=loaded, output=str(out), columns="Site,Distance", distance_target=targets
        )

        export_selection_to_csv(export_ctx, request)

        assert read(out) == "Site,Distance\r\nA,2\r\nA,8\r\nB,28\r\n"

    def test_distance_replaces_existing_field(self, export_ctx, loaded, targets, tmp_path):
        ws = export_ctx.workspace
        ws.add_field(loaded, FieldInfo(name="Distance", field_type=FieldType.DOUBLE))
        ws.update_values(loaded, "Distance", {1: 99.0, 2: 99.0, 3: 99.0})
        out = tmp_path / "sites.csv"
        request = ExportRequest(
            layer=loaded, output=str(out), columns="Site,Distance", distance_target=targets
        )

        assert export_selection_to_csv(export_ctx, request) == 3
        assert read(out) == "Site,Distance\r\nA,2\r\nA,8\r\nB,28\r\n"

    def test_radius(self, export_ctx, loaded, tmp_path):
        out = tmp_path / "sites.csv"
        request = ExportRequest(
            layer=loaded,
            output=str(out),
            columns="Site,Area,Radius",
            group_columns="Site",
            statistics_columns="Area MAX",
            radius="500m",
        )

        export_selection_to_csv(export_ctx, request)

        assert read(out) == "Site,Area,Radius\r\nA,10,500m\r\nB,7,500m\r\n"

    def test_without_rename_keeps_generated_names(self, export_ctx, loaded, tmp_path):
        out = tmp_path / "sites.csv"
        request = ExportRequest(
            layer=loaded,
            output=str(out),
            columns="Site,SUM_Area",
            group_columns="Site",
            statistics_columns="Area SUM",
            rename=False,
        )

        export_selection_to_csv(export_ctx, request)

        assert read(out) == "Site,SUM_Area\r\nA,15\r\nB,7\r\n"

    def test_engine_failure_aborts_and_cleans_up(self, export_ctx, loaded, tmp_path):
        out = tmp_path / "sites.csv"
        request = ExportRequest(
            layer=loaded, output=str(out), columns="Site", statistics_columns="Site SUM"
        )

        assert export_selection_to_csv(export_ctx, request) == -1
        assert not out.exists()
        assert any(
            line.startswith("Error exporting Sites: SUM requires a numeric field")
            for line in export_ctx.log.lines
        )
        assert_no_temporaries(export_ctx)

    def test_table_input(self, export_ctx, tmp_path):
        ws = export_ctx.workspace
        ws.create_table("Owners", [FieldInfo(name="Owner", field_type=FieldType.STRING)])
        ws.insert_rows("Owners", [{"Owner": "Smith, J"}, {"Owner": "Jones"}])
        out = tmp_path / "owners.csv"

        rows = export_selection_to_csv(
            export_ctx, ExportRequest(layer="Owners", output=str(out), columns="Owner")
        )

        assert rows == 2
        assert read(out) == 'Owner\r\n"Smith, J"\r\nJones\r\n'


class TestExportToFeatureClass:
    """export_selection_to_feature_class scenarios."""

    def test_copy_keeps_requested_columns(self, export_ctx, loaded):
        export_ctx.session.select_by_attributes(loaded, "\"Site\" = 'A'")

        assert export_selection_to_feature_class(
            export_ctx, ExportRequest(layer=loaded, output="Kept", columns='"SSSI",Site')
        )

        ws = export_ctx.workspace
        assert [f.name for f in ws.list_fields("Kept")] == [OBJECTID, SHAPE, "Site"]
        assert ws.count("Kept") == 2
        assert not ws.exists("TempOutput")
        assert not ws.exists("TempOutput_Dissolve")

    def test_dissolve_with_statistics(self, export_ctx, loaded):
        request = ExportRequest(
            layer=loaded,
            output="Kept",
            columns="Site,Area",
            group_columns="Site",
            statistics_columns="Area SUM",
        )

        assert export_selection_to_feature_class(export_ctx, request)

        ws = export_ctx.workspace
        assert [f.name for f in ws.list_fields("Kept")] == [OBJECTID, SHAPE, "Site", "Area"]
        rows = list(ws.search("Kept", fields=["Site", "Area"]))
        assert rows == [{"Site": "A", "Area": 15.0}, {"Site": "B", "Area": 7.0}]

    def test_existing_output_requires_overwrite(self, export_ctx, loaded):
        export_ctx.workspace.create_feature_class("Kept")
        request = ExportRequest(layer=loaded, output="Kept", overwrite=False)

        assert not export_selection_to_feature_class(export_ctx, request)
        assert "Output Kept already exists" in export_ctx.log.lines

    def test_parquet_output(self, export_ctx, loaded, tmp_path):
        out = tmp_path / "kept.parquet"

        assert export_selection_to_feature_class(
            export_ctx, ExportRequest(layer=loaded, output=str(out), columns="Site")
        )

        assert out.exists()
        assert not export_ctx.workspace.exists("TempOutput_Final")

    def test_table_input_is_rejected(self, export_ctx):
        export_ctx.workspace.create_table("Owners")

        assert not export_selection_to_feature_class(
            export_ctx, ExportRequest(layer="Owners", output="Kept")
        )
