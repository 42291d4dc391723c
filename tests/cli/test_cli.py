"""Tests for the datasearches command line."""

import pytest
import yaml
from typer.testing import CliRunner

from datasearches.cli.main import app
from datasearches.core.config import get_settings
from datasearches.core.models import DatasetKind
from datasearches.engine.workspace import Workspace

runner = CliRunner()


@pytest.fixture(autouse=True)
def fast_polling(monkeypatch):
    monkeypatch.setenv("DATASEARCHES_POLL_INTERVAL_SECONDS", "0.01")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def ws_path(tmp_path):
    return tmp_path / "searches.duckdb"


@pytest.fixture
def loaded(tmp_path, ws_path):
    """Workspace file holding SearchSites and Sites, loaded through the CLI."""
    search_csv = tmp_path / "search_sites.csv"
    search_csv.write_text('ref,WKT\n2024/015,"POLYGON ((0 0, 10 0, 10 10, 0 10, 0 0))"\n')
    sites_csv = tmp_path / "sites.csv"
    sites_csv.write_text(
        "Site,Area,WKT\n"
        'A,10.0,"POLYGON ((0 0, 10 0, 10 10, 0 10, 0 0))"\n'
        'B,7.5,"POLYGON ((40 0, 50 0, 50 10, 40 10, 40 0))"\n'
    )
    for csv_path, name in ((search_csv, "SearchSites"), (sites_csv, "Sites")):
        result = runner.invoke(app, ["load", str(csv_path), "-w", str(ws_path), "-n", name])
        assert result.exit_code == 0, result.output
    return ws_path


class TestLoad:
    def test_load_feature_class(self, loaded):
        ws = Workspace.open(loaded)
        try:
            assert ws.kind("Sites") == DatasetKind.FEATURE_CLASS
            assert ws.count("Sites") == 2
        finally:
            ws.close()

    def test_load_reports_rows(self, tmp_path, ws_path):
        path = tmp_path / "owners.csv"
        path.write_text("Owner\nSmith\n")

        result = runner.invoke(app, ["load", str(path), "-w", str(ws_path)])

        assert result.exit_code == 0
        assert "Loaded 1 rows" in result.output

    def test_load_existing_name_fails(self, loaded, tmp_path):
        result = runner.invoke(
            app, ["load", str(tmp_path / "sites.csv"), "-w", str(loaded), "-n", "Sites"]
        )

        assert result.exit_code == 1
        assert "already exists" in result.output


class TestInspect:
    def test_lists_datasets(self, loaded):
        result = runner.invoke(app, ["inspect", "-w", str(loaded)])

        assert result.exit_code == 0
        assert "SearchSites" in result.output
        assert "feature class" in result.output

    def test_json(self, loaded):
        result = runner.invoke(app, ["inspect", "Sites", "-w", str(loaded), "--json"])

        assert result.exit_code == 0
        assert '"name": "Area"' in result.output

    def test_unknown_dataset(self, loaded):
        result = runner.invoke(app, ["inspect", "Nope", "-w", str(loaded)])

        assert result.exit_code == 1
        assert "Dataset Nope not found" in result.output

    def test_missing_workspace(self, tmp_path):
        result = runner.invoke(app, ["inspect", "-w", str(tmp_path / "none.duckdb")])

        assert result.exit_code == 1
        assert "No workspace found" in result.output


class TestExport:
    def test_export_csv(self, loaded, tmp_path):
        out = tmp_path / "out.csv"

        result = runner.invoke(
            app, ["export", "Sites", str(out), "-w", str(loaded), "-c", "Site,Area"]
        )

        assert result.exit_code == 0, result.output
        assert "2 records exported" in result.output
        assert out.read_bytes() == b"Site,Area\r\nA,10\r\nB,7.5\r\n"

    def test_export_within(self, loaded, tmp_path):
        out = tmp_path / "out.csv"

        result = runner.invoke(
            app,
            ["export", "Sites", str(out), "-w", str(loaded), "-c", "Site", "--within", "SearchSites"],
        )

        assert result.exit_code == 0, result.output
        assert out.read_bytes() == b"Site\r\nA\r\n"

    def test_export_unknown_layer(self, loaded, tmp_path):
        result = runner.invoke(app, ["export", "Nope", str(tmp_path / "x.csv"), "-w", str(loaded)])

        assert result.exit_code == 1
        assert "Layer Nope not found" in result.output


class TestSearch:
    def write_definition(self, tmp_path, **overrides):
        values = {
            "reference": "2024/015",
            "search_layer": "SearchSites",
            "search_column": "ref",
            "buffer_size": 5,
            "output_root": str(tmp_path / "out"),
            "layers": [{"name": "Sites", "layer_name": "Sites", "columns": "Site,Area"}],
        }
        values.update(overrides)
        path = tmp_path / "search.yaml"
        path.write_text(yaml.safe_dump(values))
        return path

    def test_search(self, loaded, tmp_path):
        definition = self.write_definition(tmp_path)

        result = runner.invoke(app, ["search", str(definition), "-w", str(loaded)])

        assert result.exit_code == 0, result.output
        table = tmp_path / "out" / "2024_015" / "Sites.csv"
        assert table.read_bytes() == b"Site,Area\r\nA,10\r\n"

    def test_unknown_reference_aborts(self, loaded, tmp_path):
        definition = self.write_definition(tmp_path)

        result = runner.invoke(
            app, ["search", str(definition), "-w", str(loaded), "-r", "9999/1", "-q"]
        )

        assert result.exit_code == 1
        assert "Search aborted" in result.output

    def test_invalid_definition(self, loaded, tmp_path):
        definition = self.write_definition(tmp_path, buffer_size=-1)

        result = runner.invoke(app, ["search", str(definition), "-w", str(loaded)])

        assert result.exit_code == 1
