"""Tests for YAML-driven batch searches."""

import pytest
import yaml
from shapely.geometry import box

from datasearches.core.models import FieldInfo, FieldType
from datasearches.export.batch import (
    OutputType,
    SearchDefinition,
    load_search_definition,
    run_search,
)


@pytest.fixture
def search_sites(workspace):
    """Search layer with one site, reference 2024/015, at 0-10 on both axes."""
    workspace.create_feature_class("SearchSites", [FieldInfo(name="ref", field_type=FieldType.STRING)])
    workspace.insert_rows("SearchSites", [{"Shape": box(0, 0, 10, 10), "ref": "2024/015"}])
    return "SearchSites"


def definition(tmp_path, **overrides):
    # a 15m buffer reaches sites 1 and 2 but not site 3
    values = {
        "reference": "2024/015",
        "site_name": "Manor Farm",
        "search_layer": "SearchSites",
        "search_column": "ref",
        "buffer_size": 15,
        "output_root": tmp_path,
        "layers": [
            {
                "name": "SSSI",
                "layer_name": "Sites",
                "table_output_name": "SSSI_%shortref%",
                "columns": "Site,Area",
            }
        ],
    }
    values.update(overrides)
    return SearchDefinition.model_validate(values)


def read(path):
    return path.read_bytes().decode("utf-8")


class TestSearchDefinition:
    def test_radius_and_distance(self):
        search = SearchDefinition(
            reference="1", search_layer="S", search_column="ref", buffer_size=1.5, buffer_units="km"
        )

        assert search.radius == "1.5km"
        assert search.buffer_distance == 1500.0

    def test_load(self, tmp_path):
        path = tmp_path / "search.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "reference": "2024/015",
                    "search_layer": "SearchSites",
                    "search_column": "ref",
                    "buffer_size": 500,
                    "layers": [
                        {"name": "SSSI", "layer_name": "Sites", "columns": "Site", "output_type": "CLIP"}
                    ],
                }
            )
        )

        loaded = load_search_definition(path)

        assert loaded.radius == "500m"
        assert loaded.layers[0].output_type == OutputType.CLIP

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_search_definition(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "search.yaml"
        path.write_text("reference: [unclosed\n")

        with pytest.raises(ValueError, match="Invalid YAML"):
            load_search_definition(path)

    def test_buffer_size_must_be_positive(self, tmp_path):
        path = tmp_path / "search.yaml"
        path.write_text("reference: '1'\nsearch_layer: S\nsearch_column: ref\nbuffer_size: 0\n")

        with pytest.raises(ValueError, match="Invalid search definition"):
            load_search_definition(path)


class TestRunSearch:
    def test_layer_table_and_log(self, workspace, settings, search_sites, sites, tmp_path):
        result = run_search(workspace, definition(tmp_path), settings)

        assert result.success
        assert result.output_folder == tmp_path / "2024_015"
        table = tmp_path / "2024_015" / "SSSI_2024_015.csv"
        assert read(table) == "Site,Area\r\nA,10\r\nA,5\r\n"
        assert result.outcomes[0].rows == 2
        assert result.outcomes[0].table_path == table
        assert result.log_path == tmp_path / "2024_015" / "DataSearch_015.log"
        assert "Process complete" in result.log_path.read_text()

    def test_combined_sites_table(self, workspace, settings, search_sites, sites, tmp_path):
        search = definition(
            tmp_path,
            combined_sites={"table_name": "%shortref%_sites", "columns": "Layer,Site"},
            layers=[
                {
                    "name": "SSSI",
                    "layer_name": "Sites",
                    "columns": "Site",
                    "combined_sites_columns": '"SSSI",Site',
                }
            ],
        )

        assert run_search(workspace, search, settings).success

        combined = tmp_path / "2024_015" / "2024_015_sites.csv"
        assert read(combined) == 'Layer,Site\r\n"SSSI",A\r\n"SSSI",A\r\n'

    def test_keep_layer_clipped(self, workspace, settings, search_sites, sites, tmp_path):
        search = definition(
            tmp_path,
            layers=[
                {
                    "name": "SSSI",
                    "layer_name": "Sites",
                    "columns": "Site",
                    "keep_layer": True,
                    "gis_output_name": "SSSI_clip",
                    "output_type": "CLIP",
                }
            ],
        )

        result = run_search(workspace, search, settings)

        assert result.outcomes[0].kept_as == "SSSI_clip"
        assert workspace.count("SSSI_clip") == 2
        areas = sorted(g.area for _, g in workspace.read_geometries("SSSI_clip"))
        assert areas == pytest.approx([50.0, 100.0])

    def test_missing_layer_fails_but_search_continues(
        self, workspace, settings, search_sites, sites, tmp_path
    ):
        search = definition(
            tmp_path,
            layers=[
                {"name": "Gone", "layer_name": "Nope", "columns": "Site"},
                {"name": "SSSI", "layer_name": "Sites", "columns": "Site"},
            ],
        )

        result = run_search(workspace, search, settings)

        assert not result.success
        assert not result.aborted
        assert result.failed_layers == ["Gone"]
        assert result.outcomes[0].rows == -1
        assert result.outcomes[1].rows == 2

    def test_stop_on_error(self, workspace, settings, search_sites, sites, tmp_path):
        search = definition(
            tmp_path,
            stop_on_error=True,
            layers=[
                {"name": "Gone", "layer_name": "Nope", "columns": "Site"},
                {"name": "SSSI", "layer_name": "Sites", "columns": "Site"},
            ],
        )

        result = run_search(workspace, search, settings)

        assert result.aborted
        assert len(result.outcomes) == 1

    def test_unknown_reference_aborts(self, workspace, settings, search_sites, sites, tmp_path):
        notices = []

        result = run_search(
            workspace, definition(tmp_path, reference="9999/1"), settings, notify=notices.append
        )

        assert result.aborted
        assert result.outcomes == []
        assert notices == ["No features found in SearchSites for 9999/1"]
        assert "Process aborted" in result.log_path.read_text()
