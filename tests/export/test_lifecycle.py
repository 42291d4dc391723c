"""Tests for temporary dataset cleanup."""

import pytest

from datasearches.core.logging import SearchLog
from datasearches.engine.jobs import GeoprocessingEngine
from datasearches.export.lifecycle import TemporaryResources, with_temporary


class TestTemporaryResources:
    def test_removes_datasets_and_every_session_reference(self, workspace, session, engine, sites):
        engine.run("copy_features", in_dataset=sites, out_dataset="TempOutput")
        engine.run("copy_rows", in_dataset=sites, out_dataset="TempTable")
        session.add_layer("TempOutput")
        session.add_layer("TempOutput")
        session.add_table("TempTable")

        with TemporaryResources(engine, ["TempOutput", "TempTable"]):
            pass

        assert not workspace.exists("TempOutput")
        assert not workspace.exists("TempTable")
        assert not session.has_layer("TempOutput")
        assert not session.has_table("TempTable")
        assert workspace.exists(sites)

    def test_cleanup_runs_when_the_block_raises(self, workspace, engine, sites):
        with pytest.raises(RuntimeError), with_temporary(engine, "TempOutput"):
            engine.run("copy_features", in_dataset=sites, out_dataset="TempOutput")
            raise RuntimeError("boom")

        assert not workspace.exists("TempOutput")

    def test_missing_names_are_ignored(self, engine):
        resources = TemporaryResources(engine, ["Never", "Created"])

        assert resources.cleanup() == []

    def test_track_is_case_insensitive(self, engine):
        resources = TemporaryResources(engine, ["TempOutput"])

        resources.track("tempoutput")
        resources.track("TempTable")

        assert resources.names == ["TempOutput", "TempTable"]

    def test_failures_are_logged_not_raised(self, workspace, session, sites):
        def refuse(ctx, dataset):
            raise PermissionError(f"{dataset} is locked")

        log = SearchLog()
        with GeoprocessingEngine(
            workspace, session, poll_interval=0.01, operations={"delete": refuse}
        ) as eng:
            resources = TemporaryResources(eng, [sites], log=log)
            failures = resources.cleanup()

        assert failures == ["Cannot delete temporary dataset Sites: Sites is locked"]
        assert log.lines == failures
        assert workspace.exists(sites)
