"""Tests for job dispatch, polling and failure reporting."""

import time

import pytest

from datasearches.core.errors import EngineOperationError
from datasearches.engine.jobs import GeoprocessingEngine, JobStatus

POLL = 0.01


def echo(ctx, value):
    ctx.add_message(f"echo {value}")
    return value


def broken(ctx):
    ctx.add_message("step 1 done")
    raise ValueError("Tool failed")


def endless(ctx):
    while True:
        ctx.check_cancelled()
        time.sleep(POLL)


@pytest.fixture
def test_engine(workspace):
    eng = GeoprocessingEngine(
        workspace,
        poll_interval=POLL,
        operations={"echo": echo, "broken": broken, "endless": endless},
    )
    yield eng
    eng.close()


class TestJobStatus:
    def test_terminal_statuses(self):
        assert not JobStatus.EXECUTING.is_terminal
        assert JobStatus.SUCCEEDED.is_terminal
        assert JobStatus.FAILED.is_terminal
        assert JobStatus.CANCELLED.is_terminal


class TestGeoprocessingEngine:
    """Tests for execute/wait/run."""

    def test_execute_and_wait(self, test_engine):
        job = test_engine.execute("echo", value=42)

        assert test_engine.wait(job) == JobStatus.SUCCEEDED
        assert job.output == 42
        assert job.messages == ["echo 42"]
        assert job.error_message is None

    def test_run_returns_operation_value(self, test_engine):
        assert test_engine.run("echo", value="TempOutput") == "TempOutput"

    def test_failed_job(self, test_engine):
        job = test_engine.execute("broken")

        assert test_engine.wait(job) == JobStatus.FAILED
        assert job.error_message == "Tool failed"
        assert job.output is None

    def test_run_raises_with_diagnostics(self, test_engine):
        with pytest.raises(EngineOperationError) as exc_info:
            test_engine.run("broken")

        error = exc_info.value
        assert error.operation == "broken"
        assert error.message == "Tool failed"
        assert error.diagnostics == ["step 1 done"]
        assert error.describe() == "Tool failed | step 1 done"

    def test_unknown_operation(self, test_engine):
        with pytest.raises(EngineOperationError, match="Unknown operation"):
            test_engine.execute("nope")

    def test_cancelled_job(self, test_engine):
        job = test_engine.execute("endless")
        job.cancel()

        assert test_engine.wait(job) == JobStatus.CANCELLED
        assert job.error_message == "Operation cancelled"

    def test_register_operation(self, test_engine):
        test_engine.register("double", lambda ctx, value: value * 2)

        assert "double" in test_engine.operation_names
        assert test_engine.run("double", value=4) == 8

    def test_default_operations_are_registered(self, workspace):
        with GeoprocessingEngine(workspace, poll_interval=POLL) as eng:
            names = eng.operation_names

        for name in ("copy_features", "statistics", "dissolve", "spatial_join_closest", "delete"):
            assert name in names
