"""Temporary datasets of an export run and their cleanup.

    with TemporaryResources(engine, ["TempOutput", "TempTable"], log=log) as temps:
        engine.run("copy_features", in_dataset=layer, out_dataset=temps.names[0])
        ...
    # both datasets are gone here, whether the block raised or not

Cleanup is best-effort: failures are written to the log and never raised.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

import duckdb

from datasearches.core.errors import EngineOperationError, ErrorCategory, WorkspaceError
from datasearches.core.logging import SearchLog, get_logger
from datasearches.engine.jobs import GeoprocessingEngine

logger = get_logger(__name__)


class TemporaryResources:
    """Tracks temporary dataset names and removes them when the scope ends."""

    def __init__(
        self,
        engine: GeoprocessingEngine,
        names: Iterable[str] = (),
        log: SearchLog | None = None,
    ):
        self.engine = engine
        self.log = log
        self.names: list[str] = []
        self.failures: list[str] = []
        for name in names:
            self.track(name)

    def track(self, name: str) -> str:
        if name.lower() not in (n.lower() for n in self.names):
            self.names.append(name)
        return name

    def cleanup(self) -> list[str]:
        """Remove every tracked name from the session and the workspace.

        Returns:
            Messages for the removals that failed
        """
        self.failures = []
        for name in self.names:
            self._remove_references(name)
            self._delete(name)
        return self.failures

    def _remove_references(self, name: str) -> None:
        session = self.engine.session
        if session is None:
            return
        # re-query after every removal, the name may be registered repeatedly
        while session.remove_layer(name):
            logger.debug("temporary_layer_removed", name=name)
        while session.remove_table(name):
            logger.debug("temporary_table_removed", name=name)

    def _delete(self, name: str) -> None:
        try:
            if self.engine.workspace.exists(name):
                self.engine.run("delete", dataset=name)
        except EngineOperationError as e:
            self._failed(name, e.describe())
        except (WorkspaceError, duckdb.Error, RuntimeError) as e:
            self._failed(name, str(e))

    def _failed(self, name: str, reason: str) -> None:
        message = f"Cannot delete temporary dataset {name}: {reason}"
        self.failures.append(message)
        if self.log is not None:
            self.log.warning(message)
        logger.warning(
            "cleanup_failed", name=name, category=ErrorCategory.CLEANUP_FAILURE.value, error=reason
        )

    def __enter__(self) -> TemporaryResources:
        return self

    def __exit__(self, *args: Any) -> None:
        self.cleanup()


def with_temporary(
    engine: GeoprocessingEngine, *names: str, log: SearchLog | None = None
) -> TemporaryResources:
    return TemporaryResources(engine, names, log=log)
