"""Geoprocessing engine: named operations run as jobs on a worker thread.

The caller dispatches an operation and then blocks on it, polling the job
status at a fixed interval until it reaches a terminal state:

    engine = GeoprocessingEngine(workspace, session, poll_interval=1.0)
    job = engine.execute("copy_features", in_dataset="SSSIs", out_dataset="TempOutput")
    status = engine.wait(job)

    # or, raising EngineOperationError on failure/cancellation
    engine.run("delete", dataset="TempOutput")

There is no timeout; a job that keeps reporting EXECUTING is waited on
indefinitely.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from datasearches.core.errors import EngineOperationError
from datasearches.core.logging import get_logger
from datasearches.engine.session import MapSession
from datasearches.engine.workspace import Workspace

logger = get_logger(__name__)


class JobStatus(str, Enum):
    """Status of a dispatched operation."""

    EXECUTING = "executing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self != JobStatus.EXECUTING


class OperationCancelled(Exception):
    """Raised by an operation that stops early because its job was cancelled."""


@dataclass
class OperationContext:
    """What an operation sees while it runs on the worker thread."""

    workspace: Workspace
    session: MapSession | None
    messages: list[str] = field(default_factory=list)
    cancel_event: threading.Event = field(default_factory=threading.Event)

    def add_message(self, message: str) -> None:
        self.messages.append(message)

    def check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise OperationCancelled("Operation cancelled")

    def selection(self, name: str) -> frozenset[int] | None:
        """Selection of a loaded layer, if the dataset is loaded in the session."""
        return self.session.selected_ids(name) if self.session is not None else None


Operation = Callable[..., Any]


@dataclass
class Job:
    """Handle for one dispatched operation."""

    operation: str
    future: Future[Any]
    context: OperationContext

    @property
    def status(self) -> JobStatus:
        if not self.future.done():
            return JobStatus.EXECUTING
        if self.future.cancelled():
            return JobStatus.CANCELLED
        error = self.future.exception()
        if isinstance(error, OperationCancelled):
            return JobStatus.CANCELLED
        if error is not None:
            return JobStatus.FAILED
        return JobStatus.SUCCEEDED

    @property
    def messages(self) -> list[str]:
        """Diagnostic messages accumulated by the operation."""
        return list(self.context.messages)

    @property
    def error_message(self) -> str | None:
        if self.status == JobStatus.CANCELLED:
            return "Operation cancelled"
        if self.status != JobStatus.FAILED:
            return None
        return str(self.future.exception())

    @property
    def output(self) -> Any:
        """Value returned by the operation (usually the output dataset name)."""
        return self.future.result() if self.status == JobStatus.SUCCEEDED else None

    def cancel(self) -> None:
        self.context.cancel_event.set()
        self.future.cancel()


class GeoprocessingEngine:
    """Runs named operations against a workspace, one at a time."""

    def __init__(
        self,
        workspace: Workspace,
        session: MapSession | None = None,
        poll_interval: float = 1.0,
        operations: dict[str, Operation] | None = None,
    ):
        if operations is None:
            from datasearches.engine.operations import OPERATIONS

            operations = OPERATIONS
        self.workspace = workspace
        self.session = session
        self.poll_interval = poll_interval
        self._operations = dict(operations)
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="geoprocessing")

    def register(self, name: str, operation: Operation) -> None:
        """Register (or replace) a named operation."""
        self._operations[name] = operation

    @property
    def operation_names(self) -> list[str]:
        return sorted(self._operations)

    def execute(self, operation: str, **params: Any) -> Job:
        """Dispatch a named operation and return immediately."""
        fn = self._operations.get(operation)
        if fn is None:
            raise EngineOperationError(operation, f"Unknown operation: {operation}")
        context = OperationContext(workspace=self.workspace, session=self.session)
        future = self._executor.submit(fn, context, **params)
        logger.debug("operation_dispatched", operation=operation)
        return Job(operation=operation, future=future, context=context)

    def wait(self, job: Job) -> JobStatus:
        """Block until the job reaches a terminal status."""
        while job.status == JobStatus.EXECUTING:
            time.sleep(self.poll_interval)
        status = job.status
        if status == JobStatus.FAILED:
            logger.warning(
                "operation_failed", operation=job.operation, error=job.error_message
            )
        return status

    def run(self, operation: str, **params: Any) -> Any:
        """Execute and wait, raising on a non-success terminal status.

        Returns:
            Value returned by the operation

        Raises:
            EngineOperationError: With the operation's message and diagnostics
        """
        job = self.execute(operation, **params)
        status = self.wait(job)
        if status != JobStatus.SUCCEEDED:
            raise EngineOperationError(
                operation, job.error_message or status.value, job.messages
            )
        try:
            return job.future.result()
        except CancelledError as e:
            raise EngineOperationError(operation, "Operation cancelled", job.messages) from e

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    def __enter__(self) -> GeoprocessingEngine:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
