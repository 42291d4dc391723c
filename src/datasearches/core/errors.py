"""Error taxonomy for export runs.

Schema mismatches degrade a request and are recorded, never raised.
Engine failures abort the current run and are raised as EngineOperationError.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorCategory(str, Enum):
    """Categories of problems an export run can meet."""

    INPUT_MISSING = "input_missing"
    SCHEMA_MISMATCH = "schema_mismatch"
    ENGINE_FAILURE = "engine_failure"
    CLEANUP_FAILURE = "cleanup_failure"


@dataclass(frozen=True)
class SchemaMismatch:
    """A requested field that does not exist in the dataset it was checked against."""

    dataset: str
    field_name: str
    context: str  # 'output', 'group', 'statistics', 'order', 'rename'

    @property
    def category(self) -> ErrorCategory:
        return ErrorCategory.SCHEMA_MISMATCH


class EngineOperationError(Exception):
    """A named operation of the dataset engine reported failure or cancellation."""

    category = ErrorCategory.ENGINE_FAILURE

    def __init__(self, operation: str, message: str, diagnostics: list[str] | None = None):
        self.operation = operation
        self.message = message
        self.diagnostics = diagnostics or []
        super().__init__(f"{operation}: {message}")

    def describe(self) -> str:
        """Message text followed by any accumulated diagnostics."""
        if not self.diagnostics:
            return self.message
        return self.message + " | " + " | ".join(self.diagnostics)


class DerivedFieldError(EngineOperationError):
    """Adding or calculating a derived field (area, distance, radius) failed."""


class ReconcileError(EngineOperationError):
    """The aggregation output does not have the layout the reconciler relies on."""


class WorkspaceError(Exception):
    """A workspace-level request could not be satisfied (missing dataset, required field)."""
