"""Base models and types used across all modules.

This module contains the fundamental types that don't belong to any specific
domain module (engine, export, sources).
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from pathlib import PurePath
from typing import Any

from pydantic import BaseModel, Field


class Result[T](BaseModel):
    """Result type for operations that can fail.

    Use this instead of exceptions for expected failures.
    Exceptions are reserved for unexpected/programming errors.
    """

    success: bool
    value: T | None = None
    error: str | None = None
    warnings: list[str] = Field(default_factory=list)

    @classmethod
    def ok(cls, value: T, warnings: list[str] | None = None) -> Result[T]:
        """Create a successful result."""
        return cls(success=True, value=value, warnings=warnings or [])

    @classmethod
    def fail(cls, error: str) -> Result[T]:
        """Create a failed result."""
        return cls(success=False, error=error)

    def unwrap(self) -> T:
        """Get the value or raise if failed."""
        if not self.success:
            raise ValueError(f"Result failed: {self.error}")
        assert self.value is not None
        return self.value

    def map(self, fn: Callable[[T], Any]) -> Result[Any]:
        """Transform the value if successful."""
        if self.success and self.value is not None:
            return Result.ok(fn(self.value), self.warnings)
        return self


# === Enums ===


class FieldType(str, Enum):
    """Field types exposed by the feature store."""

    STRING = "string"
    INTEGER = "integer"
    DOUBLE = "double"
    DATE = "date"
    GEOMETRY = "geometry"
    OTHER = "other"

    @property
    def is_numeric(self) -> bool:
        return self in (FieldType.INTEGER, FieldType.DOUBLE)


class DatasetKind(str, Enum):
    """Kind of record collection."""

    FEATURE_CLASS = "feature_class"
    TABLE = "table"


class GeometryType(str, Enum):
    """Simplified geometry type of a feature class."""

    POINT = "point"
    LINE = "line"
    POLYGON = "polygon"
    OTHER = "other"


class AreaUnit(str, Enum):
    """Units available for the derived area field."""

    HECTARES = "ha"
    SQUARE_METERS = "m2"
    SQUARE_KILOMETERS = "km2"

    @property
    def square_meters(self) -> float:
        """Number of square metres in one unit."""
        return {
            AreaUnit.HECTARES: 10_000.0,
            AreaUnit.SQUARE_METERS: 1.0,
            AreaUnit.SQUARE_KILOMETERS: 1_000_000.0,
        }[self]

    @classmethod
    def parse(cls, text: str) -> AreaUnit:
        """Parse a unit case-insensitively ('HA', 'm2', ...)."""
        return cls(text.strip().lower())


class AggregateFunction(str, Enum):
    """Aggregate functions supported by the grouping operations."""

    SUM = "SUM"
    MEAN = "MEAN"
    MIN = "MIN"
    MAX = "MAX"
    RANGE = "RANGE"
    STD = "STD"
    COUNT = "COUNT"
    FIRST = "FIRST"
    LAST = "LAST"
    MEDIAN = "MEDIAN"
    VARIANCE = "VARIANCE"
    UNIQUE = "UNIQUE"


# === Identifiers ===


class FieldInfo(BaseModel):
    """A field of a dataset."""

    name: str
    alias: str | None = None
    field_type: FieldType
    length: int = 0
    required: bool = False

    @property
    def display_alias(self) -> str:
        return self.alias or self.name


class DatasetRef(BaseModel):
    """Reference to a dataset by workspace location and name."""

    workspace: str
    name: str

    @classmethod
    def parse(cls, full_path: str) -> DatasetRef:
        """Split a full path into workspace and dataset name."""
        path = PurePath(full_path)
        return cls(workspace=str(path.parent), name=path.name)

    @property
    def full_path(self) -> str:
        return str(PurePath(self.workspace) / self.name)

    @property
    def is_single_file(self) -> bool:
        """True when the name carries a three letter extension (e.g. 'sites.shp')."""
        return len(self.name) > 4 and self.name[-4] == "."

    @property
    def is_server_workspace(self) -> bool:
        """True for remote/server workspaces whose contents are not verified locally."""
        return self.workspace.lower().endswith("sde")

    def __str__(self) -> str:
        return self.full_path
