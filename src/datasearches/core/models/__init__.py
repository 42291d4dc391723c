"""Core models: ONLY truly shared base types.

Domain models live in their respective packages:
- engine/jobs.py        -> Job handles and statuses
- export/columns.py     -> Column, group and statistic specifications
- export/pipeline.py    -> Export requests and run context
"""

from datasearches.core.models.base import (
    AggregateFunction,
    AreaUnit,
    DatasetKind,
    DatasetRef,
    FieldInfo,
    FieldType,
    GeometryType,
    Result,
)

__all__ = [
    "AggregateFunction",
    "AreaUnit",
    "DatasetKind",
    "DatasetRef",
    "FieldInfo",
    "FieldType",
    "GeometryType",
    "Result",
]
