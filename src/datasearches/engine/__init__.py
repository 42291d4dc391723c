"""Dataset engine: workspace storage, map session and geoprocessing jobs."""

from datasearches.engine.jobs import GeoprocessingEngine, Job, JobStatus, OperationContext
from datasearches.engine.session import Layer, MapSession, SelectionMethod
from datasearches.engine.workspace import FREQUENCY, OBJECTID, SHAPE, Workspace

__all__ = [
    "FREQUENCY",
    "GeoprocessingEngine",
    "Job",
    "JobStatus",
    "Layer",
    "MapSession",
    "OBJECTID",
    "OperationContext",
    "SHAPE",
    "SelectionMethod",
    "Workspace",
]
