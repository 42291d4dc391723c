"""Derived fields: area, distance to the nearest target and a radius tag.

Any engine failure while adding or calculating one of these fields is raised
as DerivedFieldError and ends the export run.
"""

from __future__ import annotations

from datasearches.core.errors import DerivedFieldError, EngineOperationError
from datasearches.core.logging import get_logger
from datasearches.core.models import AreaUnit, FieldType, GeometryType
from datasearches.engine.jobs import GeoprocessingEngine
from datasearches.engine.operations import DISTANCE

logger = get_logger(__name__)

AREA_FIELD = "Area"
AREA_FIELD_LENGTH = 20
RADIUS_FIELD = "Radius"
RADIUS_FIELD_LENGTH = 25
NO_RADIUS = "none"


def has_radius(radius: str | None) -> bool:
    """A radius tag is requested for anything other than the 'none' sentinel."""
    return bool(radius) and radius.strip().lower() != NO_RADIUS


def add_area(engine: GeoprocessingEngine, dataset: str, unit: AreaUnit) -> bool:
    """Add and calculate the Area field on polygon datasets.

    The geometry type is decided by sampling the first feature. Other
    geometry types are left untouched.

    Returns:
        True if the dataset is polygonal and the area was calculated
    """
    workspace = engine.workspace
    if workspace.geometry_type(dataset) != GeometryType.POLYGON:
        logger.debug("area_skipped", dataset=dataset)
        return False
    try:
        if workspace.find_field(dataset, AREA_FIELD) is None:
            engine.run(
                "add_field",
                dataset=dataset,
                field_name=AREA_FIELD,
                field_type=FieldType.DOUBLE,
                length=AREA_FIELD_LENGTH,
            )
        engine.run("calculate_area", dataset=dataset, field=AREA_FIELD, unit=unit)
    except EngineOperationError as e:
        raise DerivedFieldError(e.operation, f"Cannot calculate area: {e.message}", e.diagnostics) from e
    return True


def add_distance(
    engine: GeoprocessingEngine, in_dataset: str, target_dataset: str, out_dataset: str
) -> str:
    """Join every (selected) feature to its nearest target, adding a Distance field."""
    try:
        return engine.run(
            "spatial_join_closest",
            target_dataset=in_dataset,
            join_dataset=target_dataset,
            out_dataset=out_dataset,
            distance_field=DISTANCE,
        )
    except EngineOperationError as e:
        raise DerivedFieldError(
            e.operation, f"Cannot calculate distance to {target_dataset}: {e.message}", e.diagnostics
        ) from e


def add_radius(engine: GeoprocessingEngine, dataset: str, radius: str) -> None:
    """Add a text Radius field holding the same literal on every row."""
    try:
        if engine.workspace.find_field(dataset, RADIUS_FIELD) is None:
            engine.run(
                "add_field",
                dataset=dataset,
                field_name=RADIUS_FIELD,
                field_type=FieldType.STRING,
                length=RADIUS_FIELD_LENGTH,
            )
        engine.run("calculate_field", dataset=dataset, field=RADIUS_FIELD, value=radius)
    except EngineOperationError as e:
        raise DerivedFieldError(e.operation, f"Cannot add radius: {e.message}", e.diagnostics) from e
