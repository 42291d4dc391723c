"""Data Searches.

Exports the features of GIS layers that fall inside a search area to
delimited text, with optional grouping, summary statistics and derived
area, distance and radius fields.

Example:
    from datasearches import ExportContext, ExportRequest, Workspace, export_selection_to_csv

    workspace = Workspace.open("searches.duckdb")
    ctx = ExportContext.create(workspace)
    ctx.session.add_layer("SSSIs")
    rows = export_selection_to_csv(
        ctx, ExportRequest(layer="SSSIs", output="sssi.csv", columns="Name,Area")
    )
"""

__version__ = "0.1.0"

from datasearches.core.models.base import Result
from datasearches.engine.workspace import Workspace
from datasearches.export.pipeline import (
    ExportContext,
    ExportRequest,
    export_selection_to_csv,
    export_selection_to_feature_class,
)

__all__ = [
    "ExportContext",
    "ExportRequest",
    "Result",
    "Workspace",
    "__version__",
    "export_selection_to_csv",
    "export_selection_to_feature_class",
]
