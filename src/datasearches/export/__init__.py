"""Selection export: column projection, aggregation, field reconciliation and CSV output."""

from datasearches.export.batch import (
    SearchDefinition,
    SearchResult,
    load_search_definition,
    run_search,
)
from datasearches.export.pipeline import (
    ExportContext,
    ExportRequest,
    export_selection_to_csv,
    export_selection_to_feature_class,
)

__all__ = [
    "ExportContext",
    "ExportRequest",
    "SearchDefinition",
    "SearchResult",
    "export_selection_to_csv",
    "export_selection_to_feature_class",
    "load_search_definition",
    "run_search",
]
