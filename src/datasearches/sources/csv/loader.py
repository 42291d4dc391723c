"""CSV file loader - delimited text with an optional WKT geometry column."""

import re
import time
from pathlib import Path

import duckdb
import shapely
from pydantic import BaseModel
from shapely.errors import GEOSException

from datasearches.core.errors import WorkspaceError
from datasearches.core.logging import get_logger
from datasearches.core.models import DatasetKind, Result
from datasearches.engine.workspace import OBJECTID, SHAPE, Workspace, quote_ident

logger = get_logger(__name__)

DEFAULT_GEOMETRY_COLUMN = "WKT"
_WKT_STAGING = "__wkt"


class LoadedDataset(BaseModel):
    """A dataset created from a CSV file."""

    name: str
    kind: DatasetKind
    row_count: int
    field_count: int
    duration_seconds: float = 0.0


class CSVLoader:
    """Loader for CSV files.

    Column types come from DuckDB's CSV sniffer. When the geometry column is
    present its WKT text becomes the Shape of a feature class; otherwise the
    file becomes a standalone table.
    """

    def __init__(self, geometry_column: str = DEFAULT_GEOMETRY_COLUMN):
        self.geometry_column = geometry_column

    def get_columns(self, path: Path) -> Result[list[str]]:
        """Column names of a CSV file, in file order."""
        if not path.exists():
            return Result.fail(f"CSV file not found: {path}")
        try:
            conn = duckdb.connect(":memory:")
            try:
                rows = conn.execute(
                    f"DESCRIBE SELECT * FROM read_csv_auto('{_escape(path)}', header = true)"
                ).fetchall()
            finally:
                conn.close()
            return Result.ok([str(r[0]) for r in rows])
        except duckdb.Error as e:
            return Result.fail(f"Failed to read CSV schema: {e}")

    def load(
        self,
        workspace: Workspace,
        path: Path,
        name: str | None = None,
        overwrite: bool = False,
    ) -> Result[LoadedDataset]:
        """Load a CSV file into the workspace.

        Args:
            workspace: Target workspace
            path: CSV file
            name: Dataset name (default: sanitized file stem)
            overwrite: Replace an existing dataset of the same name

        Returns:
            Result containing the LoadedDataset
        """
        columns_result = self.get_columns(path)
        if not columns_result.success:
            return Result.fail(columns_result.error or "Failed to read CSV")
        columns = columns_result.unwrap()
        if not columns:
            return Result.fail("No columns found in CSV")

        dataset = name or _sanitize_table_name(path.stem)
        if workspace.exists(dataset) and not overwrite:
            return Result.fail(f"Dataset {dataset} already exists")

        start_time = time.time()
        geometry = next((c for c in columns if c.lower() == self.geometry_column.lower()), None)
        attributes = [
            c for c in columns if c != geometry and c.lower() not in (OBJECTID.lower(), SHAPE.lower())
        ]
        warnings = [
            f"Column {c} ignored: the name is reserved"
            for c in columns
            if c != geometry and c.lower() in (OBJECTID.lower(), SHAPE.lower())
        ]

        select = [f"row_number() OVER () AS {quote_ident(OBJECTID)}"]
        if geometry is not None:
            select.append(f"CAST(NULL AS BLOB) AS {quote_ident(SHAPE)}")
        select += [quote_ident(c) for c in attributes]
        if geometry is not None:
            select.append(f"{quote_ident(geometry)} AS {quote_ident(_WKT_STAGING)}")
        query = f"SELECT {', '.join(select)} FROM read_csv_auto('{_escape(path)}', header = true)"
        kind = DatasetKind.FEATURE_CLASS if geometry is not None else DatasetKind.TABLE

        try:
            workspace.create_from_query(dataset, kind, query)
            if geometry is not None:
                self._convert_geometry(workspace, dataset)
        except (duckdb.Error, WorkspaceError, GEOSException) as e:
            if workspace.exists(dataset):
                workspace.delete_dataset(dataset)
            return Result.fail(f"Failed to load {path.name}: {e}")

        loaded = LoadedDataset(
            name=dataset,
            kind=kind,
            row_count=workspace.count(dataset),
            field_count=len(workspace.list_fields(dataset)),
            duration_seconds=time.time() - start_time,
        )
        logger.info("csv_loaded", dataset=dataset, kind=kind.value, rows=loaded.row_count)
        return Result.ok(loaded, warnings=warnings)

    def _convert_geometry(self, workspace: Workspace, dataset: str) -> None:
        """Parse the staged WKT into Shape and drop the staging column."""
        rows = list(workspace.search(dataset, fields=[OBJECTID, _WKT_STAGING]))
        text = [r[_WKT_STAGING] or None for r in rows]
        geometries = shapely.from_wkt(text, on_invalid="raise")
        shapes = {
            int(r[OBJECTID]): (shapely.to_wkb(g) if g is not None else None)
            for r, g in zip(rows, geometries, strict=True)
        }
        workspace.update_values(dataset, SHAPE, shapes)
        workspace.delete_field(dataset, _WKT_STAGING)


def _escape(path: Path) -> str:
    return str(path).replace("'", "''")


def _sanitize_table_name(name: str) -> str:
    """Make a file stem usable as a dataset name."""
    sanitized = re.sub(r"[^a-zA-Z0-9_]", "_", name)
    if sanitized and sanitized[0].isdigit():
        sanitized = f"t_{sanitized}"
    return sanitized or "dataset"
