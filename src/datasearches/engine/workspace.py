"""DuckDB-backed workspace of feature classes and tables.

Every dataset is a DuckDB table. A small side catalog keeps what DuckDB
does not model natively:

- gdb_items:  dataset name and kind (feature class or table)
- gdb_fields: per-field alias and length

Feature classes always start with OBJECTID and Shape (WKB geometry), tables
with OBJECTID. These system fields are required and cannot be deleted.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, Sequence
from pathlib import Path
from typing import Any

import duckdb
import shapely
from shapely.geometry.base import BaseGeometry

from datasearches.core.connections import ConnectionConfig, ConnectionManager
from datasearches.core.errors import WorkspaceError
from datasearches.core.logging import get_logger
from datasearches.core.models import DatasetKind, FieldInfo, FieldType, GeometryType

logger = get_logger(__name__)

OBJECTID = "OBJECTID"
SHAPE = "Shape"
FREQUENCY = "FREQUENCY"

DEFAULT_STRING_LENGTH = 255
FETCH_BATCH_SIZE = 1000

_CATALOG_DDL = (
    "CREATE TABLE IF NOT EXISTS gdb_items (name VARCHAR PRIMARY KEY, kind VARCHAR NOT NULL)",
    "CREATE TABLE IF NOT EXISTS gdb_fields "
    "(dataset VARCHAR NOT NULL, name VARCHAR NOT NULL, alias VARCHAR, length INTEGER)",
)

_SQL_TYPES = {
    FieldType.STRING: "VARCHAR",
    FieldType.INTEGER: "BIGINT",
    FieldType.DOUBLE: "DOUBLE",
    FieldType.DATE: "TIMESTAMP",
    FieldType.GEOMETRY: "BLOB",
    FieldType.OTHER: "VARCHAR",
}

_INTEGER_SQL_TYPES = {
    "TINYINT", "SMALLINT", "INTEGER", "BIGINT", "HUGEINT",
    "UTINYINT", "USMALLINT", "UINTEGER", "UBIGINT",
}


def quote_ident(name: str) -> str:
    """Quote an identifier for DuckDB SQL."""
    return '"' + name.replace('"', '""') + '"'


def id_predicate(object_ids: frozenset[int] | None) -> str:
    """SQL predicate restricting rows to a selection ('TRUE' when there is none)."""
    if object_ids is None:
        return "TRUE"
    if not object_ids:
        return "FALSE"
    ids = ", ".join(str(int(i)) for i in sorted(object_ids))
    return f"{quote_ident(OBJECTID)} IN ({ids})"


def sql_type_for(field_type: FieldType) -> str:
    return _SQL_TYPES[field_type]


def field_type_from_sql(sql_type: str, is_shape: bool = False) -> FieldType:
    """Map a DuckDB column type onto the store's field types."""
    base = sql_type.upper().split("(")[0].strip()
    if base == "VARCHAR":
        return FieldType.STRING
    if base in _INTEGER_SQL_TYPES:
        return FieldType.INTEGER
    if base in ("DOUBLE", "FLOAT", "REAL", "DECIMAL"):
        return FieldType.DOUBLE
    if base.startswith("DATE") or base.startswith("TIMESTAMP"):
        return FieldType.DATE
    if base == "BLOB" and is_shape:
        return FieldType.GEOMETRY
    return FieldType.OTHER


def find_field(fields: Sequence[FieldInfo], name: str) -> FieldInfo | None:
    """Find a field by name, falling back to its alias.

    Both lookups are case-insensitive; the name match always wins over an
    alias match on a different field.
    """
    wanted = name.strip().lower()
    if not wanted:
        return None
    for f in fields:
        if f.name.lower() == wanted:
            return f
    for f in fields:
        if f.alias and f.alias.lower() == wanted:
            return f
    return None


def simplify_geometry_type(geom: BaseGeometry | None) -> GeometryType:
    """Reduce a geometry to point, line, polygon or other."""
    if geom is None:
        return GeometryType.OTHER
    geom_type = geom.geom_type
    if geom_type in ("Point", "MultiPoint"):
        return GeometryType.POINT
    if geom_type in ("Polygon", "MultiPolygon"):
        return GeometryType.POLYGON
    if geom_type in ("LineString", "MultiLineString", "LinearRing"):
        return GeometryType.LINE
    return GeometryType.OTHER


class Workspace:
    """A named collection of datasets stored in one DuckDB database."""

    def __init__(self, manager: ConnectionManager, location: str = ":memory:"):
        self.manager = manager
        self.location = location
        self.manager.initialize()
        with self.manager.duckdb_write() as conn:
            for ddl in _CATALOG_DDL:
                conn.execute(ddl)

    @classmethod
    def open(cls, path: str | Path = ":memory:", memory_limit: str = "2GB") -> Workspace:
        """Open (or create) a workspace at the given path."""
        config = ConnectionConfig.from_path(path, duckdb_memory_limit=memory_limit)
        return cls(ConnectionManager(config), location=str(path))

    def close(self) -> None:
        self.manager.close()

    # === Catalog ===

    def exists(self, name: str) -> bool:
        """True if a dataset with this name is registered (case-insensitive)."""
        return self.kind(name) is not None

    def kind(self, name: str) -> DatasetKind | None:
        with self.manager.duckdb_cursor() as cur:
            row = cur.execute(
                "SELECT kind FROM gdb_items WHERE lower(name) = lower(?)", [name]
            ).fetchone()
        return DatasetKind(row[0]) if row else None

    def catalog_name(self, name: str) -> str:
        """Canonical (as-created) name of a dataset."""
        with self.manager.duckdb_cursor() as cur:
            row = cur.execute(
                "SELECT name FROM gdb_items WHERE lower(name) = lower(?)", [name]
            ).fetchone()
        if row is None:
            raise WorkspaceError(f"Dataset {name} does not exist in {self.location}")
        return str(row[0])

    def list_datasets(self) -> list[tuple[str, DatasetKind]]:
        with self.manager.duckdb_cursor() as cur:
            rows = cur.execute("SELECT name, kind FROM gdb_items ORDER BY name").fetchall()
        return [(str(name), DatasetKind(kind)) for name, kind in rows]

    def list_fields(self, name: str) -> list[FieldInfo]:
        """Fields of a dataset in ordinal order."""
        dataset = self.catalog_name(name)
        is_feature_class = self.kind(dataset) == DatasetKind.FEATURE_CLASS
        with self.manager.duckdb_cursor() as cur:
            columns = cur.execute(f"DESCRIBE {quote_ident(dataset)}").fetchall()
            meta_rows = cur.execute(
                "SELECT name, alias, length FROM gdb_fields WHERE lower(dataset) = lower(?)",
                [dataset],
            ).fetchall()
        meta = {str(n).lower(): (alias, length) for n, alias, length in meta_rows}

        fields: list[FieldInfo] = []
        for column in columns:
            column_name, column_type = str(column[0]), str(column[1])
            is_shape = is_feature_class and column_name.lower() == SHAPE.lower()
            field_type = field_type_from_sql(column_type, is_shape=is_shape)
            alias, length = meta.get(column_name.lower(), (None, None))
            if length is None:
                length = DEFAULT_STRING_LENGTH if field_type == FieldType.STRING else 0
            fields.append(
                FieldInfo(
                    name=column_name,
                    alias=alias,
                    field_type=field_type,
                    length=length,
                    required=column_name.lower() == OBJECTID.lower() or is_shape,
                )
            )
        return fields

    def find_field(self, name: str, field_name: str) -> FieldInfo | None:
        return find_field(self.list_fields(name), field_name)

    # === Dataset creation and deletion ===

    def create_feature_class(
        self, name: str, fields: Sequence[FieldInfo] = (), overwrite: bool = False
    ) -> None:
        """Create an empty feature class with OBJECTID, Shape and the given fields."""
        self._create(name, DatasetKind.FEATURE_CLASS, fields, overwrite)

    def create_table(self, name: str, fields: Sequence[FieldInfo] = (), overwrite: bool = False) -> None:
        """Create an empty standalone table with OBJECTID and the given fields."""
        self._create(name, DatasetKind.TABLE, fields, overwrite)

    def _create(
        self, name: str, kind: DatasetKind, fields: Sequence[FieldInfo], overwrite: bool
    ) -> None:
        if self.exists(name):
            if not overwrite:
                raise WorkspaceError(f"Dataset {name} already exists in {self.location}")
            self.delete_dataset(name)

        system = [f"{quote_ident(OBJECTID)} BIGINT NOT NULL"]
        if kind == DatasetKind.FEATURE_CLASS:
            system.append(f"{quote_ident(SHAPE)} BLOB")
        user_fields = [
            f for f in fields if f.name.lower() not in (OBJECTID.lower(), SHAPE.lower())
        ]
        columns = system + [
            f"{quote_ident(f.name)} {sql_type_for(f.field_type)}" for f in user_fields
        ]

        with self.manager.duckdb_write() as conn:
            conn.execute(f"CREATE TABLE {quote_ident(name)} ({', '.join(columns)})")
            conn.execute("INSERT INTO gdb_items VALUES (?, ?)", [name, kind.value])
            for f in user_fields:
                conn.execute(
                    "INSERT INTO gdb_fields VALUES (?, ?, ?, ?)",
                    [name, f.name, f.alias, f.length or None],
                )
        logger.debug("dataset_created", dataset=name, kind=kind.value, fields=len(user_fields))

    def create_from_query(
        self,
        name: str,
        kind: DatasetKind,
        query: str,
        field_meta: Sequence[FieldInfo] = (),
    ) -> None:
        """Materialize a SELECT as a new dataset, replacing any existing one.

        The query must produce OBJECTID first (and Shape second for feature
        classes). field_meta carries alias/length for the user fields.
        """
        if self.exists(name):
            self.delete_dataset(name)
        with self.manager.duckdb_write() as conn:
            conn.execute(f"CREATE TABLE {quote_ident(name)} AS {query}")
            conn.execute("INSERT INTO gdb_items VALUES (?, ?)", [name, kind.value])
            for f in field_meta:
                if f.alias or f.length:
                    conn.execute(
                        "INSERT INTO gdb_fields VALUES (?, ?, ?, ?)",
                        [name, f.name, f.alias, f.length or None],
                    )
        logger.debug("dataset_created", dataset=name, kind=kind.value)

    def delete_dataset(self, name: str) -> None:
        dataset = self.catalog_name(name)
        with self.manager.duckdb_write() as conn:
            conn.execute(f"DROP TABLE IF EXISTS {quote_ident(dataset)}")
            conn.execute("DELETE FROM gdb_items WHERE lower(name) = lower(?)", [dataset])
            conn.execute("DELETE FROM gdb_fields WHERE lower(dataset) = lower(?)", [dataset])
        logger.debug("dataset_deleted", dataset=dataset)

    # === Field management ===

    def add_field(self, name: str, field: FieldInfo) -> None:
        dataset = self.catalog_name(name)
        if self.find_field(dataset, field.name) is not None:
            raise WorkspaceError(f"Field {field.name} already exists in {dataset}")
        with self.manager.duckdb_write() as conn:
            conn.execute(
                f"ALTER TABLE {quote_ident(dataset)} "
                f"ADD COLUMN {quote_ident(field.name)} {sql_type_for(field.field_type)}"
            )
            conn.execute(
                "INSERT INTO gdb_fields VALUES (?, ?, ?, ?)",
                [dataset, field.name, field.alias, field.length or None],
            )

    def delete_field(self, name: str, field_name: str) -> None:
        dataset = self.catalog_name(name)
        target = self.find_field(dataset, field_name)
        if target is None:
            raise WorkspaceError(f"Field {field_name} does not exist in {dataset}")
        if target.required:
            raise WorkspaceError(f"Field {target.name} is required and cannot be deleted")
        with self.manager.duckdb_write() as conn:
            conn.execute(
                f"ALTER TABLE {quote_ident(dataset)} DROP COLUMN {quote_ident(target.name)}"
            )
            conn.execute(
                "DELETE FROM gdb_fields WHERE lower(dataset) = lower(?) AND lower(name) = lower(?)",
                [dataset, target.name],
            )

    def rename_field(self, name: str, field_name: str, new_name: str) -> None:
        dataset = self.catalog_name(name)
        target = self.find_field(dataset, field_name)
        if target is None:
            raise WorkspaceError(f"Field {field_name} does not exist in {dataset}")
        with self.manager.duckdb_write() as conn:
            conn.execute(
                f"ALTER TABLE {quote_ident(dataset)} "
                f"RENAME COLUMN {quote_ident(target.name)} TO {quote_ident(new_name)}"
            )
            conn.execute(
                "UPDATE gdb_fields SET name = ? "
                "WHERE lower(dataset) = lower(?) AND lower(name) = lower(?)",
                [new_name, dataset, target.name],
            )

    # === Rows ===

    def insert_rows(self, name: str, rows: Iterable[Mapping[str, Any]]) -> int:
        """Append rows, assigning OBJECTIDs. Geometries may be shapely objects or WKB.

        Returns:
            Number of rows inserted
        """
        dataset = self.catalog_name(name)
        fields = [f for f in self.list_fields(dataset) if f.name != OBJECTID]
        column_names = [OBJECTID] + [f.name for f in fields]
        placeholders = ", ".join("?" for _ in column_names)
        sql = (
            f"INSERT INTO {quote_ident(dataset)} "
            f"({', '.join(quote_ident(c) for c in column_names)}) VALUES ({placeholders})"
        )

        with self.manager.duckdb_write() as conn:
            row = conn.execute(
                f"SELECT COALESCE(MAX({quote_ident(OBJECTID)}), 0) FROM {quote_ident(dataset)}"
            ).fetchone()
            next_id = int(row[0]) + 1 if row else 1
            batch: list[list[Any]] = []
            for record in rows:
                lookup = {k.lower(): v for k, v in record.items()}
                values: list[Any] = [next_id]
                for f in fields:
                    value = lookup.get(f.name.lower())
                    if f.field_type == FieldType.GEOMETRY and isinstance(value, BaseGeometry):
                        value = shapely.to_wkb(value)
                    values.append(value)
                batch.append(values)
                next_id += 1
            if batch:
                conn.executemany(sql, batch)
        return len(batch)

    def count(self, name: str, object_ids: frozenset[int] | None = None) -> int:
        dataset = self.catalog_name(name)
        with self.manager.duckdb_cursor() as cur:
            row = cur.execute(
                f"SELECT COUNT(*) FROM {quote_ident(dataset)} WHERE {id_predicate(object_ids)}"
            ).fetchone()
        return int(row[0]) if row else 0

    def search(
        self,
        name: str,
        fields: Sequence[str] | None = None,
        object_ids: frozenset[int] | None = None,
        order_by: Sequence[str] | None = None,
        where: str | None = None,
    ) -> Iterator[dict[str, Any]]:
        """Read cursor over a dataset.

        Args:
            name: Dataset name
            fields: Field names to read (default: all, in ordinal order)
            object_ids: Restrict to these OBJECTIDs (a layer selection)
            order_by: Fields to sort by, ascending, strings case-insensitive
            where: Optional SQL predicate

        Yields:
            One dict per row keyed by the stored field names
        """
        dataset = self.catalog_name(name)
        all_fields = self.list_fields(dataset)
        selected = (
            all_fields
            if fields is None
            else [f for f in (find_field(all_fields, n) for n in fields) if f is not None]
        )
        sql = f"SELECT {', '.join(quote_ident(f.name) for f in selected)} FROM {quote_ident(dataset)}"

        if not selected or (object_ids is not None and not object_ids):
            return
        sql += f" WHERE {id_predicate(object_ids)}"
        if where:
            sql += f" AND ({where})"

        order_terms = []
        for order_name in order_by or ():
            f = find_field(all_fields, order_name)
            if f is None:
                continue
            if f.field_type == FieldType.STRING:
                order_terms.append(f"{quote_ident(f.name)} COLLATE NOCASE ASC NULLS LAST")
            else:
                order_terms.append(f"{quote_ident(f.name)} ASC NULLS LAST")
        order_terms.append(quote_ident(OBJECTID))
        sql += " ORDER BY " + ", ".join(order_terms)

        names = [f.name for f in selected]
        with self.manager.duckdb_cursor() as cur:
            result = cur.execute(sql)
            while True:
                batch = result.fetchmany(FETCH_BATCH_SIZE)
                if not batch:
                    break
                for values in batch:
                    yield dict(zip(names, values, strict=True))

    def read_geometries(
        self, name: str, object_ids: frozenset[int] | None = None
    ) -> list[tuple[int, BaseGeometry | None]]:
        """OBJECTID and geometry of each feature, in OBJECTID order."""
        rows = self.search(name, fields=[OBJECTID, SHAPE], object_ids=object_ids)
        return [
            (int(r[OBJECTID]), shapely.from_wkb(r[SHAPE]) if r[SHAPE] is not None else None)
            for r in rows
        ]

    def geometry_type(self, name: str, object_ids: frozenset[int] | None = None) -> GeometryType:
        """Simplified geometry type, determined by sampling the first feature."""
        if self.kind(name) != DatasetKind.FEATURE_CLASS:
            return GeometryType.OTHER
        for row in self.search(name, fields=[SHAPE], object_ids=object_ids):
            value = row[SHAPE]
            return simplify_geometry_type(shapely.from_wkb(value) if value is not None else None)
        return GeometryType.OTHER

    def update_values(self, name: str, field_name: str, values: Mapping[int, Any]) -> int:
        """Set one field per OBJECTID. Returns the number of rows updated."""
        dataset = self.catalog_name(name)
        target = self.find_field(dataset, field_name)
        if target is None:
            raise WorkspaceError(f"Field {field_name} does not exist in {dataset}")
        sql = (
            f"UPDATE {quote_ident(dataset)} SET {quote_ident(target.name)} = ? "
            f"WHERE {quote_ident(OBJECTID)} = ?"
        )
        params = [[value, oid] for oid, value in values.items()]
        if params:
            with self.manager.duckdb_write() as conn:
                conn.executemany(sql, params)
        return len(params)

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> list[tuple[Any, ...]]:
        """Run a statement under the write lock and return any rows."""
        with self.manager.duckdb_write() as conn:
            result = conn.execute(sql, list(params) if params else [])
            try:
                return result.fetchall()
            except duckdb.InvalidInputException:
                return []

    def select_ids(self, name: str, where: str) -> frozenset[int]:
        """OBJECTIDs of the rows matching an SQL predicate."""
        dataset = self.catalog_name(name)
        with self.manager.duckdb_cursor() as cur:
            rows = cur.execute(
                f"SELECT {quote_ident(OBJECTID)} FROM {quote_ident(dataset)} WHERE {where}"
            ).fetchall()
        return frozenset(int(r[0]) for r in rows)

    def export_parquet(self, name: str, path: Path, object_ids: frozenset[int] | None = None) -> None:
        """Write a dataset (or a selection of it) to a single parquet file."""
        dataset = self.catalog_name(name)
        path.parent.mkdir(parents=True, exist_ok=True)
        query = f"SELECT * FROM {quote_ident(dataset)} WHERE {id_predicate(object_ids)}"
        escaped = str(path).replace("'", "''")
        with self.manager.duckdb_write() as conn:
            conn.execute(f"COPY ({query}) TO '{escaped}' (FORMAT PARQUET)")
