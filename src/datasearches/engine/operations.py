"""Named geoprocessing operations.

Each operation takes an OperationContext first and keyword parameters after
it, runs on the engine's worker thread, and returns the name of the dataset
it wrote (or None). Raising marks the job FAILED; the exception text is the
tool message reported to the caller.

Operations that read a dataset honour the selection of the layer of that
name when it is loaded in the session.

Grouping output layouts (two leading system fields, then case fields, then
one generated field per statistic named <FUNC>_<field>):
    statistics: OBJECTID, FREQUENCY, case..., stats...
    dissolve:   OBJECTID, Shape, dissolve..., stats...
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from typing import Any

import shapely
from shapely.geometry.base import BaseGeometry
from shapely.strtree import STRtree

from datasearches.core.logging import get_logger
from datasearches.core.models import AggregateFunction, AreaUnit, DatasetKind, FieldInfo, FieldType
from datasearches.engine.jobs import Operation, OperationContext
from datasearches.engine.workspace import (
    FREQUENCY,
    OBJECTID,
    SHAPE,
    Workspace,
    find_field,
    id_predicate,
    quote_ident,
)

logger = get_logger(__name__)

OPERATIONS: dict[str, Operation] = {}

JOIN_COUNT = "Join_Count"
TARGET_FID = "TARGET_FID"
DISTANCE = "Distance"
_MEMBERS = "__members"
_SOURCE_ID = "__src"

_NUMERIC_ONLY = {
    AggregateFunction.SUM,
    AggregateFunction.MEAN,
    AggregateFunction.RANGE,
    AggregateFunction.STD,
    AggregateFunction.VARIANCE,
    AggregateFunction.MEDIAN,
}

_AGGREGATE_SQL = {
    AggregateFunction.MEAN: "CAST(avg({c}) AS DOUBLE)",
    AggregateFunction.MIN: "min({c})",
    AggregateFunction.MAX: "max({c})",
    AggregateFunction.RANGE: "CAST(max({c}) - min({c}) AS DOUBLE)",
    AggregateFunction.STD: "CAST(stddev_samp({c}) AS DOUBLE)",
    AggregateFunction.VARIANCE: "CAST(var_samp({c}) AS DOUBLE)",
    AggregateFunction.MEDIAN: "CAST(median({c}) AS DOUBLE)",
    AggregateFunction.COUNT: "CAST(count({c}) AS BIGINT)",
    AggregateFunction.UNIQUE: "CAST(count(DISTINCT {c}) AS BIGINT)",
    AggregateFunction.FIRST: 'first({c} ORDER BY "OBJECTID")',
    AggregateFunction.LAST: 'last({c} ORDER BY "OBJECTID")',
}

StatisticParam = tuple[str, AggregateFunction | str]


def operation(name: str) -> Callable[[Operation], Operation]:
    """Register a function as a named engine operation."""

    def decorator(fn: Operation) -> Operation:
        OPERATIONS[name] = fn
        return fn

    return decorator


# === Helpers ===


def _require_dataset(ws: Workspace, name: str, kind: DatasetKind | None = None) -> str:
    if not ws.exists(name):
        raise ValueError(f"Dataset {name} does not exist")
    if kind is not None and ws.kind(name) != kind:
        raise ValueError(f"Dataset {name} is not a {kind.value.replace('_', ' ')}")
    return ws.catalog_name(name)


def _require_field(fields: Sequence[FieldInfo], name: str, dataset: str) -> FieldInfo:
    f = find_field(fields, name)
    if f is None:
        raise ValueError(f"Field {name} does not exist in {dataset}")
    return f


def _user_fields(fields: Sequence[FieldInfo]) -> list[FieldInfo]:
    return [f for f in fields if not f.required]


def _finish(ctx: OperationContext, out: str, add_to_map: bool) -> str:
    ws = ctx.workspace
    ctx.add_message(f"{ws.count(out)} records written to {out}")
    if add_to_map and ctx.session is not None:
        if ws.kind(out) == DatasetKind.FEATURE_CLASS:
            ctx.session.add_layer(out)
        else:
            ctx.session.add_table(out)
    return out


def _join_names(
    right_fields: Sequence[FieldInfo], taken: set[str]
) -> list[tuple[FieldInfo, str]]:
    """Output names for right-hand fields, suffixing clashes with _1, _2..."""
    result = []
    for f in right_fields:
        out_name = f.name
        suffix = 1
        while out_name.lower() in taken:
            out_name = f"{f.name}_{suffix}"
            suffix += 1
        taken.add(out_name.lower())
        result.append((f, out_name))
    return result


def _copy_with_geometries(
    ctx: OperationContext,
    in_dataset: str,
    out_dataset: str,
    geometries: Mapping[int, BaseGeometry],
) -> None:
    """Copy the given features of a feature class, replacing their geometries."""
    ws = ctx.workspace
    user = _user_fields(ws.list_fields(in_dataset))
    columns = ", ".join(quote_ident(f.name) for f in user)
    query = (
        f'SELECT row_number() OVER (ORDER BY "{OBJECTID}") AS "{OBJECTID}", "{SHAPE}"'
        + (f", {columns}" if columns else "")
        + f', "{OBJECTID}" AS "{_SOURCE_ID}" FROM {quote_ident(in_dataset)}'
        + f" WHERE {id_predicate(frozenset(geometries))}"
        + f' ORDER BY "{OBJECTID}"'
    )
    ws.create_from_query(out_dataset, DatasetKind.FEATURE_CLASS, query, user)
    shapes = {
        int(row[OBJECTID]): shapely.to_wkb(geometries[int(row[_SOURCE_ID])])
        for row in ws.search(out_dataset, fields=[OBJECTID, _SOURCE_ID])
    }
    ws.update_values(out_dataset, SHAPE, shapes)
    ws.delete_field(out_dataset, _SOURCE_ID)


def _parse_statistics(
    fields: Sequence[FieldInfo], statistics: Sequence[StatisticParam], dataset: str
) -> list[tuple[FieldInfo, AggregateFunction, str]]:
    """Resolve statistic pairs to (field, function, generated name)."""
    resolved = []
    seen: set[str] = set()
    for field_name, func in statistics:
        f = _require_field(fields, field_name, dataset)
        fn = AggregateFunction(func.upper()) if isinstance(func, str) else func
        if fn in _NUMERIC_ONLY and not f.field_type.is_numeric:
            raise ValueError(f"{fn.value} requires a numeric field: {f.name} is {f.field_type.value}")
        generated = f"{fn.value}_{f.name}"
        if generated.lower() in seen:
            raise ValueError(f"Duplicate statistic {fn.value} on {f.name}")
        seen.add(generated.lower())
        resolved.append((f, fn, generated))
    return resolved


def _aggregate_sql(f: FieldInfo, fn: AggregateFunction) -> str:
    column = quote_ident(f.name)
    if fn == AggregateFunction.SUM:
        sql_type = "BIGINT" if f.field_type == FieldType.INTEGER else "DOUBLE"
        return f"CAST(sum({column}) AS {sql_type})"
    return _AGGREGATE_SQL[fn].format(c=column)


def _stat_meta(f: FieldInfo, fn: AggregateFunction, generated: str) -> FieldInfo:
    keeps_type = fn in (
        AggregateFunction.FIRST,
        AggregateFunction.LAST,
        AggregateFunction.MIN,
        AggregateFunction.MAX,
    )
    length = f.length if keeps_type and f.field_type == FieldType.STRING else 0
    return FieldInfo(name=generated, field_type=f.field_type, length=length)


def _grouped_query(
    in_dataset: str,
    group: Sequence[FieldInfo],
    stats: Sequence[tuple[FieldInfo, AggregateFunction, str]],
    selection: frozenset[int] | None,
    second_column: str,
    trailing: Sequence[str] = (),
) -> str:
    group_cols = [quote_ident(f.name) for f in group]
    order = ", ".join(f"{c} ASC NULLS LAST" for c in group_cols)
    select = [
        f"row_number() OVER ({'ORDER BY ' + order if order else ''}) AS {quote_ident(OBJECTID)}",
        second_column,
        *group_cols,
        *(f"{_aggregate_sql(f, fn)} AS {quote_ident(name)}" for f, fn, name in stats),
        *trailing,
    ]
    query = (
        f"SELECT {', '.join(select)} FROM {quote_ident(in_dataset)} "
        f"WHERE {id_predicate(selection)}"
    )
    if group_cols:
        query += f" GROUP BY {', '.join(group_cols)}"
    query += " HAVING count(*) > 0"
    if order:
        query += f" ORDER BY {order}"
    return query


# === Copying ===


@operation("copy_features")
def copy_features(
    ctx: OperationContext, in_dataset: str, out_dataset: str, add_to_map: bool = False
) -> str:
    """Copy the (selected) features of a feature class into a new feature class."""
    ws = ctx.workspace
    source = _require_dataset(ws, in_dataset, DatasetKind.FEATURE_CLASS)
    user = _user_fields(ws.list_fields(source))
    columns = ", ".join(quote_ident(f.name) for f in user)
    query = (
        f'SELECT row_number() OVER (ORDER BY "{OBJECTID}") AS "{OBJECTID}", "{SHAPE}"'
        + (f", {columns}" if columns else "")
        + f" FROM {quote_ident(source)} WHERE {id_predicate(ctx.selection(source))}"
        + f' ORDER BY "{OBJECTID}"'
    )
    ws.create_from_query(out_dataset, DatasetKind.FEATURE_CLASS, query, user)
    return _finish(ctx, out_dataset, add_to_map)


@operation("copy_rows")
def copy_rows(
    ctx: OperationContext, in_dataset: str, out_dataset: str, add_to_map: bool = False
) -> str:
    """Copy the (selected) rows of any dataset into a standalone table."""
    ws = ctx.workspace
    source = _require_dataset(ws, in_dataset)
    user = [f for f in _user_fields(ws.list_fields(source)) if f.field_type != FieldType.GEOMETRY]
    columns = ", ".join(quote_ident(f.name) for f in user)
    query = (
        f'SELECT row_number() OVER (ORDER BY "{OBJECTID}") AS "{OBJECTID}"'
        + (f", {columns}" if columns else "")
        + f" FROM {quote_ident(source)} WHERE {id_predicate(ctx.selection(source))}"
        + f' ORDER BY "{OBJECTID}"'
    )
    ws.create_from_query(out_dataset, DatasetKind.TABLE, query, user)
    return _finish(ctx, out_dataset, add_to_map)


# === Overlay ===


@operation("clip")
def clip(
    ctx: OperationContext,
    in_dataset: str,
    clip_dataset: str,
    out_dataset: str,
    add_to_map: bool = False,
) -> str:
    """Cut the (selected) features to the outline of the clip features."""
    ws = ctx.workspace
    source = _require_dataset(ws, in_dataset, DatasetKind.FEATURE_CLASS)
    clipper = _require_dataset(ws, clip_dataset, DatasetKind.FEATURE_CLASS)
    outline = shapely.union_all(
        [g for _, g in ws.read_geometries(clipper, ctx.selection(clipper)) if g is not None]
    )
    clipped: dict[int, BaseGeometry] = {}
    for oid, geom in ws.read_geometries(source, ctx.selection(source)):
        ctx.check_cancelled()
        if geom is None:
            continue
        part = geom.intersection(outline)
        if not part.is_empty:
            clipped[oid] = part
    _copy_with_geometries(ctx, source, out_dataset, clipped)
    return _finish(ctx, out_dataset, add_to_map)


@operation("intersect")
def intersect(
    ctx: OperationContext,
    in_dataset: str,
    other_dataset: str,
    out_dataset: str,
    add_to_map: bool = False,
) -> str:
    """One output feature per intersecting pair, carrying both sets of attributes."""
    ws = ctx.workspace
    left = _require_dataset(ws, in_dataset, DatasetKind.FEATURE_CLASS)
    right = _require_dataset(ws, other_dataset, DatasetKind.FEATURE_CLASS)
    left_fields = _user_fields(ws.list_fields(left))
    right_fields = _user_fields(ws.list_fields(right))
    taken = {OBJECTID.lower(), SHAPE.lower()} | {f.name.lower() for f in left_fields}
    right_out = _join_names(right_fields, taken)

    right_rows = [r for r in ws.search(right, object_ids=ctx.selection(right)) if r[SHAPE] is not None]
    right_geoms = [shapely.from_wkb(r[SHAPE]) for r in right_rows]
    tree = STRtree(right_geoms)

    rows: list[dict[str, Any]] = []
    for row in ws.search(left, object_ids=ctx.selection(left)):
        ctx.check_cancelled()
        if row[SHAPE] is None:
            continue
        geom = shapely.from_wkb(row[SHAPE])
        for index in sorted(int(i) for i in tree.query(geom, predicate="intersects")):
            part = geom.intersection(right_geoms[index])
            if part.is_empty:
                continue
            record = {f.name: row[f.name] for f in left_fields}
            record.update({name: right_rows[index][f.name] for f, name in right_out})
            record[SHAPE] = part
            rows.append(record)

    out_fields = left_fields + [f.model_copy(update={"name": name}) for f, name in right_out]
    ws.create_feature_class(out_dataset, out_fields, overwrite=True)
    ws.insert_rows(out_dataset, rows)
    return _finish(ctx, out_dataset, add_to_map)


@operation("buffer")
def buffer(
    ctx: OperationContext,
    in_dataset: str,
    out_dataset: str,
    distance: float,
    dissolve: bool = False,
    add_to_map: bool = False,
) -> str:
    """Buffer the (selected) features by a planar distance.

    With dissolve, all buffers are merged into a single feature without
    attributes.
    """
    ws = ctx.workspace
    source = _require_dataset(ws, in_dataset, DatasetKind.FEATURE_CLASS)
    buffered = {
        oid: geom.buffer(distance)
        for oid, geom in ws.read_geometries(source, ctx.selection(source))
        if geom is not None
    }
    if dissolve:
        ws.create_feature_class(out_dataset, overwrite=True)
        if buffered:
            ws.insert_rows(out_dataset, [{SHAPE: shapely.union_all(list(buffered.values()))}])
    else:
        _copy_with_geometries(ctx, source, out_dataset, buffered)
    return _finish(ctx, out_dataset, add_to_map)


# === Grouping ===


@operation("statistics")
def summary_statistics(
    ctx: OperationContext,
    in_dataset: str,
    out_table: str,
    statistics: Sequence[StatisticParam],
    case_fields: Sequence[str] = (),
    add_to_map: bool = False,
) -> str:
    """Summary statistics per distinct combination of the case fields.

    Output: OBJECTID, FREQUENCY, case fields, then <FUNC>_<field> per statistic.
    """
    if not statistics:
        raise ValueError("At least one statistic is required")
    ws = ctx.workspace
    source = _require_dataset(ws, in_dataset)
    fields = ws.list_fields(source)
    group = [_require_field(fields, name, source) for name in case_fields]
    stats = _parse_statistics(fields, statistics, source)
    query = _grouped_query(
        source,
        group,
        stats,
        ctx.selection(source),
        f"CAST(count(*) AS BIGINT) AS {quote_ident(FREQUENCY)}",
    )
    meta = group + [_stat_meta(f, fn, name) for f, fn, name in stats]
    ws.create_from_query(out_table, DatasetKind.TABLE, query, meta)
    return _finish(ctx, out_table, add_to_map)


@operation("dissolve")
def dissolve(
    ctx: OperationContext,
    in_dataset: str,
    out_dataset: str,
    dissolve_fields: Sequence[str] = (),
    statistics: Sequence[StatisticParam] = (),
    add_to_map: bool = False,
) -> str:
    """Merge the (selected) features per distinct combination of the dissolve fields.

    Output: OBJECTID, Shape, dissolve fields, then <FUNC>_<field> per statistic.
    """
    ws = ctx.workspace
    source = _require_dataset(ws, in_dataset, DatasetKind.FEATURE_CLASS)
    fields = ws.list_fields(source)
    group = [_require_field(fields, name, source) for name in dissolve_fields]
    stats = _parse_statistics(fields, statistics, source)
    selection = ctx.selection(source)
    query = _grouped_query(
        source,
        group,
        stats,
        selection,
        f"CAST(NULL AS BLOB) AS {quote_ident(SHAPE)}",
        trailing=[f'list("{OBJECTID}" ORDER BY "{OBJECTID}") AS "{_MEMBERS}"'],
    )
    meta = group + [_stat_meta(f, fn, name) for f, fn, name in stats]
    ws.create_from_query(out_dataset, DatasetKind.FEATURE_CLASS, query, meta)

    geometries = dict(ws.read_geometries(source, selection))
    shapes = {}
    for row in ws.search(out_dataset, fields=[OBJECTID, _MEMBERS]):
        ctx.check_cancelled()
        members = [geometries[i] for i in row[_MEMBERS] or () if geometries.get(i) is not None]
        shapes[int(row[OBJECTID])] = shapely.to_wkb(shapely.union_all(members))
    ws.update_values(out_dataset, SHAPE, shapes)
    ws.delete_field(out_dataset, _MEMBERS)
    return _finish(ctx, out_dataset, add_to_map)


# === Joins ===


@operation("spatial_join_closest")
def spatial_join_closest(
    ctx: OperationContext,
    target_dataset: str,
    join_dataset: str,
    out_dataset: str,
    distance_field: str = DISTANCE,
    add_to_map: bool = False,
) -> str:
    """One-to-one join of each target feature to its nearest join feature.

    All target features are kept. Unmatched ones (no join features) get a
    Join_Count of 0 and null join attributes and distance. Ties go to the
    join feature with the lowest OBJECTID.
    A target field already named like the distance field is replaced by the
    new distance.
    """
    ws = ctx.workspace
    target = _require_dataset(ws, target_dataset, DatasetKind.FEATURE_CLASS)
    joined = _require_dataset(ws, join_dataset, DatasetKind.FEATURE_CLASS)
    left_fields = [
        f for f in _user_fields(ws.list_fields(target)) if f.name.lower() != distance_field.lower()
    ]
    right_fields = _user_fields(ws.list_fields(joined))
    taken = {
        OBJECTID.lower(), SHAPE.lower(), JOIN_COUNT.lower(), TARGET_FID.lower(), distance_field.lower()
    }
    taken |= {f.name.lower() for f in left_fields}
    right_out = _join_names(right_fields, taken)

    right_rows = [r for r in ws.search(joined, object_ids=ctx.selection(joined)) if r[SHAPE] is not None]
    right_geoms = [shapely.from_wkb(r[SHAPE]) for r in right_rows]
    tree = STRtree(right_geoms) if right_geoms else None

    rows: list[dict[str, Any]] = []
    for row in ws.search(target, object_ids=ctx.selection(target)):
        ctx.check_cancelled()
        record: dict[str, Any] = {f.name: row[f.name] for f in left_fields}
        record[SHAPE] = row[SHAPE]
        record[TARGET_FID] = row[OBJECTID]
        record[JOIN_COUNT] = 0
        record[distance_field] = None
        if tree is not None and row[SHAPE] is not None:
            geom = shapely.from_wkb(row[SHAPE])
            indices, distances = tree.query_nearest(geom, return_distance=True)
            if len(indices) > 0:
                index, distance = min(zip((int(i) for i in indices), distances, strict=True))
                record.update({name: right_rows[index][f.name] for f, name in right_out})
                record[JOIN_COUNT] = 1
                record[distance_field] = float(distance)
        rows.append(record)

    out_fields = [
        FieldInfo(name=JOIN_COUNT, field_type=FieldType.INTEGER),
        FieldInfo(name=TARGET_FID, field_type=FieldType.INTEGER),
        *left_fields,
        *(f.model_copy(update={"name": name}) for f, name in right_out),
        FieldInfo(name=distance_field, field_type=FieldType.DOUBLE),
    ]
    ws.create_feature_class(out_dataset, out_fields, overwrite=True)
    ws.insert_rows(out_dataset, rows)
    return _finish(ctx, out_dataset, add_to_map)


# === Fields ===


@operation("add_field")
def add_field(
    ctx: OperationContext,
    dataset: str,
    field_name: str,
    field_type: FieldType | str,
    length: int = 0,
    alias: str | None = None,
) -> str:
    ws = ctx.workspace
    name = _require_dataset(ws, dataset)
    ws.add_field(
        name,
        FieldInfo(name=field_name, alias=alias, field_type=FieldType(field_type), length=length),
    )
    return name


@operation("delete_field")
def delete_field(ctx: OperationContext, dataset: str, fields: str | Sequence[str]) -> str:
    """Delete one or more fields (a list or a ';'-separated string)."""
    ws = ctx.workspace
    name = _require_dataset(ws, dataset)
    names = [n.strip() for n in fields.split(";")] if isinstance(fields, str) else list(fields)
    for field_name in names:
        if field_name:
            ws.delete_field(name, field_name)
    return name


@operation("calculate_field")
def calculate_field(
    ctx: OperationContext,
    dataset: str,
    field: str,
    value: Any = None,
    expression: Callable[[dict[str, Any]], Any] | None = None,
) -> str:
    """Set a field on every (selected) row, to a constant or to expression(row)."""
    ws = ctx.workspace
    name = _require_dataset(ws, dataset)
    values = {}
    for row in ws.search(name, object_ids=ctx.selection(name)):
        ctx.check_cancelled()
        values[int(row[OBJECTID])] = expression(row) if expression is not None else value
    updated = ws.update_values(name, field, values)
    ctx.add_message(f"{updated} rows calculated in {name}.{field}")
    return name


@operation("calculate_area")
def calculate_area(
    ctx: OperationContext, dataset: str, field: str, unit: AreaUnit | str = AreaUnit.HECTARES
) -> str:
    """Set a field to the planar area of each (selected) feature in the given unit."""
    ws = ctx.workspace
    name = _require_dataset(ws, dataset, DatasetKind.FEATURE_CLASS)
    area_unit = AreaUnit.parse(unit) if isinstance(unit, str) else unit
    values = {
        oid: (geom.area / area_unit.square_meters if geom is not None else None)
        for oid, geom in ws.read_geometries(name, ctx.selection(name))
    }
    ws.update_values(name, field, values)
    return name


# === Datasets ===


@operation("delete")
def delete(ctx: OperationContext, dataset: str) -> None:
    ws = ctx.workspace
    name = _require_dataset(ws, dataset)
    ws.delete_dataset(name)
    ctx.add_message(f"Deleted {name}")
