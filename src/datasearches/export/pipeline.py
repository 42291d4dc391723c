"""Selection export pipeline.

Two entry points, both run synchronously against one workspace and session:

- export_selection_to_csv: the selected rows of a layer, optionally with
  area, distance and radius fields, optionally grouped and summarised,
  written to delimited text. Returns the row count, 0 for nothing to
  export and -1 for failure.
- export_selection_to_feature_class: the same selection (optionally
  dissolved) kept as a permanent feature class or parquet file. Returns
  True on success.

Schema mismatches degrade the request and are recorded on the context.
Engine failures end the run. Temporary datasets are always removed.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import duckdb
from pydantic import BaseModel

from datasearches.core.config import Settings, get_settings
from datasearches.core.errors import (
    EngineOperationError,
    ErrorCategory,
    SchemaMismatch,
    WorkspaceError,
)
from datasearches.core.logging import SearchLog, get_logger, log_context
from datasearches.core.models import AreaUnit, DatasetKind
from datasearches.engine.jobs import GeoprocessingEngine
from datasearches.engine.session import MapSession
from datasearches.engine.workspace import Workspace, find_field
from datasearches.export.aggregation import AggregationPlan, plan_aggregation, run_dissolve, run_statistics
from datasearches.export.columns import is_literal, parse_statistics, split_columns, split_group_columns
from datasearches.export.csv_writer import copy_to_csv
from datasearches.export.derived import NO_RADIUS, add_area, add_distance, add_radius, has_radius
from datasearches.export.lifecycle import TemporaryResources
from datasearches.export.reconcile import reconcile
from datasearches.export.schema import dataset_exists, filter_existing

logger = get_logger(__name__)

PARQUET_SUFFIX = ".parquet"


class ExportRequest(BaseModel):
    """What to export from one layer, and how."""

    layer: str
    output: str
    columns: str = ""
    group_columns: str = ""
    statistics_columns: str = ""
    order_columns: str = ""
    include_area: bool = False
    area_unit: AreaUnit = AreaUnit.HECTARES
    distance_target: str | None = None
    radius: str = NO_RADIUS
    overwrite: bool = True
    include_headers: bool = True
    rename: bool = True
    check_for_selection: bool = False


@dataclass
class ExportContext:
    """Handles shared by the export runs of one search."""

    workspace: Workspace
    session: MapSession
    engine: GeoprocessingEngine
    log: SearchLog
    settings: Settings
    notify: Callable[[str], None] | None = None
    mismatches: list[SchemaMismatch] = field(default_factory=list)

    @classmethod
    def create(
        cls,
        workspace: Workspace,
        session: MapSession | None = None,
        settings: Settings | None = None,
        log: SearchLog | None = None,
        notify: Callable[[str], None] | None = None,
    ) -> ExportContext:
        settings = settings or get_settings()
        session = session or MapSession(workspace)
        engine = GeoprocessingEngine(
            workspace, session, poll_interval=settings.poll_interval_seconds
        )
        return cls(
            workspace=workspace,
            session=session,
            engine=engine,
            log=log or SearchLog(),
            settings=settings,
            notify=notify,
        )

    @property
    def temp_feature_class(self) -> str:
        return self.settings.temp_feature_class

    @property
    def temp_table(self) -> str:
        return self.settings.temp_table

    def fail(self, message: str) -> None:
        """Log a failure and surface it to an interactive caller."""
        self.log.error(message)
        if self.notify is not None:
            self.notify(message)

    def input_missing(self, dataset: str, message: str) -> None:
        """Fail because a requested dataset is absent."""
        self.fail(message)
        logger.warning(
            "input_missing", dataset=dataset, category=ErrorCategory.INPUT_MISSING.value
        )

    def record_missing(self, dataset: str, names: list[str], context: str) -> None:
        self.mismatches.extend(SchemaMismatch(dataset, name, context) for name in names)

    def close(self) -> None:
        self.engine.close()


def _check_input(ctx: ExportContext, request: ExportRequest) -> bool:
    if not dataset_exists(ctx.workspace, request.layer):
        ctx.input_missing(request.layer, f"Cannot find layer {request.layer}")
        return False
    if request.check_for_selection and ctx.session.selection_count(request.layer) == 0:
        ctx.fail(f"There are no features selected in {request.layer}")
        return False
    return True


def _plan(ctx: ExportContext, request: ExportRequest, dataset: str) -> AggregationPlan:
    fields = ctx.workspace.list_fields(dataset)
    groups = split_group_columns(request.group_columns)
    statistics, invalid = parse_statistics(request.statistics_columns)
    # unknown group and statistic fields are dropped without a log entry
    ctx.record_missing(dataset, filter_existing(fields, groups)[1], "group")
    ctx.record_missing(
        dataset, filter_existing(fields, [s.field for s in statistics])[1] + invalid, "statistics"
    )
    return plan_aggregation(groups, statistics, fields, radius_field=has_radius(request.radius))


def export_selection_to_csv(ctx: ExportContext, request: ExportRequest) -> int:
    """Export the selected rows of a layer to delimited text.

    Flow: copy (or nearest-join) the selection into a temporary feature
    class, add the derived fields, summarise into a temporary table when
    grouping or statistics were requested, restore the statistic field
    names, write the text file, remove the temporary datasets.

    Returns:
        Rows written, 0 when there was nothing to export, -1 on failure
    """
    ws = ctx.workspace
    out_path = Path(request.output)
    with log_context(layer=request.layer, output=str(out_path)):
        if not _check_input(ctx, request):
            return -1

        kind = ws.kind(request.layer)
        working = ctx.temp_feature_class
        with TemporaryResources(ctx.engine, [working, ctx.temp_table], log=ctx.log):
            try:
                if request.distance_target and kind == DatasetKind.FEATURE_CLASS:
                    add_distance(ctx.engine, request.layer, request.distance_target, working)
                else:
                    operation = "copy_features" if kind == DatasetKind.FEATURE_CLASS else "copy_rows"
                    ctx.engine.run(operation, in_dataset=request.layer, out_dataset=working)

                if request.include_area and kind == DatasetKind.FEATURE_CLASS:
                    add_area(ctx.engine, working, request.area_unit)
                if has_radius(request.radius):
                    add_radius(ctx.engine, working, request.radius)

                plan = _plan(ctx, request, working)
                source = working
                if plan.requires_aggregation:
                    run_statistics(ctx.engine, plan, working, ctx.temp_table)
                    if request.rename:
                        reconcile(
                            ctx.engine,
                            plan.group_columns,
                            plan.statistics,
                            ctx.temp_table,
                            working,
                            placeholder=plan.placeholder,
                            log=ctx.log,
                        )
                    source = ctx.temp_table

                rows = copy_to_csv(
                    ws,
                    source,
                    out_path,
                    request.columns,
                    order_spec=request.order_columns,
                    append=not request.overwrite,
                    include_header=request.include_headers,
                    log=ctx.log,
                    mismatches=ctx.mismatches,
                )
            except EngineOperationError as e:
                ctx.fail(f"Error exporting {request.layer}: {e.describe()}")
                return -1
            except (WorkspaceError, duckdb.Error, OSError) as e:
                ctx.fail(f"Error exporting {request.layer}: {e}")
                return -1

        if rows >= 0:
            ctx.log.write(f"{rows} records exported from {request.layer} to {out_path.name}")
        return rows


def _output_exists(ctx: ExportContext, output: str) -> bool:
    if output.lower().endswith(PARQUET_SUFFIX):
        return Path(output).exists()
    return dataset_exists(ctx.workspace, output)


def _keep_columns(ctx: ExportContext, dataset: str, column_spec: str) -> None:
    """Delete every non-required field that is not an output column."""
    tokens = [t for t in split_columns(column_spec) if not is_literal(t)]
    if not tokens:
        return
    fields = ctx.workspace.list_fields(dataset)
    keep = {f.name.lower() for f in (find_field(fields, t) for t in tokens) if f is not None}
    drop = [f.name for f in fields if not f.required and f.name.lower() not in keep]
    if drop:
        ctx.engine.run("delete_field", dataset=dataset, fields=drop)


def export_selection_to_feature_class(ctx: ExportContext, request: ExportRequest) -> bool:
    """Keep the selected features of a layer as a permanent dataset.

    The output is a workspace feature class, or a parquet file when the
    output ends in '.parquet'.
    """
    ws = ctx.workspace
    parquet = request.output.lower().endswith(PARQUET_SUFFIX)
    with log_context(layer=request.layer, output=request.output):
        if not _check_input(ctx, request):
            return False
        if ws.kind(request.layer) != DatasetKind.FEATURE_CLASS:
            ctx.fail(f"{request.layer} is not a feature class")
            return False
        if _output_exists(ctx, request.output) and not request.overwrite:
            ctx.fail(f"Output {request.output} already exists")
            return False

        working = ctx.temp_feature_class
        dissolved = f"{working}_Dissolve"
        final = f"{working}_Final" if parquet else request.output
        temporaries = [working, dissolved] + ([final] if parquet else [])
        with TemporaryResources(ctx.engine, temporaries, log=ctx.log):
            try:
                ctx.engine.run("copy_features", in_dataset=request.layer, out_dataset=working)
                if request.include_area:
                    add_area(ctx.engine, working, request.area_unit)

                plan = _plan(ctx, request, working)
                source = working
                if plan.requires_aggregation:
                    run_dissolve(ctx.engine, plan, working, dissolved)
                    if request.rename:
                        reconcile(
                            ctx.engine,
                            plan.group_columns,
                            plan.statistics,
                            dissolved,
                            working,
                            placeholder=plan.placeholder,
                            log=ctx.log,
                        )
                    source = dissolved

                if request.distance_target:
                    add_distance(ctx.engine, source, request.distance_target, final)
                else:
                    ctx.engine.run("copy_features", in_dataset=source, out_dataset=final)
                if has_radius(request.radius):
                    add_radius(ctx.engine, final, request.radius)
                _keep_columns(ctx, final, request.columns)

                if parquet:
                    ws.export_parquet(final, Path(request.output))
            except EngineOperationError as e:
                ctx.fail(f"Error saving {request.layer} to {request.output}: {e.describe()}")
                return False
            except (WorkspaceError, duckdb.Error, OSError) as e:
                ctx.fail(f"Error saving {request.layer} to {request.output}: {e}")
                return False

        ctx.log.write(f"{request.layer} saved to {request.output}")
        return True
