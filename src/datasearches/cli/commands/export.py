"""Export command - write one layer's selection to CSV or a feature class."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from datasearches.cli.common import (
    LogFormatOption,
    VerboseOption,
    WorkspaceOption,
    console,
    open_workspace,
    setup_logging,
)
from datasearches.core.models import AreaUnit


def export(
    layer: Annotated[str, typer.Argument(help="Layer (dataset) to export")],
    output: Annotated[
        str,
        typer.Argument(help="Output CSV file, or dataset name / .parquet file with --feature-class"),
    ],
    workspace: WorkspaceOption = None,
    columns: Annotated[
        str,
        typer.Option("--columns", "-c", help='Output columns, e.g. \'"SSSI",Name,Area\''),
    ] = "",
    group_columns: Annotated[
        str, typer.Option("--group", help="Group columns (';' or ',' separated)")
    ] = "",
    statistics_columns: Annotated[
        str, typer.Option("--statistics", help="Statistics, e.g. 'Area SUM;Name COUNT'")
    ] = "",
    order_columns: Annotated[str, typer.Option("--order", help="Sort columns")] = "",
    where: Annotated[
        str | None, typer.Option("--where", help="SQL predicate selecting the rows to export")
    ] = None,
    within: Annotated[
        str | None,
        typer.Option("--within", help="Only export features intersecting this feature class"),
    ] = None,
    include_area: Annotated[
        bool, typer.Option("--area", help="Add an Area field (polygon layers)")
    ] = False,
    area_unit: Annotated[
        AreaUnit | None,
        typer.Option("--area-unit", help="Unit of the Area field (default: DATASEARCHES_DEFAULT_AREA_UNIT)"),
    ] = None,
    distance_to: Annotated[
        str | None,
        typer.Option("--distance-to", help="Add a Distance field to the nearest feature of this layer"),
    ] = None,
    radius: Annotated[
        str | None, typer.Option("--radius", help="Radius label written to a Radius field")
    ] = None,
    append: Annotated[bool, typer.Option("--append", help="Append to an existing file")] = False,
    no_header: Annotated[bool, typer.Option("--no-header", help="Do not write a header line")] = False,
    no_rename: Annotated[
        bool,
        typer.Option("--no-rename", help="Keep generated statistic names (e.g. SUM_Area)"),
    ] = False,
    feature_class: Annotated[
        bool,
        typer.Option("--feature-class", help="Keep the selection as a dataset instead of CSV"),
    ] = False,
    verbose: VerboseOption = 0,
    log_format: LogFormatOption = None,
) -> None:
    """Export the selected features of a layer.

    Examples:

        datasearches export SSSIs sssi.csv -c '"SSSI",Name,Area' --area -w searches.duckdb

        datasearches export SSSIs sssi.csv -c Name,Area --group Name --statistics "Area SUM"

        datasearches export SSSIs sssi_sites.parquet --feature-class --within Buffer
    """
    setup_logging(verbosity=verbose, log_format=log_format)

    from datasearches.core.config import get_settings
    from datasearches.core.logging import SearchLog
    from datasearches.engine.session import SelectionMethod
    from datasearches.export.derived import NO_RADIUS
    from datasearches.export.pipeline import (
        ExportContext,
        ExportRequest,
        export_selection_to_csv,
        export_selection_to_feature_class,
    )

    settings = get_settings()
    log = SearchLog(Path(settings.log_file)) if settings.log_file else None
    ws = open_workspace(workspace)
    ctx = ExportContext.create(
        ws,
        settings=settings,
        log=log,
        notify=lambda message: console.print(f"[red]{message}[/red]"),
    )
    try:
        if not ws.exists(layer):
            console.print(f"[red]Layer {layer} not found[/red]")
            raise typer.Exit(1)
        ctx.session.add_layer(layer)
        if within:
            ctx.session.select_by_location(layer, within)
        if where:
            method = SelectionMethod.AND if within else SelectionMethod.NEW
            ctx.session.select_by_attributes(layer, where, method)

        request = ExportRequest(
            layer=layer,
            output=output,
            columns=columns,
            group_columns=group_columns,
            statistics_columns=statistics_columns,
            order_columns=order_columns,
            include_area=include_area,
            area_unit=area_unit or settings.default_area_unit,
            distance_target=distance_to,
            radius=radius or NO_RADIUS,
            overwrite=not append,
            include_headers=not no_header,
            rename=not no_rename,
        )

        if feature_class:
            if not export_selection_to_feature_class(ctx, request):
                raise typer.Exit(1)
            console.print(f"[green]{layer} saved to {output}[/green]")
        else:
            rows = export_selection_to_csv(ctx, request)
            if rows < 0:
                raise typer.Exit(1)
            console.print(f"[green]{rows} records exported to {output}[/green]")

        for mismatch in ctx.mismatches:
            console.print(
                f"[yellow]Skipped {mismatch.context} field {mismatch.field_name} "
                f"(not in {mismatch.dataset})[/yellow]"
            )
    finally:
        ctx.close()
        ws.close()
