"""Load command - bring CSV data into a workspace."""

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


def load(
    source: Annotated[
        Path,
        typer.Argument(
            help="CSV file to load",
            exists=True,
            file_okay=True,
            dir_okay=False,
            resolve_path=True,
        ),
    ],
    workspace: WorkspaceOption = None,
    name: Annotated[
        str | None,
        typer.Option(
            "--name",
            "-n",
            help="Dataset name (default: derived from the file name)",
        ),
    ] = None,
    geometry_column: Annotated[
        str,
        typer.Option(
            "--geometry-column",
            "-g",
            help="Column holding WKT geometry; without it the file loads as a table",
        ),
    ] = "WKT",
    overwrite: Annotated[
        bool,
        typer.Option(
            "--overwrite",
            help="Replace an existing dataset of the same name",
        ),
    ] = False,
    verbose: VerboseOption = 0,
    log_format: LogFormatOption = None,
) -> None:
    """Load a CSV file as a feature class (WKT geometry) or table.

    Examples:

        datasearches load sssi.csv -w searches.duckdb

        datasearches load sites.csv -w searches.duckdb --name SearchSites -g geom
    """
    setup_logging(verbosity=verbose, log_format=log_format)

    from datasearches.sources.csv.loader import CSVLoader

    ws = open_workspace(workspace, must_exist=False)
    try:
        result = CSVLoader(geometry_column=geometry_column).load(
            ws, source, name=name, overwrite=overwrite
        )
        if not result.success:
            console.print(f"[red]{result.error}[/red]")
            raise typer.Exit(1)

        loaded = result.unwrap()
        for warning in result.warnings:
            console.print(f"[yellow]{warning}[/yellow]")
        kind = loaded.kind.value.replace("_", " ")
        console.print(
            f"[green]Loaded {loaded.row_count} rows into {kind} {loaded.name}[/green] "
            f"({loaded.field_count} fields, {loaded.duration_seconds:.2f}s)"
        )
    finally:
        ws.close()
