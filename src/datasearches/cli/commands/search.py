"""Search command - run a batch search from a YAML definition."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table as RichTable

from datasearches.cli.common import (
    LogFormatOption,
    VerboseOption,
    WorkspaceOption,
    console,
    open_workspace,
    setup_logging,
)


def search(
    definition_file: Annotated[
        Path,
        typer.Argument(
            help="YAML search definition",
            exists=True,
            file_okay=True,
            dir_okay=False,
            resolve_path=True,
        ),
    ],
    workspace: WorkspaceOption = None,
    reference: Annotated[
        str | None,
        typer.Option("--reference", "-r", help="Override the search reference"),
    ] = None,
    site_name: Annotated[
        str | None, typer.Option("--site-name", help="Override the site name")
    ] = None,
    quiet: Annotated[
        bool,
        typer.Option("--quiet", "-q", help="Suppress the summary table"),
    ] = False,
    verbose: VerboseOption = 0,
    log_format: LogFormatOption = None,
) -> None:
    """Run a data search: buffer the search site and export every layer.

    Examples:

        datasearches search search.yaml -w searches.duckdb

        datasearches search search.yaml -w searches.duckdb -r 2024/016 --site-name "Home Farm"
    """
    setup_logging(verbosity=verbose, log_format=log_format)

    from datasearches.export.batch import load_search_definition, run_search

    try:
        definition = load_search_definition(definition_file)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from e

    updates = {
        k: v for k, v in {"reference": reference, "site_name": site_name}.items() if v is not None
    }
    if updates:
        definition = definition.model_copy(update=updates)

    ws = open_workspace(workspace)
    try:
        result = run_search(ws, definition)
    finally:
        ws.close()

    if not quiet:
        console.print(f"\n[bold]Search {result.reference}[/bold]")
        console.print(f"Output: {result.output_folder}")
        console.print(f"Log: {result.log_path}")
        if result.outcomes:
            table = RichTable(show_header=True, header_style="bold")
            table.add_column("Layer")
            table.add_column("Status")
            table.add_column("Rows", justify="right")
            table.add_column("Kept as")
            for outcome in result.outcomes:
                status = "[green]ok[/green]" if outcome.success else "[red]failed[/red]"
                rows = str(outcome.rows) if outcome.rows >= 0 else ""
                table.add_row(outcome.name, status, rows, outcome.kept_as or "")
            console.print(table)

    if result.aborted:
        console.print("[red]Search aborted - see the log for details[/red]")
        raise typer.Exit(1)
    if not result.success:
        console.print(f"[yellow]Failed layers: {', '.join(result.failed_layers)}[/yellow]")
        raise typer.Exit(1)
