"""Inspect command - show the datasets and fields of a workspace."""

from __future__ import annotations

import json
from typing import Annotated

import typer
from rich.table import Table as RichTable

from datasearches.cli.common import JsonFlag, WorkspaceOption, console, open_workspace


def inspect(
    dataset: Annotated[
        str | None,
        typer.Argument(help="Dataset to describe (default: list every dataset)"),
    ] = None,
    workspace: WorkspaceOption = None,
    output_json: JsonFlag = False,
) -> None:
    """Inspect a workspace.

    Without a dataset, lists every dataset with its kind and row count.
    With one, lists its fields.
    """
    ws = open_workspace(workspace)
    try:
        if dataset is None:
            datasets = [
                {"name": name, "kind": kind.value, "rows": ws.count(name)}
                for name, kind in ws.list_datasets()
            ]
            if output_json:
                console.print(json.dumps(datasets, indent=2))
                return
            if not datasets:
                console.print("[yellow]No datasets found. Load some data first.[/yellow]")
                return

            table = RichTable(show_header=True, header_style="bold")
            table.add_column("Dataset")
            table.add_column("Kind")
            table.add_column("Rows", justify="right")
            for d in datasets:
                table.add_row(d["name"], d["kind"].replace("_", " "), str(d["rows"]))
            console.print(table)
            return

        if not ws.exists(dataset):
            console.print(f"[red]Dataset {dataset} not found[/red]")
            raise typer.Exit(1)

        fields = ws.list_fields(dataset)
        if output_json:
            console.print(json.dumps([f.model_dump(mode="json") for f in fields], indent=2))
            return

        console.print(f"\n[bold]{ws.catalog_name(dataset)}[/bold] ({ws.count(dataset)} rows)\n")
        table = RichTable(show_header=True, header_style="bold")
        table.add_column("Field")
        table.add_column("Alias")
        table.add_column("Type")
        table.add_column("Length", justify="right")
        table.add_column("Required")
        for f in fields:
            table.add_row(
                f.name,
                f.alias or "",
                f.field_type.value,
                str(f.length) if f.length else "",
                "yes" if f.required else "",
            )
        console.print(table)
    finally:
        ws.close()
