"""Main CLI application entry point."""

from __future__ import annotations

import typer

from datasearches.cli.commands import export, inspect, load, search

app = typer.Typer(
    name="datasearches",
    help="Data Searches - export layer selections around a search site.",
    no_args_is_help=True,
)

# Register commands
app.command()(load.load)
app.command()(inspect.inspect)
app.command()(export.export)
app.command()(search.search)


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
