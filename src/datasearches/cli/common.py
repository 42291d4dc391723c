"""Shared CLI utilities and constants."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from dotenv import load_dotenv
from rich.console import Console

from datasearches.core.config import get_settings
from datasearches.core.logging import configure_logging
from datasearches.engine.workspace import Workspace

# Load .env file from current directory (DATASEARCHES_* overrides)
load_dotenv()

# Shared console instance
console = Console()

# Common type aliases for typer options
WorkspaceOption = Annotated[
    str | None,
    typer.Option(
        "--workspace",
        "-w",
        help="DuckDB workspace file (default: DATASEARCHES_WORKSPACE_PATH)",
    ),
]

JsonFlag = Annotated[
    bool,
    typer.Option(
        "--json",
        help="Output as JSON for scripting",
    ),
]

VerboseOption = Annotated[
    int,
    typer.Option(
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (-v=INFO, -vv=DEBUG)",
    ),
]

LogFormatOption = Annotated[
    str | None,
    typer.Option(
        "--log-format",
        help="Log output format (console or json, default: DATASEARCHES_LOG_FORMAT)",
    ),
]


def setup_logging(verbosity: int = 0, log_format: str | None = None) -> None:
    """Configure structured logging based on verbosity level.

    Args:
        verbosity: 0=configured level (WARNING by default), 1=INFO, 2+=DEBUG
        log_format: "console" for development, "json" for production/cloud;
            defaults to the configured format
    """
    settings = get_settings()
    log_format = log_format or settings.log_format
    if verbosity >= 2:
        level = "DEBUG"
    elif verbosity >= 1:
        level = "INFO"
    else:
        level = settings.log_level

    configure_logging(
        log_level=level,
        log_format=log_format,
        show_timestamps=verbosity >= 1,
        color=log_format == "console",
    )


def open_workspace(path: str | None, must_exist: bool = True) -> Workspace:
    """Open the workspace named on the command line, or the configured one.

    Returns the workspace. Caller is responsible for closing it.
    """
    settings = get_settings()
    location = path or settings.workspace_path
    if must_exist and location != ":memory:" and not Path(location).exists():
        console.print(f"[red]No workspace found at {location}[/red]")
        raise typer.Exit(1)
    return Workspace.open(location, memory_limit=settings.duckdb_memory_limit)
