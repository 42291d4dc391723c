"""CLI command implementations."""

from datasearches.cli.commands import export, inspect, load, search

__all__ = [
    "export",
    "inspect",
    "load",
    "search",
]
