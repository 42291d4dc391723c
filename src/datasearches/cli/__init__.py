"""CLI for datasearches.

Provides commands for loading data, inspecting a workspace, exporting a
layer selection and running batch searches.

Usage:
    datasearches load sites.csv --workspace searches.duckdb
    datasearches inspect --workspace searches.duckdb
    datasearches export SSSIs sssi.csv --columns "Name,Area" --workspace searches.duckdb
    datasearches search search.yaml --workspace searches.duckdb

Environment:
    Loads .env file from current directory if present.
    DATASEARCHES_* variables override the settings defaults.
"""

from datasearches.cli.main import app, main

__all__ = ["app", "main"]
