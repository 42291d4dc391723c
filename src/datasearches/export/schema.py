"""Schema validation: do requested datasets and fields exist?"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from pathlib import Path

import duckdb

from datasearches.core.logging import get_logger
from datasearches.core.models import DatasetRef, FieldInfo
from datasearches.engine.workspace import Workspace, find_field

logger = get_logger(__name__)


def field_exists(fields: Sequence[FieldInfo], name: str) -> bool:
    """True if a field matches by name, or failing that by alias."""
    return find_field(fields, name) is not None


def filter_existing(
    fields: Sequence[FieldInfo], names: Iterable[str]
) -> tuple[list[str], list[str]]:
    """Split requested names into (existing, missing), preserving order."""
    existing: list[str] = []
    missing: list[str] = []
    for name in names:
        (existing if field_exists(fields, name) else missing).append(name)
    return existing, missing


def dataset_exists(workspace: Workspace, name: str) -> bool:
    """Whether a dataset resolves at the time of the call.

    - single-file datasets (e.g. 'sites.csv') exist when the file is on disk
    - datasets in server workspaces are assumed to exist
    - anything else is looked up in the workspace catalog

    An unreadable workspace reads as "does not exist".
    """
    if "/" in name or "\\" in name:
        ref = DatasetRef.parse(name)
    else:
        ref = DatasetRef(workspace=workspace.location, name=name)
    if ref.is_single_file:
        return Path(name).exists()
    if ref.is_server_workspace:
        return True
    try:
        return workspace.exists(ref.name)
    except (duckdb.Error, RuntimeError) as e:
        logger.debug("dataset_lookup_failed", dataset=name, error=str(e))
        return False
