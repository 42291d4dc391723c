"""Thread-safe DuckDB connection management for a workspace.

The geoprocessing engine runs operations on a worker thread while the
pipeline reads schemas on the caller's thread, so:
- reads go through per-call cursors (concurrent-safe)
- writes are serialized through a mutex

Usage:
    from datasearches.core.connections import ConnectionConfig, ConnectionManager

    manager = ConnectionManager(ConnectionConfig(duckdb_path=Path("search.duckdb")))
    manager.initialize()

    with manager.duckdb_cursor() as cursor:
        rows = cursor.execute("SELECT * FROM sites").fetchall()

    with manager.duckdb_write() as conn:
        conn.execute("INSERT INTO sites VALUES (...)")

    manager.close()
"""

from __future__ import annotations

import threading
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import duckdb

from datasearches.core.logging import get_logger

logger = get_logger(__name__)

MEMORY = Path(":memory:")


@dataclass
class ConnectionConfig:
    """Connection configuration for a DuckDB workspace.

    Attributes:
        duckdb_path: Path to DuckDB database file (":memory:" for in-memory)
        duckdb_memory_limit: DuckDB memory limit (e.g., "2GB")
    """

    duckdb_path: Path
    duckdb_memory_limit: str = "2GB"

    @classmethod
    def in_memory(cls, **kwargs: Any) -> ConnectionConfig:
        """Create config for an in-memory workspace (useful for testing)."""
        return cls(duckdb_path=MEMORY, **kwargs)

    @classmethod
    def from_path(cls, path: str | Path, **kwargs: Any) -> ConnectionConfig:
        if str(path) == ":memory:":
            return cls.in_memory(**kwargs)
        return cls(duckdb_path=Path(path), **kwargs)


@dataclass
class ConnectionManager:
    """Thread-safe connection management for one DuckDB workspace.

    Thread Safety:
    - Reads: use duckdb_cursor(), a fresh cursor per call
    - Writes: use duckdb_write(), serialized via _write_lock
    """

    config: ConnectionConfig
    _duckdb_conn: duckdb.DuckDBPyConnection | None = field(default=None, init=False, repr=False)
    _write_lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)
    _initialized: bool = field(default=False, init=False, repr=False)

    def initialize(self) -> None:
        """Open the DuckDB connection.

        Safe to call multiple times (idempotent).

        Raises:
            RuntimeError: If the database cannot be opened
        """
        if self._initialized:
            return

        try:
            if self.config.duckdb_path == MEMORY:
                self._duckdb_conn = duckdb.connect(":memory:")
            else:
                self.config.duckdb_path.parent.mkdir(parents=True, exist_ok=True)
                self._duckdb_conn = duckdb.connect(str(self.config.duckdb_path))
            self._duckdb_conn.execute(f"SET memory_limit='{self.config.duckdb_memory_limit}'")
            self._initialized = True
            logger.debug("workspace_opened", path=str(self.config.duckdb_path))
        except duckdb.Error as e:
            self.close()
            raise RuntimeError(f"Failed to open workspace {self.config.duckdb_path}: {e}") from e

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise RuntimeError("ConnectionManager not initialized. Call manager.initialize() first.")

    @contextmanager
    def duckdb_cursor(self) -> Generator[duckdb.DuckDBPyConnection]:
        """Get a DuckDB cursor for read operations.

        Yields:
            DuckDB cursor for read operations

        Raises:
            RuntimeError: If manager not initialized
        """
        self._ensure_initialized()
        assert self._duckdb_conn is not None

        cursor = self._duckdb_conn.cursor()
        try:
            yield cursor
        finally:
            cursor.close()

    @contextmanager
    def duckdb_write(self) -> Generator[duckdb.DuckDBPyConnection]:
        """Get exclusive write access to DuckDB.

        Yields a cursor while holding the write mutex, so writes issued from
        the engine's worker thread never interleave with the caller's.
        """
        self._ensure_initialized()
        assert self._duckdb_conn is not None

        with self._write_lock:
            cursor = self._duckdb_conn.cursor()
            try:
                yield cursor
            finally:
                cursor.close()

    @property
    def is_open(self) -> bool:
        return self._initialized

    def close(self) -> None:
        """Close the connection. Safe to call multiple times."""
        if self._duckdb_conn is not None:
            try:
                self._duckdb_conn.close()
            except duckdb.Error as e:
                logger.warning("workspace_close_failed", error=str(e))
            self._duckdb_conn = None
        self._initialized = False


__all__ = [
    "ConnectionConfig",
    "ConnectionManager",
]
