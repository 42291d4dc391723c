"""Structured logging and the append-only search log.

Two sinks are used side by side:
- structlog for developer/cloud logs (console or JSON)
- SearchLog, a plain text file a search operator reads after a run

Usage:
    from datasearches.core.logging import get_logger, configure_logging, SearchLog

    configure_logging(log_level="INFO", log_format="console")
    logger = get_logger(__name__)

    logger.info("export_started", layer="SSSIs", output="sssi.csv")

    with log_context(run_id="run-123", layer="SSSIs"):
        logger.info("statistics_calculated", rows=12)

    search_log = SearchLog(Path("search.log"))
    search_log.write("Starting analysis for SSSIs")
"""

from __future__ import annotations

import logging
import sys
import threading
from collections.abc import MutableMapping
from contextvars import ContextVar
from datetime import datetime
from pathlib import Path
from typing import Any, cast

import structlog
from structlog.typing import FilteringBoundLogger

# Context variables for correlation
_run_context: ContextVar[dict[str, Any] | None] = ContextVar("run_context", default=None)

SEARCH_LOG_TIMESTAMP = "%d/%m/%Y %H:%M:%S"


def _add_run_context(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Processor to add run context to log events."""
    context = _run_context.get()
    if context:
        event_dict.update(context)
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    log_format: str = "console",
    show_timestamps: bool = True,
    color: bool = True,
) -> None:
    """Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Output format ("console" for development, "json" for production/cloud)
        show_timestamps: Whether to show timestamps in console mode
        color: Whether to use colors in console mode
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _add_run_context,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if show_timestamps:
        shared_processors.insert(0, structlog.processors.TimeStamper(fmt="iso", utc=True))

    if log_format == "json":
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(
                colors=color,
                exception_formatter=structlog.dev.plain_traceback,
            ),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, log_level.upper())),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    # Also configure stdlib logging for libraries
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper()),
        handlers=[logging.StreamHandler(sys.stderr)],
        force=True,
    )


def get_logger(name: str | None = None) -> FilteringBoundLogger:
    """Get a structured logger.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Bound structlog logger
    """
    return cast(FilteringBoundLogger, structlog.get_logger(name))


class LogContext:
    """Context manager for adding context to logs within a scope."""

    def __init__(self, **context: Any):
        self.context = context
        self.token: Any = None

    def __enter__(self) -> LogContext:
        current = _run_context.get() or {}
        self.token = _run_context.set({**current, **self.context})
        return self

    def __exit__(self, *args: Any) -> None:
        if self.token:
            _run_context.reset(self.token)


def log_context(**context: Any) -> LogContext:
    """Create a context manager for scoped logging context.

    Usage:
        with log_context(layer="SSSIs"):
            logger.info("processing")  # Will include layer
    """
    return LogContext(**context)


class SearchLog:
    """Append-only, line-oriented text log for a search run.

    Each line is prefixed with a timestamp. Lines are also forwarded to
    structlog so that unattended runs keep a single structured trail.
    A SearchLog without a path only forwards.
    """

    def __init__(self, path: Path | None = None, clear: bool = False):
        self.path = path
        self._lock = threading.Lock()
        self._lines: list[str] = []
        self._logger = get_logger("datasearches.search_log")
        if path is not None:
            path.parent.mkdir(parents=True, exist_ok=True)
            if clear and path.exists():
                path.unlink()

    @property
    def lines(self) -> list[str]:
        """Messages written during this session (without timestamps)."""
        return list(self._lines)

    def write(self, message: str, level: str = "info") -> None:
        """Append a message to the log file and to structlog."""
        with self._lock:
            self._lines.append(message)
            if self.path is not None:
                stamp = datetime.now().strftime(SEARCH_LOG_TIMESTAMP)
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(f"{stamp} : {message}\n")
        getattr(self._logger, level)(message)

    def error(self, message: str) -> None:
        self.write(message, level="error")

    def warning(self, message: str) -> None:
        self.write(message, level="warning")


# Initialize with default configuration
configure_logging()
