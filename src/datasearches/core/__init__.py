"""Core infrastructure: configuration, logging, connections and shared models."""

from datasearches.core.connections import ConnectionConfig, ConnectionManager

__all__ = [
    "ConnectionConfig",
    "ConnectionManager",
]
