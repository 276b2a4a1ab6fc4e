"""Storage backends for recordmap."""

from .base import (
    ASCENDING,
    DESCENDING,
    Backend,
    BackendCursor,
    ColumnSpec,
    FindOptions,
    create_backend,
)
from .memory import InMemoryBackend, InMemoryCursor
from .sqlite import SQLiteBackend, SQLiteCursor

__all__ = [
    "ASCENDING",
    "DESCENDING",
    "Backend",
    "BackendCursor",
    "ColumnSpec",
    "FindOptions",
    "create_backend",
    "InMemoryBackend",
    "InMemoryCursor",
    "SQLiteBackend",
    "SQLiteCursor",
]
