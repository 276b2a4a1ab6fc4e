"""
Base protocol and types for storage backends.

A backend is the execution interface the mapping layer talks to. It knows
nothing about schemas, field types or interceptors: it stores documents in
named stores, matches equality filters and hands out cursors.

Invariants:
    - Every document carries its identity under ``_id``
    - insert_one returns the identity of the stored document
    - update_one merges the given values into the stored document
    - A cursor owns an exclusive resource until release() is called
    - Constraint violations raise StorageError subclasses

How to change safely:
    - Protocol changes require updating all implementations
    - Keep the filter grammar to equality matching; richer query languages
      belong to a concrete backend
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from dataclasses import dataclass
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    runtime_checkable,
)

from ..datatypes import PrimitiveDataType

if TYPE_CHECKING:
    from ..config import MapperSettings

logger = logging.getLogger(__name__)

ASCENDING = 1
DESCENDING = -1

ErrorListener = Callable[[BaseException], None]


@dataclass(frozen=True)
class ColumnSpec:
    """Storage description of one field.

    Attributes:
        name: Field name
        data_type: Primitive type the backend stores
        unique: Whether the backend enforces uniqueness
    """

    name: str
    data_type: PrimitiveDataType
    unique: bool = False


@dataclass(frozen=True)
class FindOptions:
    """Options for find/find_one.

    Attributes:
        sort: Sequence of (field, direction) pairs, direction 1 or -1
        limit: Maximum number of documents, None for no limit
        skip: Number of matching documents to skip
    """

    sort: Tuple[Tuple[str, int], ...] = ()
    limit: Optional[int] = None
    skip: int = 0

    @classmethod
    def from_value(cls, value: FindOptions | Mapping[str, Any] | None) -> FindOptions:
        """Build options from None, a FindOptions or a plain mapping.

        ``sort`` may be a list of pairs or a mapping of field to direction.
        """
        if value is None:
            return cls()
        if isinstance(value, FindOptions):
            return value
        sort = value.get("sort") or ()
        if isinstance(sort, Mapping):
            sort = sort.items()
        return cls(
            sort=tuple((str(f), int(d)) for f, d in sort),
            limit=value.get("limit"),
            skip=value.get("skip") or 0,
        )

    def with_sort(self, field: str, direction: int) -> FindOptions:
        return FindOptions(sort=self.sort + ((field, direction),), limit=self.limit, skip=self.skip)

    def with_limit(self, limit: Optional[int]) -> FindOptions:
        return FindOptions(sort=self.sort, limit=limit, skip=self.skip)

    def with_skip(self, skip: int) -> FindOptions:
        return FindOptions(sort=self.sort, limit=self.limit, skip=skip)


@runtime_checkable
class BackendCursor(Protocol):
    """Streaming result handle holding an exclusive backend resource."""

    @abstractmethod
    async def read(self, n: int) -> List[Dict[str, Any]]:
        """Read up to ``n`` documents; an empty list means exhausted."""
        ...

    @abstractmethod
    async def release(self) -> None:
        """Release the reserved resource. Safe to call once."""
        ...

    @abstractmethod
    def add_error_listener(self, listener: ErrorListener) -> None:
        """Register a callback for resource errors raised in the background."""
        ...


@runtime_checkable
class Backend(Protocol):
    """Protocol for storage backends.

    Example:
        >>> backend = InMemoryBackend()
        >>> await backend.connect()
        >>> await backend.ensure_store("employee", [ColumnSpec("name", PrimitiveDataType.STRING)])
        >>> identity = await backend.insert_one("employee", {"_id": "...", "name": "John"})
    """

    @abstractmethod
    async def connect(self) -> None:
        """Connect to the backend.

        Raises:
            BackendConnectionError: If connection fails
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the backend and release its resources."""
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether currently connected."""
        ...

    @abstractmethod
    async def ensure_store(self, store: str, columns: Sequence[ColumnSpec]) -> None:
        """Create the store, or extend it with missing columns."""
        ...

    @abstractmethod
    async def drop_store(self, store: str) -> None:
        """Remove a store and all its documents."""
        ...

    @abstractmethod
    async def insert_one(self, store: str, doc: Mapping[str, Any]) -> Any:
        """Insert a document and return its identity.

        Raises:
            UniqueConstraintError: If a unique value is already taken
            StorageError: For other write failures
        """
        ...

    @abstractmethod
    async def find_one(
        self,
        store: str,
        filter: Mapping[str, Any],
        options: Optional[FindOptions] = None,
    ) -> Optional[Dict[str, Any]]:
        """Return the first matching document, or None."""
        ...

    @abstractmethod
    async def find(
        self,
        store: str,
        filter: Mapping[str, Any],
        options: Optional[FindOptions] = None,
    ) -> BackendCursor:
        """Reserve a cursor over the matching documents."""
        ...

    @abstractmethod
    async def update_one(self, store: str, identity: Any, values: Mapping[str, Any]) -> bool:
        """Merge ``values`` into a document. Returns False if not found."""
        ...

    @abstractmethod
    async def delete_one(self, store: str, identity: Any) -> bool:
        """Delete a document. Returns False if not found."""
        ...

    @abstractmethod
    async def count(self, store: str, filter: Mapping[str, Any]) -> int:
        """Count matching documents."""
        ...


def create_backend(settings: "MapperSettings") -> Backend:
    """Factory function to create a backend from settings.

    Raises:
        ValueError: If the backend is not supported
    """
    from .memory import InMemoryBackend
    from .sqlite import SQLiteBackend

    if settings.backend == "memory":
        return InMemoryBackend()
    elif settings.backend == "sqlite":
        return SQLiteBackend(
            settings.sqlite_path,
            wal_mode=settings.sqlite_wal_mode,
            busy_timeout_ms=settings.sqlite_busy_timeout_ms,
        )
    else:
        raise ValueError(f"Unsupported backend: {settings.backend}")
