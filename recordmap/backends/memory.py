"""
In-memory document store backend.

This module provides a simple in-memory backend for:
- Unit tests
- Local development without external dependencies
- A reference implementation of the Backend protocol

Invariants:
    - All data is lost on process exit
    - Documents are deep-copied on the way in and out
    - Unique columns declared through ensure_store are enforced on write
    - Every cursor counts as one reserved resource until released

How to change safely:
    - Keep interface compatible with the Backend protocol
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import asyncio
import copy
import logging
import uuid
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set

from ..constants import ID_FIELD
from ..errors import BackendConnectionError, StorageError, UniqueConstraintError
from .base import ColumnSpec, ErrorListener, FindOptions

logger = logging.getLogger(__name__)


def matches_filter(doc: Mapping[str, Any], filter: Mapping[str, Any]) -> bool:
    """Equality match; a None filter value also matches a missing key."""
    return all(doc.get(key) == value for key, value in filter.items())


def sort_documents(docs: List[Dict[str, Any]], sort: Sequence[tuple]) -> List[Dict[str, Any]]:
    """Sort by (field, direction) pairs; missing values sort last."""
    for field_name, direction in reversed(list(sort)):
        present = [d for d in docs if d.get(field_name) is not None]
        missing = [d for d in docs if d.get(field_name) is None]
        present.sort(key=lambda d: d[field_name], reverse=direction < 0)
        docs = present + missing
    return docs


class InMemoryCursor:
    """Cursor over a snapshot of matching documents."""

    def __init__(self, backend: InMemoryBackend, store: str, docs: List[Dict[str, Any]]) -> None:
        self._backend = backend
        self._store = store
        self._docs = docs
        self._position = 0
        self._released = False
        self._listeners: List[ErrorListener] = []

    @property
    def released(self) -> bool:
        return self._released

    async def read(self, n: int) -> List[Dict[str, Any]]:
        if self._released:
            raise StorageError("Cursor already released", store=self._store)
        batch = self._docs[self._position:self._position + n]
        self._position += len(batch)
        return batch

    async def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._backend._release_cursor(self)

    def add_error_listener(self, listener: ErrorListener) -> None:
        self._listeners.append(listener)

    def emit_error(self, error: BaseException) -> None:
        """Report a resource error to listeners (testing helper)."""
        for listener in self._listeners:
            listener(error)


class InMemoryBackend:
    """In-memory implementation of the Backend protocol.

    Stores are created on first write; ensure_store only declares columns
    and unique indexes.

    Example:
        >>> backend = InMemoryBackend()
        >>> await backend.connect()
        >>> await backend.insert_one("employee", {"name": "John"})
    """

    def __init__(self) -> None:
        self._stores: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._columns: Dict[str, Dict[str, ColumnSpec]] = {}
        self._connected = False
        self._lock = asyncio.Lock()
        self._active_cursors: Set[InMemoryCursor] = set()
        self.reserve_count = 0
        self.release_count = 0

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Connect (no-op for in-memory)."""
        self._connected = True
        logger.debug("InMemoryBackend connected")

    async def close(self) -> None:
        """Close and clear all data."""
        for cursor in list(self._active_cursors):
            logger.warning(f"Releasing cursor on '{cursor._store}' left open at close")
            await cursor.release()
        self._connected = False
        self._stores.clear()
        self._columns.clear()
        logger.debug("InMemoryBackend closed")

    def _check_connected(self) -> None:
        if not self._connected:
            raise BackendConnectionError("Not connected")

    async def ensure_store(self, store: str, columns: Sequence[ColumnSpec]) -> None:
        self._check_connected()
        async with self._lock:
            self._stores.setdefault(store, {})
            declared = self._columns.setdefault(store, {})
            for column in columns:
                declared[column.name] = column
        logger.debug("Store ensured", extra={"store": store, "columns": len(columns)})

    async def drop_store(self, store: str) -> None:
        self._check_connected()
        async with self._lock:
            self._stores.pop(store, None)
            self._columns.pop(store, None)

    def _unique_fields(self, store: str) -> List[str]:
        return [c.name for c in self._columns.get(store, {}).values() if c.unique]

    def _check_unique(self, store: str, doc: Mapping[str, Any], identity: Any) -> None:
        docs = self._stores.get(store, {})
        for field_name in self._unique_fields(store):
            value = doc.get(field_name)
            if value is None:
                continue
            for existing_id, existing in docs.items():
                if existing_id != identity and existing.get(field_name) == value:
                    raise UniqueConstraintError(store, field_name, value)

    async def insert_one(self, store: str, doc: Mapping[str, Any]) -> Any:
        self._check_connected()
        doc = copy.deepcopy(dict(doc))
        identity = doc.get(ID_FIELD) or str(uuid.uuid4())
        doc[ID_FIELD] = identity

        async with self._lock:
            docs = self._stores.setdefault(store, {})
            if identity in docs:
                raise UniqueConstraintError(store, ID_FIELD, identity)
            self._check_unique(store, doc, identity)
            docs[identity] = doc

        logger.debug("Document inserted", extra={"store": store, "identity": identity})
        return identity

    def _select(
        self,
        store: str,
        filter: Mapping[str, Any],
        options: Optional[FindOptions],
    ) -> List[Dict[str, Any]]:
        options = options or FindOptions()
        docs = [d for d in self._stores.get(store, {}).values() if matches_filter(d, filter)]
        if options.sort:
            try:
                docs = sort_documents(docs, options.sort)
            except TypeError as e:
                raise StorageError(f"Cannot sort documents: {e}", store=store)
        docs = docs[options.skip:]
        if options.limit is not None:
            docs = docs[:options.limit]
        return [copy.deepcopy(d) for d in docs]

    async def find_one(
        self,
        store: str,
        filter: Mapping[str, Any],
        options: Optional[FindOptions] = None,
    ) -> Optional[Dict[str, Any]]:
        self._check_connected()
        options = (options or FindOptions()).with_limit(1)
        docs = self._select(store, filter, options)
        return docs[0] if docs else None

    async def find(
        self,
        store: str,
        filter: Mapping[str, Any],
        options: Optional[FindOptions] = None,
    ) -> InMemoryCursor:
        self._check_connected()
        cursor = InMemoryCursor(self, store, self._select(store, filter, options))
        self._active_cursors.add(cursor)
        self.reserve_count += 1
        return cursor

    def _release_cursor(self, cursor: InMemoryCursor) -> None:
        self._active_cursors.discard(cursor)
        self.release_count += 1

    async def update_one(self, store: str, identity: Any, values: Mapping[str, Any]) -> bool:
        self._check_connected()
        async with self._lock:
            docs = self._stores.get(store, {})
            existing = docs.get(identity)
            if existing is None:
                return False
            merged = dict(existing)
            merged.update(copy.deepcopy(dict(values)))
            merged[ID_FIELD] = identity
            self._check_unique(store, merged, identity)
            docs[identity] = merged
        return True

    async def delete_one(self, store: str, identity: Any) -> bool:
        self._check_connected()
        async with self._lock:
            return self._stores.get(store, {}).pop(identity, None) is not None

    async def count(self, store: str, filter: Mapping[str, Any]) -> int:
        self._check_connected()
        return sum(1 for d in self._stores.get(store, {}).values() if matches_filter(d, filter))

    # Testing helpers

    @property
    def active_cursors(self) -> int:
        """Number of cursors not yet released."""
        return len(self._active_cursors)

    def get_all_documents(self, store: str) -> List[Dict[str, Any]]:
        return [copy.deepcopy(d) for d in self._stores.get(store, {}).values()]

    def get_document_count(self, store: str) -> int:
        return len(self._stores.get(store, {}))
