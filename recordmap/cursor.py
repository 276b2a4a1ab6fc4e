"""
Lazy, resource-bounded query cursor.

A Cursor is created by Collection.find and does nothing until the first
record is requested. Opening runs the SELECT/BEFORE interceptors and reserves
a backend cursor; rows are then read in batches and every hydrated record
passes SELECT/AFTER on its own.

Invariants:
    - Forward-only and not restartable
    - sort/limit/skip can only change before iteration starts
    - The backend cursor is released exactly once: on exhaustion, when
      iteration raises, on aclose / async with, or when a plain async for
      loop stops early (the loop's generator is finalized by the event loop)
    - Release failures and background resource errors are logged, never
      raised over a successful result

Example:
    >>> async with employees.find({"dept": "eng"}).sort("name").limit(10) as cursor:
    ...     async for record in cursor:
    ...         print(record.get("name"))
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import AsyncIterator
from collections.abc import Collection as Names
from typing import TYPE_CHECKING, Any, Mapping

from .backends.base import ASCENDING, BackendCursor, FindOptions
from .constants import OperationType, OperationWhen
from .errors import CursorStateError

if TYPE_CHECKING:
    from .collection import Collection
    from .record import Record

logger = logging.getLogger(__name__)


class Cursor:
    """Async iterator over the records matching a filter."""

    def __init__(
        self,
        collection: Collection,
        filter: Mapping[str, Any],
        options: FindOptions | Mapping[str, Any] | None = None,
        inactive_intercepts: Names[str] | None = None,
        batch_size: int = 100,
    ) -> None:
        self._collection = collection
        self._filter = dict(filter)
        self._options = FindOptions.from_value(options)
        self._inactive_intercepts = inactive_intercepts
        self._batch_size = max(1, batch_size)
        self._backend_cursor: BackendCursor | None = None
        self._rows: deque[dict[str, Any]] = deque()
        self._pending: deque[Record] = deque()
        self._started = False
        self._exhausted = False
        self._closed = False

    @property
    def started(self) -> bool:
        return self._started

    @property
    def closed(self) -> bool:
        return self._closed

    def get_options(self) -> FindOptions:
        return self._options

    def _check_not_started(self) -> None:
        if self._started:
            raise CursorStateError("Cannot modify a cursor after iteration has started")

    def sort(self, field: str, direction: int = ASCENDING) -> Cursor:
        self._check_not_started()
        self._options = self._options.with_sort(field, direction)
        return self

    def limit(self, n: int) -> Cursor:
        self._check_not_started()
        self._options = self._options.with_limit(n)
        return self

    def skip(self, n: int) -> Cursor:
        self._check_not_started()
        self._options = self._options.with_skip(n)
        return self

    def __aiter__(self) -> AsyncIterator[Record]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Record]:
        try:
            while True:
                record = await self._next_record()
                if record is None:
                    return
                yield record
        finally:
            await self.aclose()

    async def __anext__(self) -> Record:
        try:
            record = await self._next_record()
        except BaseException:
            await self.aclose()
            raise
        if record is None:
            await self.aclose()
            raise StopAsyncIteration
        return record

    async def __aenter__(self) -> Cursor:
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.aclose()

    async def _open(self) -> None:
        self._started = True
        collection = self._collection
        result = await collection.intercept(
            OperationType.SELECT,
            OperationWhen.BEFORE,
            [],
            inactive_intercepts=self._inactive_intercepts,
        )
        if result is None:
            self._exhausted = True
            return

        self._backend_cursor = await collection.get_backend().find(
            collection.get_host_name(), self._filter, self._options
        )
        self._backend_cursor.add_error_listener(self._on_resource_error)
        logger.debug(
            "Cursor opened",
            extra={"collection": collection.get_name(), "filter": self._filter},
        )

    async def _next_record(self) -> Record | None:
        if not self._started:
            await self._open()

        while not self._pending:
            if self._closed:
                return None
            if not self._rows:
                if self._exhausted or self._backend_cursor is None:
                    return None
                batch = await self._backend_cursor.read(self._batch_size)
                if not batch:
                    self._exhausted = True
                    return None
                self._rows.extend(batch)

            record = self._collection.hydrate(self._rows.popleft())
            result = await self._collection.intercept(
                OperationType.SELECT,
                OperationWhen.AFTER,
                [record],
                inactive_intercepts=self._inactive_intercepts,
            )
            if result:
                self._pending.extend(result)

        return self._pending.popleft()

    async def aclose(self) -> None:
        """Stop iteration and release the backend cursor."""
        if self._closed:
            return
        self._closed = True
        self._started = True
        self._rows.clear()
        self._pending.clear()
        backend_cursor, self._backend_cursor = self._backend_cursor, None
        if backend_cursor is None:
            return
        try:
            await backend_cursor.release()
        except Exception:
            logger.exception(
                "Failed to release cursor",
                extra={"collection": self._collection.get_name()},
            )

    def _on_resource_error(self, error: BaseException) -> None:
        logger.error(
            f"Cursor resource error: {error}",
            extra={"collection": self._collection.get_name()},
        )

    async def to_list(self) -> list[Record]:
        """Consume the cursor into a list."""
        records = []
        async for record in self:
            records.append(record)
        return records
