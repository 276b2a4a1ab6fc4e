"""
Operation interceptor pipeline for recordmap.

Interceptors are named hooks that wrap every CREATE, UPDATE, DELETE and
SELECT operation. The BEFORE phase runs ahead of validation and the storage
call; the AFTER phase runs over the persisted or fetched records.

Invariants:
    - Interceptors run one after another in ascending order; ties keep
      registration order
    - The inactive-intercepts set is checked before every invocation
    - Returning None, or emptying a non-empty record list, stops the chain
    - Exceptions raised by an interceptor propagate unchanged

Example:
    >>> class Audit(OperationInterceptor):
    ...     def get_name(self): return "audit"
    ...     def get_order(self): return 10
    ...     async def intercept(self, collection_name, operation, when, records, context):
    ...         return records
    >>> service = InterceptorService()
    >>> service.add_interceptor(Audit())
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Collection as Names
from typing import TYPE_CHECKING, Any

from .constants import OperationType, OperationWhen

if TYPE_CHECKING:
    from .record import Record

logger = logging.getLogger(__name__)


class OperationInterceptor(ABC):
    """Base class for operation interceptors."""

    @abstractmethod
    def get_name(self) -> str:
        """Unique interceptor name, used for registration and suppression."""
        ...

    @abstractmethod
    def get_order(self) -> int | float:
        """Priority; lower values run first."""
        ...

    @abstractmethod
    async def intercept(
        self,
        collection_name: str,
        operation: OperationType,
        when: OperationWhen,
        records: list[Record],
        context: Any,
    ) -> list[Record] | None:
        """Inspect or replace ``records``.

        Returns:
            The records to pass on, or None to cancel the operation
        """
        ...


class InterceptorService:
    """Registry and runner for operation interceptors.

    One service is owned by each RecordMapper and injected into every
    collection handle it creates.
    """

    def __init__(self) -> None:
        self._interceptors: dict[str, OperationInterceptor] = {}
        self._lock = threading.Lock()

    def add_interceptor(self, interceptor: OperationInterceptor) -> None:
        """Register an interceptor, replacing one with the same name."""
        with self._lock:
            self._interceptors[interceptor.get_name()] = interceptor
        logger.debug(
            f"Registered interceptor: {interceptor.get_name()} (order={interceptor.get_order()})"
        )

    def delete_interceptor(self, name: str) -> bool:
        with self._lock:
            return self._interceptors.pop(name, None) is not None

    def get_interceptor(self, name: str) -> OperationInterceptor | None:
        return self._interceptors.get(name)

    def has_interceptors(self) -> bool:
        return len(self._interceptors) != 0

    def clear(self) -> None:
        with self._lock:
            self._interceptors.clear()

    def get_sorted_interceptors(self) -> list[OperationInterceptor]:
        """Interceptors in execution order."""
        with self._lock:
            interceptors = list(self._interceptors.values())
        # sorted() is stable, so equal orders keep registration order
        return sorted(interceptors, key=lambda i: i.get_order())

    async def intercept(
        self,
        collection_name: str,
        operation: OperationType,
        when: OperationWhen,
        records: list[Record],
        context: Any = None,
        inactive_intercepts: Names[str] | None = None,
    ) -> list[Record] | None:
        """Run the pipeline for one operation phase.

        Returns:
            The resulting records, or None if an interceptor cancelled
        """
        if not self.has_interceptors():
            return records

        operation = OperationType(operation)
        when = OperationWhen(when)
        for interceptor in self.get_sorted_interceptors():
            name = interceptor.get_name()
            if inactive_intercepts and name in inactive_intercepts:
                continue

            had_records = bool(records)
            records = await interceptor.intercept(
                collection_name, operation, when, records, context
            )
            if records is None or (had_records and not records):
                logger.debug(
                    "Operation cancelled by interceptor",
                    extra={
                        "collection": collection_name,
                        "operation": operation.value,
                        "when": when.value,
                        "interceptor": name,
                    },
                )
                return None
        return records
