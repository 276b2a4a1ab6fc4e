"""
Collection façade for recordmap.

A Collection is the handle application code uses for one entity: it builds
records, runs CRUD through the interceptor pipeline and schema validation,
and executes queries as lazy cursors.

Invariants:
    - Every mutating operation runs BEFORE interceptors, then validation,
      then the storage call, then AFTER interceptors
    - A cancelled BEFORE phase means no validation and no storage call
    - Records of a schema that extends another live in the root's store and
      carry the ``_collection`` discriminator
    - Handles are cheap views: with_context, deactivate_intercept and
      deactivate_all_intercepts return new handles and never mutate the
      shared one
    - Field defaults fill missing or None values before validation, so a
      not_null field with a default is never stored empty

How to change safely:
    - Keep filter formatting in _format_filter so find, find_one, count and
      storage validation agree on the effective filter
    - New operations must go through intercept() to stay suppressible

Example:
    >>> employees = await mapper.define_collection({
    ...     "name": "employee",
    ...     "fields": [
    ...         {"name": "name", "type": "string", "unique": True},
    ...         {"name": "salary", "type": "integer", "not_null": True},
    ...     ],
    ... })
    >>> record = employees.create_new_record({"name": "John", "salary": 100})
    >>> saved = await employees.insert_record(record)
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Collection as Names
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Mapping

from .backends.base import Backend, FindOptions
from .constants import DISCRIMINATOR_FIELD, ID_FIELD, OperationType, OperationWhen
from .cursor import Cursor
from .datatypes import is_scalar
from .errors import StorageError, ValidationError
from .interceptors import InterceptorService
from .record import Record

if TYPE_CHECKING:
    from .config import MapperSettings
    from .schema.registry import CollectionRegistry
    from .schema.schema import Schema

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CollectionDefinition:
    """Everything a collection handle is bound to.

    Attributes:
        schema: Resolved schema of the entity
        backend: Storage backend shared by the mapper
        interceptors: Interceptor service owned by the mapper
        registry: Collection registry used to resolve references
        settings: Mapper settings
    """

    schema: Schema
    backend: Backend
    interceptors: InterceptorService
    registry: CollectionRegistry
    settings: MapperSettings


class Collection:
    """Handle for one entity."""

    def __init__(
        self,
        definition: CollectionDefinition,
        context: Any = None,
        inactive_intercepts: Names[str] = frozenset(),
        intercepts_active: bool = True,
    ) -> None:
        self._definition = definition
        self._context = context
        self._inactive_intercepts = frozenset(inactive_intercepts)
        self._intercepts_active = intercepts_active

    def get_name(self) -> str:
        return self._definition.schema.get_name()

    def get_schema(self) -> Schema:
        return self._definition.schema

    def get_host_name(self) -> str:
        """Name of the physical store holding this collection's records."""
        return self._definition.schema.get_host_name()

    def get_definition(self) -> CollectionDefinition:
        return self._definition

    def get_backend(self) -> Backend:
        return self._definition.backend

    def get_registry(self) -> CollectionRegistry:
        return self._definition.registry

    def get_context(self) -> Any:
        return self._context

    def with_context(self, context: Any) -> Collection:
        """Handle passing ``context`` to interceptors and field types."""
        return Collection(
            self._definition, context, self._inactive_intercepts, self._intercepts_active
        )

    @property
    def check_unique_before_write(self) -> bool:
        return self._definition.settings.check_unique_before_write

    def deactivate_intercept(self, *names: str) -> Collection:
        """Handle that skips the named interceptors.

        The shared handle is not changed, so concurrent callers still run them.
        """
        return Collection(
            self._definition,
            self._context,
            self._inactive_intercepts | set(names),
            self._intercepts_active,
        )

    def deactivate_all_intercepts(self) -> Collection:
        """Handle on which no interceptor runs for any operation.

        Example:
            >>> raw = employees.deactivate_all_intercepts()
            >>> await raw.insert_record({"name": "John", "salary": 100})
        """
        return Collection(self._definition, self._context, self._inactive_intercepts, False)

    def activate_all_intercepts(self) -> Collection:
        """Handle on which interceptors run again, except those deactivated by name."""
        return Collection(self._definition, self._context, self._inactive_intercepts, True)

    def are_intercepts_active(self) -> bool:
        return self._intercepts_active

    def get_inactive_intercepts(self) -> frozenset[str]:
        return self._inactive_intercepts

    def _merge_inactive(self, extra: Names[str] | None) -> frozenset[str]:
        if not extra:
            return self._inactive_intercepts
        return self._inactive_intercepts | frozenset(extra)

    async def intercept(
        self,
        operation: OperationType,
        when: OperationWhen,
        records: list[Record],
        inactive_intercepts: Names[str] | None = None,
    ) -> list[Record] | None:
        """Run the interceptor pipeline for this collection.

        Returns the records unchanged when interceptors are off for this handle.
        """
        if not self._intercepts_active:
            return records
        return await self._definition.interceptors.intercept(
            self.get_name(),
            operation,
            when,
            records,
            self._context,
            self._merge_inactive(inactive_intercepts),
        )

    def create_new_record(self, values: Mapping[str, Any] | None = None) -> Record:
        """New record with a fresh identity, defaults and optional values."""
        record = Record(self).initialize()
        if values:
            record.update_values(values)
        return record

    def hydrate(self, doc: Mapping[str, Any]) -> Record:
        """Build a loaded record from a stored document."""
        return Record(self, doc)

    def _format_filter(self, filter: Mapping[str, Any] | None) -> dict[str, Any]:
        schema = self.get_schema()
        formatted: dict[str, Any] = {}
        for key, value in (filter or {}).items():
            f = schema.get_field(key)
            if f is not None and value is not None and is_scalar(value):
                value = f.get_field_type().set_value_intercept(
                    schema, f, value, filter, self._context
                )
            formatted[key] = value
        if schema.get_extends():
            formatted[DISCRIMINATOR_FIELD] = self.get_name()
        return formatted

    def _apply_defaults(self, doc: dict[str, Any]) -> None:
        schema = self.get_schema()
        for f in schema.get_fields():
            if f.default is None or doc.get(f.name) is not None:
                continue
            value = copy.deepcopy(f.default)
            if is_scalar(value):
                value = f.get_field_type().set_value_intercept(
                    schema, f, value, doc, self._context
                )
            doc[f.name] = value

    def _to_document(self, record: Record) -> dict[str, Any]:
        doc = record.to_object()
        if doc.get(ID_FIELD) is None:
            doc[ID_FIELD] = self.get_schema().get_field(ID_FIELD).get_field_type().generate()
        self._apply_defaults(doc)
        if self.get_schema().get_extends():
            doc[DISCRIMINATOR_FIELD] = self.get_name()
        return doc

    async def find_raw(
        self,
        filter: Mapping[str, Any],
        scoped: bool = False,
    ) -> dict[str, Any] | None:
        """First stored document matching ``filter``, without interceptors.

        Args:
            filter: Equality filter
            scoped: Restrict to this collection's records within the host store
        """
        query = self._format_filter(filter) if scoped else dict(filter)
        return await self.get_backend().find_one(self.get_host_name(), query)

    async def find_by_id(
        self,
        identity: Any,
        inactive_intercepts: Names[str] | None = None,
    ) -> Record | None:
        return await self.find_one({ID_FIELD: identity}, inactive_intercepts=inactive_intercepts)

    async def find_one(
        self,
        filter: Mapping[str, Any] | None = None,
        options: FindOptions | Mapping[str, Any] | None = None,
        inactive_intercepts: Names[str] | None = None,
    ) -> Record | None:
        """First record matching ``filter``, or None."""
        inactive = self._merge_inactive(inactive_intercepts)
        if await self.intercept(OperationType.SELECT, OperationWhen.BEFORE, [], inactive) is None:
            return None

        doc = await self.get_backend().find_one(
            self.get_host_name(), self._format_filter(filter), FindOptions.from_value(options)
        )
        if doc is None:
            return None

        result = await self.intercept(
            OperationType.SELECT, OperationWhen.AFTER, [self.hydrate(doc)], inactive
        )
        return result[0] if result else None

    def find(
        self,
        filter: Mapping[str, Any] | None = None,
        options: FindOptions | Mapping[str, Any] | None = None,
        inactive_intercepts: Names[str] | None = None,
    ) -> Cursor:
        """Lazy cursor over the records matching ``filter``.

        Nothing is read until iteration starts.
        """
        return Cursor(
            self,
            self._format_filter(filter),
            options,
            inactive_intercepts=self._merge_inactive(inactive_intercepts),
            batch_size=self._definition.settings.cursor_batch_size,
        )

    async def count(self, filter: Mapping[str, Any] | None = None) -> int:
        return await self.get_backend().count(self.get_host_name(), self._format_filter(filter))

    async def _read_back(self, identity: Any) -> Record:
        stored = await self.get_backend().find_one(self.get_host_name(), {ID_FIELD: identity})
        if stored is None:
            raise StorageError(
                f"Record {identity} could not be read back", store=self.get_host_name()
            )
        return self.hydrate(stored)

    async def insert_record(
        self,
        record: Record | Mapping[str, Any],
        inactive_intercepts: Names[str] | None = None,
    ) -> Record | None:
        """Validate and store a new record.

        Returns:
            The stored record, or None if a BEFORE interceptor cancelled

        Raises:
            ValidationError: If any field fails validation
            StorageError: If the backend rejects the write
        """
        if not isinstance(record, Record):
            record = self.create_new_record(record)
        inactive = self._merge_inactive(inactive_intercepts)

        records = await self.intercept(OperationType.CREATE, OperationWhen.BEFORE, [record], inactive)
        if records is None:
            logger.debug("Insert cancelled", extra={"collection": self.get_name()})
            return None

        doc = self._to_document(records[0])
        await self.get_schema().validate(doc, self, self._context)
        identity = await self.get_backend().insert_one(self.get_host_name(), doc)
        saved = await self._read_back(identity)

        logger.debug(
            "Record inserted",
            extra={"collection": self.get_name(), "record_id": identity},
        )
        result = await self.intercept(OperationType.CREATE, OperationWhen.AFTER, [saved], inactive)
        return result[0] if result else saved

    async def update_record(
        self,
        record: Record,
        inactive_intercepts: Names[str] | None = None,
    ) -> Record | None:
        """Validate and write the full current values of a record.

        Returns:
            The stored record, or None if a BEFORE interceptor cancelled

        Raises:
            ValidationError: If any field fails validation
            StorageError: If the record does not exist or the backend rejects the write
        """
        inactive = self._merge_inactive(inactive_intercepts)
        records = await self.intercept(OperationType.UPDATE, OperationWhen.BEFORE, [record], inactive)
        if records is None:
            logger.debug("Update cancelled", extra={"collection": self.get_name()})
            return None

        record = records[0]
        identity = record.get_id()
        if identity is None:
            raise ValidationError(
                f"Validation failed for {self.get_name()}: {ID_FIELD} is a required field",
                collection_name=self.get_name(),
                errors=[f"{ID_FIELD} is a required field"],
            )

        doc = self._to_document(record)
        await self.get_schema().validate(doc, self, self._context)
        values = {k: v for k, v in doc.items() if k != ID_FIELD}
        if not await self.get_backend().update_one(self.get_host_name(), identity, values):
            raise StorageError(
                f"Record {identity} not found", store=self.get_host_name(), code="NOT_FOUND"
            )
        saved = await self._read_back(identity)

        logger.debug(
            "Record updated",
            extra={"collection": self.get_name(), "record_id": identity},
        )
        result = await self.intercept(OperationType.UPDATE, OperationWhen.AFTER, [saved], inactive)
        return result[0] if result else saved

    async def delete_record(
        self,
        record: Record,
        inactive_intercepts: Names[str] | None = None,
    ) -> bool:
        """Delete a record by identity.

        Returns:
            True if a stored record was removed. False if nothing matched the
            identity or a BEFORE interceptor cancelled the delete; a
            cancellation is logged at debug level as "Delete cancelled"
        """
        inactive = self._merge_inactive(inactive_intercepts)
        records = await self.intercept(OperationType.DELETE, OperationWhen.BEFORE, [record], inactive)
        if records is None:
            logger.debug("Delete cancelled", extra={"collection": self.get_name()})
            return False

        identity = records[0].get_id()
        deleted = await self.get_backend().delete_one(self.get_host_name(), identity)
        logger.debug(
            "Record deleted",
            extra={"collection": self.get_name(), "record_id": identity, "deleted": deleted},
        )
        await self.intercept(OperationType.DELETE, OperationWhen.AFTER, records, inactive)
        return deleted

    def __repr__(self) -> str:
        return f"Collection(name={self.get_name()!r}, host={self.get_host_name()!r})"
