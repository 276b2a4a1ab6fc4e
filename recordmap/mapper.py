"""
RecordMapper: entry point of recordmap.

The mapper owns the storage backend, the field type registry, the collection
registry and the interceptor service, and injects them into every collection
handle it creates.

Invariants:
    - One interceptor service per mapper, shared by all of its handles
    - define_collection registers nothing when the schema is invalid or the
      backend cannot prepare the store
    - A collection other collections extend cannot be dropped

Example:
    >>> async with RecordMapper(MapperSettings(backend="sqlite", sqlite_path="app.db")) as mapper:
    ...     employees = await mapper.define_collection({
    ...         "name": "employee",
    ...         "fields": [{"name": "name", "type": "string", "unique": True}],
    ...     })
    ...     await employees.create_new_record({"name": "John"}).insert()
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from .backends.base import Backend, ColumnSpec, create_backend
from .collection import Collection, CollectionDefinition
from .config import MapperSettings
from .constants import DISCRIMINATOR_FIELD, ID_FIELD
from .errors import CollectionNotFoundError, DefinitionError
from .field_types.base import FieldType
from .field_types.registry import FieldTypeRegistry
from .interceptors import InterceptorService, OperationInterceptor
from .schema.registry import CollectionRegistry
from .schema.schema import Schema

logger = logging.getLogger(__name__)


class RecordMapper:
    """Connection object binding schemas to a storage backend.

    Example:
        >>> mapper = RecordMapper()
        >>> await mapper.connect()
        >>> employees = await mapper.define_collection({"name": "employee", "fields": []})
        >>> await mapper.close()
    """

    def __init__(
        self,
        settings: MapperSettings | None = None,
        backend: Backend | None = None,
    ) -> None:
        self.settings = settings or MapperSettings()
        self._backend = backend if backend is not None else create_backend(self.settings)
        self._field_types = FieldTypeRegistry.with_builtin_types()
        self._collections = CollectionRegistry()
        self._interceptors = InterceptorService()

    @property
    def backend(self) -> Backend:
        return self._backend

    @property
    def field_types(self) -> FieldTypeRegistry:
        return self._field_types

    @property
    def collections(self) -> CollectionRegistry:
        return self._collections

    @property
    def interceptors(self) -> InterceptorService:
        return self._interceptors

    async def connect(self) -> None:
        if not self._backend.is_connected:
            await self._backend.connect()
        logger.info(f"RecordMapper connected ({type(self._backend).__name__})")

    async def close(self) -> None:
        await self._backend.close()
        logger.info("RecordMapper closed")

    async def __aenter__(self) -> RecordMapper:
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.close()

    async def define_collection(self, definition: Mapping[str, Any]) -> Collection:
        """Validate a schema, prepare its store and register the collection.

        Args:
            definition: Schema definition with name, fields and optional
                extends and final

        Returns:
            The registered collection handle

        Raises:
            DefinitionError: If the definition is invalid or the name is taken
            StorageError: If the backend cannot prepare the store
        """
        schema = Schema(definition, self._field_types, self._collections)
        columns = [
            ColumnSpec(f.name, f.get_field_type().get_data_type(), f.unique)
            for f in schema.get_fields()
            if f.name != ID_FIELD
        ]
        await self._backend.ensure_store(schema.get_host_name(), columns)

        collection = Collection(
            CollectionDefinition(
                schema=schema,
                backend=self._backend,
                interceptors=self._interceptors,
                registry=self._collections,
                settings=self.settings,
            )
        )
        self._collections.add_collection(collection)

        logger.info(
            f"Defined collection: {schema.get_name()}",
            extra={
                "collection": schema.get_name(),
                "host": schema.get_host_name(),
                "fields": len(columns),
            },
        )
        return collection

    def collection(self, name: str, context: Any = None) -> Collection:
        """Get a collection handle.

        Raises:
            CollectionNotFoundError: If no collection has this name
        """
        collection = self._collections.get_collection(name)
        if collection is None:
            raise CollectionNotFoundError(name)
        if context is not None:
            return collection.with_context(context)
        return collection

    def has_collection(self, name: str) -> bool:
        return self._collections.has_collection(name)

    async def drop_collection(self, name: str) -> None:
        """Unregister a collection and remove its records.

        A root collection drops its whole store; an extending collection
        deletes only the records carrying its discriminator.

        Raises:
            CollectionNotFoundError: If no collection has this name
            DefinitionError: If another collection extends it
        """
        collection = self.collection(name)
        subtypes = self._collections.get_subtypes(name)
        if subtypes:
            raise DefinitionError(
                f"[Schema] Cannot drop '{name}'. It is extended by "
                f"{', '.join(s.get_name() for s in subtypes)}.",
                name,
            )

        host = collection.get_host_name()
        if collection.get_schema().get_extends() is None:
            await self._backend.drop_store(host)
        else:
            cursor = await self._backend.find(host, {DISCRIMINATOR_FIELD: name})
            try:
                identities = []
                while True:
                    batch = await cursor.read(self.settings.cursor_batch_size)
                    if not batch:
                        break
                    identities.extend(doc[ID_FIELD] for doc in batch)
            finally:
                await cursor.release()
            for identity in identities:
                await self._backend.delete_one(host, identity)

        self._collections.remove_collection(name)
        logger.info(f"Dropped collection: {name}", extra={"collection": name, "host": host})

    def add_interceptor(self, interceptor: OperationInterceptor) -> None:
        self._interceptors.add_interceptor(interceptor)

    def delete_interceptor(self, name: str) -> bool:
        return self._interceptors.delete_interceptor(name)

    def get_interceptor(self, name: str) -> OperationInterceptor | None:
        return self._interceptors.get_interceptor(name)

    def clear_interceptors(self) -> None:
        self._interceptors.clear()

    def add_field_type(self, field_type: FieldType) -> None:
        """Register a custom field type; replaces a built-in with the same name."""
        self._field_types.add_field_type(field_type)

    def generate_record_id(self) -> Any:
        """New identity value from the registered ``id`` field type."""
        return self._field_types.get_field_type("id").generate()
