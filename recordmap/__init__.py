"""
recordmap - schema-driven record mapping over substitutable storage backends.

This package provides a single record abstraction over a document store and a
relational store:
- Schemas with inheritance (extends / final) and polymorphic field types
- Validated CRUD through collection handles
- An ordered, abortable operation interceptor pipeline
- Lazy, resource-safe cursors

Example:
    >>> from recordmap import RecordMapper
    >>>
    >>> async with RecordMapper() as mapper:
    ...     employees = await mapper.define_collection({
    ...         "name": "employee",
    ...         "fields": [
    ...             {"name": "name", "type": "string", "unique": True},
    ...             {"name": "salary", "type": "integer", "not_null": True},
    ...         ],
    ...     })
    ...     await employees.create_new_record({"name": "John", "salary": 100}).insert()
    ...     async for record in employees.find().sort("name"):
    ...         print(record.to_json())

Invariants:
    - Validation failures are reported before any storage call
    - Backend constraint errors propagate unchanged
    - Cursors release their backend resource exactly once

Version: 0.1.0
"""

__version__ = "0.1.0"

from .backends import (
    ASCENDING,
    DESCENDING,
    Backend,
    BackendCursor,
    ColumnSpec,
    FindOptions,
    InMemoryBackend,
    SQLiteBackend,
    create_backend,
)
from .collection import Collection, CollectionDefinition
from .config import MapperSettings, setup_logging
from .constants import DISCRIMINATOR_FIELD, ID_FIELD, OperationType, OperationWhen
from .cursor import Cursor
from .datatypes import PrimitiveDataType
from .errors import (
    BackendConnectionError,
    CollectionNotFoundError,
    ConstraintViolationError,
    CursorStateError,
    DefinitionError,
    FieldFailure,
    FieldValueError,
    RecordMapError,
    StorageError,
    UniqueConstraintError,
    UnknownFieldError,
    ValidationError,
)
from .field_types import FieldType, FieldTypeRegistry
from .interceptors import InterceptorService, OperationInterceptor
from .mapper import RecordMapper
from .record import Record
from .schema import CollectionRegistry, Field, FieldDef, Schema

__all__ = [
    # Entry point
    "RecordMapper",
    "MapperSettings",
    "setup_logging",
    # Core
    "Collection",
    "CollectionDefinition",
    "Record",
    "Cursor",
    "Schema",
    "Field",
    "FieldDef",
    "CollectionRegistry",
    "FieldType",
    "FieldTypeRegistry",
    "PrimitiveDataType",
    # Interceptors
    "OperationInterceptor",
    "InterceptorService",
    "OperationType",
    "OperationWhen",
    # Backends
    "Backend",
    "BackendCursor",
    "ColumnSpec",
    "FindOptions",
    "InMemoryBackend",
    "SQLiteBackend",
    "create_backend",
    "ASCENDING",
    "DESCENDING",
    # Constants
    "ID_FIELD",
    "DISCRIMINATOR_FIELD",
    # Errors
    "RecordMapError",
    "DefinitionError",
    "ValidationError",
    "FieldFailure",
    "FieldValueError",
    "UnknownFieldError",
    "CollectionNotFoundError",
    "CursorStateError",
    "StorageError",
    "BackendConnectionError",
    "ConstraintViolationError",
    "UniqueConstraintError",
]
