"""
Error types for recordmap.

This module defines all exception types raised by the mapping layer:
- RecordMapError: Base exception
- DefinitionError: Malformed schema or illegal inheritance
- ValidationError: Aggregate of per-field validation failures
- UnknownFieldError: Unknown field set on a record
- StorageError: Failures surfaced from a backend

Invariants:
    - All errors inherit from RecordMapError
    - DefinitionError is raised at registration time only
    - ValidationError carries every field message, never a partial list
    - StorageError subclasses are raised by backends and propagated unchanged
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional


class RecordMapError(Exception):
    """Base exception for all recordmap errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "RECORDMAP_ERROR"
        self.details = details or {}


class DefinitionError(RecordMapError):
    """Schema definition is invalid.

    Raised when:
    - Collection name is missing, not a string or not alphanumeric
    - Collection name is already registered
    - The extended schema does not exist or is final
    - A field type is unknown or a field definition is invalid
    - Field names collide in the merged field list
    - The inheritance chain contains a cycle
    """

    def __init__(
        self,
        message: str,
        collection_name: Optional[str] = None,
        field_name: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="DEFINITION_ERROR",
            details={"collection": collection_name, "field": field_name},
        )
        self.collection_name = collection_name
        self.field_name = field_name


class FieldFailure(Enum):
    """Failure classes a field type can report for a value."""

    REQUIRED = "REQUIRED"
    NOT_VALID_TYPE = "NOT_VALID_TYPE"
    NOT_VALID_VALUE = "NOT_VALID_VALUE"


class FieldValueError(Exception):
    """Raised by a field type when a single value fails validation.

    Collected by Schema.validate and turned into a ValidationError.
    """

    def __init__(self, failure: FieldFailure, detail: str = "") -> None:
        super().__init__(detail or failure.value)
        self.failure = failure
        self.detail = detail


class ValidationError(RecordMapError):
    """Record validation failed.

    Raised when:
    - Required field is missing and has no default
    - Field value has wrong type
    - Field value is outside the allowed values
    """

    def __init__(
        self,
        message: str,
        collection_name: Optional[str] = None,
        errors: Optional[List[str]] = None,
        field_errors: Optional[Dict[str, FieldFailure]] = None,
    ) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={
                "collection": collection_name,
                "errors": errors or [],
                "fields": {k: v.value for k, v in (field_errors or {}).items()},
            },
        )
        self.collection_name = collection_name
        self.errors = errors or []
        self.field_errors = field_errors or {}


class UnknownFieldError(RecordMapError):
    """Unknown field set on a record.

    Includes suggestions for similar field names.

    Attributes:
        field_name: The unknown field
        collection_name: The collection the record belongs to
        suggestions: Similar field names
    """

    def __init__(
        self,
        field_name: str,
        collection_name: str,
        suggestions: Optional[List[str]] = None,
    ) -> None:
        suggestions = suggestions or []
        msg = f"Unknown field '{field_name}' in collection '{collection_name}'"
        if suggestions:
            msg += f". Did you mean: {', '.join(suggestions)}?"

        super().__init__(
            msg,
            code="UNKNOWN_FIELD",
            details={
                "field_name": field_name,
                "collection_name": collection_name,
                "suggestions": suggestions,
            },
        )
        self.field_name = field_name
        self.collection_name = collection_name
        self.suggestions = suggestions


class CollectionNotFoundError(RecordMapError):
    """No collection is registered under the requested name."""

    def __init__(self, collection_name: str) -> None:
        super().__init__(
            f"Collection not found: {collection_name}",
            code="NOT_FOUND",
            details={"collection": collection_name},
        )
        self.collection_name = collection_name


class CursorStateError(RecordMapError):
    """Cursor was modified after iteration started."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="CURSOR_STATE")


class StorageError(RecordMapError):
    """Failure reported by a storage backend.

    Propagated to the caller unchanged; never retried by this layer.
    """

    def __init__(
        self,
        message: str,
        store: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        merged = {"store": store}
        merged.update(details or {})
        super().__init__(message, code=code or "STORAGE_ERROR", details=merged)
        self.store = store


class BackendConnectionError(StorageError):
    """Backend is not connected or the connection failed."""

    def __init__(self, message: str, store: Optional[str] = None) -> None:
        super().__init__(message, store=store, code="CONNECTION_ERROR")


class ConstraintViolationError(StorageError):
    """A storage-level constraint rejected the write."""

    def __init__(
        self,
        message: str,
        store: Optional[str] = None,
        field_name: Optional[str] = None,
        code: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            store=store,
            code=code or "CONSTRAINT_VIOLATION",
            details={"field": field_name},
        )
        self.field_name = field_name


class UniqueConstraintError(ConstraintViolationError):
    """A value already exists for a unique field.

    Raised by backends on constraint violation and by the optional
    uniqueness pre-check; callers handle both the same way.
    """

    def __init__(self, store: str, field_name: str, value: Any = None) -> None:
        super().__init__(
            f"Duplicate value for unique field '{field_name}' in '{store}'",
            store=store,
            field_name=field_name,
            code="UNIQUE_VIOLATION",
        )
        self.value = value
