"""
FieldType contract for recordmap.

A FieldType is a stateless strategy governing one field kind. Schema and
Record never branch on the concrete kind; they call the capabilities below and
let the registered FieldType decide.

Capabilities:
    - validate_definition: Is a field definition valid for this type?
    - validate_value: REQUIRED check plus type-specific value checks
    - validate_storage: Checks that need the backend (uniqueness, references)
    - set_value_intercept: Write-time normalization of scalar values
    - get_value_intercept: Read-time transform of stored values
    - get_display_value: JSON-safe representation for callers

Invariants:
    - Each FieldType owns exactly one PrimitiveDataType
    - validate_value raises FieldValueError, never ValidationError
    - validate_storage only runs once every field passed validate_value
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Mapping

from ..constants import ID_FIELD
from ..datatypes import PrimitiveDataType, to_json_value
from ..errors import FieldFailure, FieldValueError, UniqueConstraintError

if TYPE_CHECKING:
    from ..collection import Collection
    from ..schema.fields import Field, FieldDef
    from ..schema.schema import Schema

logger = logging.getLogger(__name__)


class FieldType(ABC):
    """Base class for all field types.

    Subclasses implement ``get_name`` and usually ``check_value``; the other
    hooks have pass-through defaults.
    """

    def __init__(self, data_type: PrimitiveDataType) -> None:
        self._data_type = data_type

    @abstractmethod
    def get_name(self) -> str:
        """Type tag used in field definitions."""
        ...

    def get_data_type(self) -> PrimitiveDataType:
        return self._data_type

    def validate_definition(self, definition: FieldDef) -> bool:
        """Return True if the definition is valid for this type."""
        return bool(definition.name)

    def check_value(self, field: Field, value: Any) -> None:
        """Type-specific checks for a non-None value.

        Raises:
            FieldValueError: NOT_VALID_TYPE or NOT_VALID_VALUE
        """

    async def validate_value(
        self,
        schema: Schema,
        field: Field,
        record: Mapping[str, Any],
        context: Any = None,
    ) -> None:
        """Validate the value held by ``record`` for ``field``.

        Raises:
            FieldValueError: REQUIRED, NOT_VALID_TYPE or NOT_VALID_VALUE
        """
        value = record.get(field.name)
        if value is None:
            required_validation(field)
            return
        self.check_value(field, value)

    async def validate_storage(
        self,
        schema: Schema,
        field: Field,
        record: Mapping[str, Any],
        collection: Collection,
        context: Any = None,
    ) -> None:
        """Checks that need a storage round-trip.

        Raises:
            FieldValueError: NOT_VALID_VALUE
            UniqueConstraintError: If a unique value is already taken
        """
        if field.unique and collection.check_unique_before_write:
            await unique_validation(collection, field, record)

    def set_value_intercept(
        self,
        schema: Schema,
        field: Field,
        value: Any,
        record: Mapping[str, Any],
        context: Any = None,
    ) -> Any:
        """Normalize a scalar value before it reaches storage."""
        return value

    def get_value_intercept(
        self,
        schema: Schema,
        field: Field,
        record: Mapping[str, Any],
        context: Any = None,
    ) -> Any:
        """Transform a stored value when a record is hydrated."""
        return record.get(field.name)

    async def get_display_value(
        self,
        schema: Schema,
        field: Field,
        record: Mapping[str, Any],
        context: Any = None,
    ) -> Any:
        """JSON-safe value for display."""
        return to_json_value(record.get(field.name))

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.get_name()!r})"


def required_validation(field: Field) -> None:
    """Raise REQUIRED if a missing value is not covered by a default."""
    if field.required and field.default is None:
        raise FieldValueError(FieldFailure.REQUIRED)


async def unique_validation(
    collection: Collection,
    field: Field,
    record: Mapping[str, Any],
) -> None:
    """Best-effort uniqueness pre-check against the host store.

    Not atomic with the following write; the backend constraint remains
    authoritative and raises the same UniqueConstraintError.
    """
    value = record.get(field.name)
    if value is None:
        return
    existing = await collection.find_raw({field.name: value})
    if existing is not None and existing.get(ID_FIELD) != record.get(ID_FIELD):
        logger.debug(
            "Unique pre-check failed",
            extra={"collection": collection.get_name(), "field": field.name},
        )
        raise UniqueConstraintError(collection.get_host_name(), field.name, value)
