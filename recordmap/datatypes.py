"""
Primitive data types owned by field types.

Each FieldType owns exactly one PrimitiveDataType. Backends use the primitive
type to pick a storage representation (column affinity, JSON encoding) without
knowing anything about the field type itself.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID


class PrimitiveDataType(Enum):
    """Underlying value kinds understood by every backend."""

    UUID = "uuid"
    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    DATETIME = "datetime"
    JSON = "json"

    @classmethod
    def from_str(cls, value: str) -> PrimitiveDataType:
        """Convert string to PrimitiveDataType."""
        for kind in cls:
            if kind.value == value:
                return kind
        raise ValueError(f"Invalid data type: {value}")


def to_json_value(value: Any) -> Any:
    """Convert a stored Python value into a JSON-safe value.

    Dates become ISO-8601 strings and UUIDs become their canonical string.
    Containers are converted recursively.
    """
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, dict):
        return {k: to_json_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json_value(v) for v in value]
    return value


def is_scalar(value: Any) -> bool:
    """True for values that write-time intercepts apply to (not containers)."""
    return not isinstance(value, (dict, list, tuple, set))
