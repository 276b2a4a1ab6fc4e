"""
Field types for recordmap.

This package provides the polymorphic field-type layer:
- FieldType: The strategy contract every field kind implements
- Built-in types (id, string, enum, integer, number, boolean, date,
  datetime, json, reference)
- FieldTypeRegistry: Lookup by type tag
"""

from .base import FieldType, required_validation, unique_validation
from .registry import FieldTypeRegistry
from .types import (
    BUILTIN_FIELD_TYPES,
    BooleanFieldType,
    DateFieldType,
    DateTimeFieldType,
    EnumFieldType,
    IdFieldType,
    IntegerFieldType,
    JsonFieldType,
    NumberFieldType,
    ReferenceFieldType,
    StringFieldType,
    normalize_identifier,
)

__all__ = [
    "FieldType",
    "FieldTypeRegistry",
    "required_validation",
    "unique_validation",
    "normalize_identifier",
    "BUILTIN_FIELD_TYPES",
    "IdFieldType",
    "StringFieldType",
    "EnumFieldType",
    "IntegerFieldType",
    "NumberFieldType",
    "BooleanFieldType",
    "DateFieldType",
    "DateTimeFieldType",
    "JsonFieldType",
    "ReferenceFieldType",
]
