"""
Field definitions for recordmap schemas.

A FieldDef is the parsed, immutable form of one entry in a schema's
``fields`` list. A Field binds a FieldDef to the FieldType that governs it.

Example:
    >>> salary = FieldDef.from_dict({"name": "salary", "type": "integer", "not_null": True})
    >>> salary.required
    True
"""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field as dataclass_field
from typing import TYPE_CHECKING, Any, Mapping

if TYPE_CHECKING:
    from ..field_types.base import FieldType

# Keys with a meaning shared by every field type
_COMMON_KEYS = frozenset({"name", "type", "required", "not_null", "unique", "default"})


@dataclass(frozen=True)
class FieldDef:
    """Field definition within a schema.

    Attributes:
        name: Field name, unique across the merged field list
        type: Field type tag, resolved through the FieldTypeRegistry
        required: Whether a value (or default) must be present
        unique: Whether the backend enforces uniqueness
        default: Default value applied to new records
        options: Type-specific options (max_length, values, references, ...)
    """

    name: str
    type: str
    required: bool = False
    unique: bool = False
    default: Any = None
    options: Mapping[str, Any] = dataclass_field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FieldDef:
        """Create from a raw field definition.

        ``not_null`` is accepted as an alias of ``required``.
        """
        return cls(
            name=data.get("name"),
            type=data.get("type"),
            required=bool(data.get("required") or data.get("not_null")),
            unique=bool(data.get("unique")),
            default=data.get("default"),
            options={k: v for k, v in data.items() if k not in _COMMON_KEYS},
        )

    def option(self, key: str, default: Any = None) -> Any:
        """Get a type-specific option."""
        return self.options.get(key, default)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        result: dict[str, Any] = {"name": self.name, "type": self.type}
        if self.required:
            result["required"] = True
        if self.unique:
            result["unique"] = True
        if self.default is not None:
            result["default"] = self.default
        result.update(self.options)
        return result


class Field:
    """A field definition bound to its FieldType."""

    def __init__(self, definition: FieldDef, field_type: FieldType) -> None:
        self._definition = definition
        self._field_type = field_type

    @property
    def name(self) -> str:
        return self._definition.name

    @property
    def type(self) -> str:
        return self._definition.type

    @property
    def required(self) -> bool:
        return self._definition.required

    @property
    def unique(self) -> bool:
        return self._definition.unique

    @property
    def default(self) -> Any:
        return self._definition.default

    def get_definition(self) -> FieldDef:
        return self._definition

    def get_field_type(self) -> FieldType:
        return self._field_type

    def option(self, key: str, default: Any = None) -> Any:
        return self._definition.option(key, default)

    def __repr__(self) -> str:
        return f"Field(name={self.name!r}, type={self.type!r})"
