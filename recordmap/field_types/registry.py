"""
Field type registry for recordmap.

Maps a type tag to its FieldType implementation. The registry is the single
extension point for field kinds: registering a new FieldType requires no
change to Schema or Record.

Example:
    >>> registry = FieldTypeRegistry.with_builtin_types()
    >>> registry.get_field_type("integer")
    IntegerFieldType(name='integer')
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator

from .base import FieldType
from .types import BUILTIN_FIELD_TYPES

logger = logging.getLogger(__name__)


class FieldTypeRegistry:
    """Registry of field types keyed by type tag."""

    def __init__(self) -> None:
        self._field_types: dict[str, FieldType] = {}
        self._lock = threading.Lock()

    @classmethod
    def with_builtin_types(cls) -> FieldTypeRegistry:
        """Create a registry holding every built-in field type."""
        registry = cls()
        for field_type_cls in BUILTIN_FIELD_TYPES:
            registry.add_field_type(field_type_cls())
        return registry

    def add_field_type(self, field_type: FieldType) -> None:
        """Register a field type, replacing any type with the same tag."""
        with self._lock:
            name = field_type.get_name()
            if name in self._field_types:
                logger.warning(f"Replacing field type '{name}'")
            self._field_types[name] = field_type
            logger.debug(f"Registered field type: {name}")

    def get_field_type(self, name: str) -> FieldType | None:
        """Get field type by tag."""
        return self._field_types.get(name)

    def has_field_type(self, name: str) -> bool:
        return name in self._field_types

    def field_types(self) -> Iterator[FieldType]:
        """Iterate over all field types."""
        yield from self._field_types.values()
