"""
Record: a schema-bound value holder for one entity instance.

A Record is either new (built by Collection.create_new_record) or loaded
(hydrated from a stored document). Values are changed through ``set``, which
runs the field type's write-time intercept and tracks modified fields.

Invariants:
    - Only fields of the resolved schema can be set
    - Hydration keeps schema fields and the discriminator, nothing else
    - The collection is a non-owning back-reference; persistence goes
      through it

Example:
    >>> record = employees.create_new_record()
    >>> record.set("name", "John").set("salary", 100)
    >>> saved = await record.insert()
"""

from __future__ import annotations

import copy
import json
import logging
from difflib import get_close_matches
from typing import TYPE_CHECKING, Any, Mapping

from .constants import DISCRIMINATOR_FIELD, ID_FIELD
from .datatypes import is_scalar, to_json_value
from .errors import UnknownFieldError

if TYPE_CHECKING:
    from collections.abc import Collection as Names

    from .collection import Collection

logger = logging.getLogger(__name__)


class Record:
    """One entity instance bound to a collection handle."""

    def __init__(self, collection: Collection, raw: Mapping[str, Any] | None = None) -> None:
        self._collection = collection
        self._schema = collection.get_schema()
        self._values: dict[str, Any] = {}
        self._modified: set[str] = set()
        self._new = raw is None
        if raw is not None:
            self._hydrate(raw)

    def _hydrate(self, raw: Mapping[str, Any]) -> None:
        context = self._collection.get_context()
        values: dict[str, Any] = {}
        for f in self._schema.get_fields():
            if f.name in raw:
                values[f.name] = f.get_field_type().get_value_intercept(
                    self._schema, f, raw, context
                )
        if raw.get(DISCRIMINATOR_FIELD) is not None:
            values[DISCRIMINATOR_FIELD] = raw[DISCRIMINATOR_FIELD]
        self._values = values
        self._modified.clear()

    def _load(self, other: Record) -> None:
        self._values = other.to_object()
        self._modified.clear()
        self._new = False

    def initialize(self) -> Record:
        """Assign a fresh identity and apply field defaults."""
        id_field = self._schema.get_field(ID_FIELD)
        self._values[ID_FIELD] = id_field.get_field_type().generate()
        for f in self._schema.get_fields():
            if f.default is not None and self._values.get(f.name) is None:
                self._values[f.name] = copy.deepcopy(f.default)
        return self

    def get_collection(self) -> Collection:
        return self._collection

    def get_collection_name(self) -> str:
        return self._collection.get_name()

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def set(self, key: str, value: Any) -> Record:
        """Set a field value.

        Scalar values pass through the field type's write-time intercept.

        Raises:
            UnknownFieldError: If the schema has no such field
        """
        f = self._schema.get_field(key)
        if f is None:
            names = self._schema.get_field_names()
            raise UnknownFieldError(
                key,
                self._collection.get_name(),
                suggestions=get_close_matches(key, names, n=3),
            )
        if value is not None and is_scalar(value):
            value = f.get_field_type().set_value_intercept(
                self._schema, f, value, self._values, self._collection.get_context()
            )
        self._values[key] = value
        self._modified.add(key)
        return self

    def update_values(self, values: Mapping[str, Any]) -> Record:
        """Set several fields at once."""
        for key, value in values.items():
            self.set(key, value)
        return self

    def get_id(self) -> Any:
        return self._values.get(ID_FIELD)

    def is_new(self) -> bool:
        return self._new

    def is_modified(self) -> bool:
        return bool(self._modified)

    def get_modified_fields(self) -> list[str]:
        return sorted(self._modified)

    def to_object(self) -> dict[str, Any]:
        """Deep copy of the raw values."""
        return copy.deepcopy(self._values)

    def to_json(self) -> str:
        return json.dumps(to_json_value(self._values))

    async def get_display_value(self, key: str | None = None) -> Any:
        """JSON-safe display value of one field, or of every field when no key is given."""
        context = self._collection.get_context()
        if key is not None:
            f = self._schema.get_field(key)
            if f is None:
                return to_json_value(self._values.get(key))
            return await f.get_field_type().get_display_value(
                self._schema, f, self._values, context
            )

        result: dict[str, Any] = {}
        for f in self._schema.get_fields():
            if f.name in self._values:
                result[f.name] = await f.get_field_type().get_display_value(
                    self._schema, f, self._values, context
                )
        return result

    async def insert(self, inactive_intercepts: Names[str] | None = None) -> Record | None:
        """Persist this new record.

        Returns:
            The stored record, or None if an interceptor cancelled the insert
        """
        result = await self._collection.insert_record(self, inactive_intercepts=inactive_intercepts)
        if result is not None:
            self._load(result)
        return result

    async def update(self, inactive_intercepts: Names[str] | None = None) -> Record | None:
        """Write the full current values of this record.

        Returns:
            The stored record, or None if an interceptor cancelled the update
        """
        result = await self._collection.update_record(self, inactive_intercepts=inactive_intercepts)
        if result is not None:
            self._load(result)
        return result

    async def delete(self, inactive_intercepts: Names[str] | None = None) -> bool:
        return await self._collection.delete_record(self, inactive_intercepts=inactive_intercepts)

    def __repr__(self) -> str:
        return f"Record(collection={self._collection.get_name()!r}, id={self.get_id()!r})"
