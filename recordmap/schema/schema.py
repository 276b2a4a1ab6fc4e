"""
Schema definition and resolution for recordmap.

A Schema describes one entity: its name, an optional parent it extends, a
finality flag and an ordered list of fields. Schemas are validated when they
are constructed; an invalid definition never reaches the registry.

Invariants:
    - get_fields() is own fields, then ancestor fields, then the identity
      field, which is injected once at the root
    - No field name appears twice in the merged list
    - A final schema cannot be extended
    - The inheritance chain is acyclic; traversal fails fast on a cycle

Example:
    >>> schema = Schema(
    ...     {"name": "employee", "fields": [{"name": "salary", "type": "integer"}]},
    ...     field_types,
    ...     collections,
    ... )
    >>> [f.name for f in schema.get_fields()]
    ['salary', '_id']
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from typing import TYPE_CHECKING, Any, Mapping

from ..constants import DISCRIMINATOR_FIELD, ID_FIELD
from ..errors import DefinitionError, FieldFailure, FieldValueError, ValidationError
from .fields import Field, FieldDef

if TYPE_CHECKING:
    from ..collection import Collection
    from ..field_types.registry import FieldTypeRegistry
    from .registry import CollectionRegistry

logger = logging.getLogger(__name__)

_NAME_PATTERN = re.compile(r"^[a-z0-9_]+$", re.IGNORECASE)


def _definition_error(
    message: str,
    collection_name: str | None = None,
    field_name: str | None = None,
) -> DefinitionError:
    return DefinitionError(f"[Schema] {message}", collection_name, field_name)


class Schema:
    """Validated schema bound to the registries it resolves against."""

    def __init__(
        self,
        definition: Mapping[str, Any],
        field_type_registry: FieldTypeRegistry,
        collection_registry: CollectionRegistry,
    ) -> None:
        self._field_type_registry = field_type_registry
        self._collection_registry = collection_registry
        self._definition = definition
        self._fields: tuple[Field, ...] = ()
        self._identity_field: Field | None = None
        self._validate_definition()

    def get_name(self) -> str:
        return self._definition["name"]

    def get_extends(self) -> str | None:
        return self._definition.get("extends") or None

    def is_final(self) -> bool:
        return bool(self._definition.get("final"))

    def get_collection_registry(self) -> CollectionRegistry:
        return self._collection_registry

    def get_parent(self) -> Schema | None:
        """Schema this one extends, or None for a root schema."""
        extends = self.get_extends()
        if not extends:
            return None
        parent = self._collection_registry.get_collection(extends)
        if parent is None:
            raise _definition_error(
                f"'{self.get_name()}' extends '{extends}' which is not registered",
                self.get_name(),
            )
        return parent.get_schema()

    def get_host_name(self) -> str:
        """Name of the root schema, which owns the physical store."""
        visited: set[str] = set()
        schema: Schema = self
        while True:
            name = schema.get_name()
            if name in visited:
                raise _definition_error(f"Inheritance cycle detected at '{name}'", name)
            visited.add(name)
            parent = schema.get_parent()
            if parent is None:
                return name
            schema = parent

    def get_own_fields(self) -> list[Field]:
        return list(self._fields)

    def get_fields(self) -> list[Field]:
        """Merged field list: own, then ancestors, then the identity field."""
        return self._collect_fields(set())

    def _collect_fields(self, visited: set[str]) -> list[Field]:
        name = self.get_name()
        if name in visited:
            raise _definition_error(f"Inheritance cycle detected at '{name}'", name)
        visited.add(name)

        fields = list(self._fields)
        parent = self.get_parent()
        if parent is None:
            fields.append(self._identity_field)
        else:
            fields.extend(parent._collect_fields(visited))
        return fields

    def get_field(self, name: str) -> Field | None:
        for f in self.get_fields():
            if f.name == name:
                return f
        return None

    def get_field_names(self) -> list[str]:
        return [f.name for f in self.get_fields()]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary (own fields only)."""
        result: dict[str, Any] = {"name": self.get_name()}
        if self.get_extends():
            result["extends"] = self.get_extends()
        if self.is_final():
            result["final"] = True
        result["fields"] = [f.get_definition().to_dict() for f in self._fields]
        return result

    async def validate(
        self,
        record: Mapping[str, Any],
        collection: Collection | None = None,
        context: Any = None,
    ) -> None:
        """Validate a raw record against the merged field list.

        Every field is checked and all failures are reported together.
        Storage-backed checks (references, uniqueness) run only when a
        collection is given and every field passed its own checks.

        Raises:
            ValidationError: If any field fails
            UniqueConstraintError: If a unique value is already taken
        """
        fields = [f for f in self.get_fields() if f.name != ID_FIELD]
        errors: list[str] = []
        field_errors: dict[str, FieldFailure] = {}

        for f in fields:
            try:
                await f.get_field_type().validate_value(self, f, record, context)
            except FieldValueError as e:
                errors.append(_error_message(f, e))
                field_errors[f.name] = e.failure

        if not errors and collection is not None:
            for f in fields:
                try:
                    await f.get_field_type().validate_storage(self, f, record, collection, context)
                except FieldValueError as e:
                    errors.append(_error_message(f, e))
                    field_errors[f.name] = e.failure

        if errors:
            logger.debug(
                "Record validation failed",
                extra={"collection": self.get_name(), "errors": errors},
            )
            raise ValidationError(
                f"Validation failed for {self.get_name()}: {'; '.join(errors)}",
                collection_name=self.get_name(),
                errors=errors,
                field_errors=field_errors,
            )

    def _validate_definition(self) -> None:
        definition = self._definition
        if not isinstance(definition, Mapping):
            raise _definition_error("Schema not provided")

        name = definition.get("name")
        if not name:
            raise _definition_error("Collection name not provided")
        if not isinstance(name, str):
            raise _definition_error(f"Collection name should be a string - [collectionName={name}]")
        if not _NAME_PATTERN.match(name):
            raise _definition_error(
                f"Collection name should be alphanumeric - [collectionName={name}]", name
            )
        if self._collection_registry.has_collection(name):
            raise _definition_error(f"Collection name already exists - [collectionName={name}]", name)

        extends = definition.get("extends")
        if extends:
            if not isinstance(extends, str):
                raise _definition_error(f"'{name}' extends should be a collection name", name)
            parent = self._collection_registry.get_collection(extends)
            if parent is None:
                raise _definition_error(
                    f"'{name}' cannot extend '{extends}'. '{extends}' does not exist.", name
                )
            if parent.get_schema().is_final():
                raise _definition_error(
                    f"'{name}' cannot extend '{extends}'. '{extends}' is final schema.", name
                )

        raw_fields = definition.get("fields") or []
        if not isinstance(raw_fields, (list, tuple)):
            raise _definition_error(f"fields should be a list - [collectionName={name}]", name)

        fields = [self._build_field(name, raw) for raw in raw_fields]

        id_type = self._field_type_registry.get_field_type("id")
        if id_type is None:
            raise _definition_error("No such field type 'id' for the identity field", name, ID_FIELD)

        self._fields = tuple(fields)
        self._identity_field = Field(FieldDef(name=ID_FIELD, type="id"), id_type)

        field_names = self.get_field_names()
        duplicates = sorted(n for n, count in Counter(field_names).items() if count > 1)
        if duplicates:
            raise _definition_error(
                f"Duplicate field name [collectionName={name}, fieldNames={duplicates}]",
                name,
                duplicates[0],
            )

    def _build_field(self, collection_name: str, raw: Any) -> Field:
        if not isinstance(raw, Mapping) or not raw.get("type"):
            raise _definition_error(
                f"Field type not provided - [collectionName={collection_name}]", collection_name
            )
        field_name = raw.get("name")
        if not isinstance(field_name, str) or not _NAME_PATTERN.match(field_name):
            raise _definition_error(
                f"Invalid field name - [collectionName={collection_name}, fieldName={field_name}]",
                collection_name,
                field_name if isinstance(field_name, str) else None,
            )
        if field_name == DISCRIMINATOR_FIELD:
            raise _definition_error(
                f"Field name '{field_name}' is reserved - [collectionName={collection_name}]",
                collection_name,
                field_name,
            )
        field_type = self._field_type_registry.get_field_type(raw["type"])
        if field_type is None:
            raise _definition_error(
                f"No such field type - [collectionName={collection_name}, "
                f"fieldName={field_name}, fieldType={raw['type']}]",
                collection_name,
                field_name,
            )
        definition = FieldDef.from_dict(raw)
        if not field_type.validate_definition(definition):
            raise _definition_error(
                f"Invalid field definition - [collectionName={collection_name}, fieldName={field_name}]",
                collection_name,
                field_name,
            )
        return Field(definition, field_type)

    def __repr__(self) -> str:
        return f"Schema(name={self.get_name()!r}, extends={self.get_extends()!r})"


def _error_message(field: Field, error: FieldValueError) -> str:
    if error.failure is FieldFailure.REQUIRED:
        return f"{field.name} is a required field"
    if error.failure is FieldFailure.NOT_VALID_TYPE:
        return f"{field.name} should be a {field.type}"
    message = f"{field.name} should be a valid {field.type}"
    if error.detail:
        message += f" ({error.detail})"
    return message
