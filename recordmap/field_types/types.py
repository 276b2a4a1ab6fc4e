"""
Built-in field types.

    id          identity values (UUID), canonical string form
    string      text, optional max_length
    enum        text restricted to ``values``
    integer     int, optional minimum/maximum
    number      int or float, optional minimum/maximum
    boolean     bool
    date        datetime.date, ISO strings accepted
    datetime    datetime.datetime, ISO strings accepted
    json        dict or list, JSON-serializable
    reference   identity of a record in the ``references`` collection
"""

from __future__ import annotations

import json
import uuid
from datetime import date, datetime
from typing import TYPE_CHECKING, Any, Mapping

from ..constants import ID_FIELD
from ..datatypes import PrimitiveDataType
from ..errors import FieldFailure, FieldValueError
from .base import FieldType

if TYPE_CHECKING:
    from ..collection import Collection
    from ..schema.fields import Field, FieldDef
    from ..schema.schema import Schema


def normalize_identifier(value: Any) -> Any:
    """Convert a loosely-typed identifier into the canonical key string.

    Values that do not parse as a UUID are returned unchanged so that
    validation can report them.
    """
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, str):
        try:
            return str(uuid.UUID(value))
        except ValueError:
            return value
    return value


def _check_identifier(value: Any) -> None:
    if not isinstance(value, (str, uuid.UUID)):
        raise FieldValueError(FieldFailure.NOT_VALID_TYPE)
    if isinstance(value, str):
        try:
            uuid.UUID(value)
        except ValueError:
            raise FieldValueError(FieldFailure.NOT_VALID_VALUE, "not a valid identifier")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _valid_bounds(definition: FieldDef) -> bool:
    for key in ("minimum", "maximum"):
        bound = definition.option(key)
        if bound is not None and not _is_number(bound):
            return False
    minimum = definition.option("minimum")
    maximum = definition.option("maximum")
    if minimum is not None and maximum is not None and minimum > maximum:
        return False
    return True


def _check_bounds(field: Field, value: Any) -> None:
    minimum = field.option("minimum")
    maximum = field.option("maximum")
    if minimum is not None and value < minimum:
        raise FieldValueError(FieldFailure.NOT_VALID_VALUE, f"must be >= {minimum}")
    if maximum is not None and value > maximum:
        raise FieldValueError(FieldFailure.NOT_VALID_VALUE, f"must be <= {maximum}")


class IdFieldType(FieldType):
    """Identity field. Backends key documents and rows by this value."""

    def __init__(self) -> None:
        super().__init__(PrimitiveDataType.UUID)

    def get_name(self) -> str:
        return "id"

    def generate(self) -> str:
        """Generate a new identity value."""
        return str(uuid.uuid4())

    def check_value(self, field: Field, value: Any) -> None:
        _check_identifier(value)

    def set_value_intercept(
        self,
        schema: Schema,
        field: Field,
        value: Any,
        record: Mapping[str, Any],
        context: Any = None,
    ) -> Any:
        return normalize_identifier(value)


class StringFieldType(FieldType):
    def __init__(self) -> None:
        super().__init__(PrimitiveDataType.STRING)

    def get_name(self) -> str:
        return "string"

    def validate_definition(self, definition: FieldDef) -> bool:
        max_length = definition.option("max_length")
        if max_length is not None:
            if not isinstance(max_length, int) or isinstance(max_length, bool) or max_length <= 0:
                return False
        return super().validate_definition(definition)

    def check_value(self, field: Field, value: Any) -> None:
        if not isinstance(value, str):
            raise FieldValueError(FieldFailure.NOT_VALID_TYPE)
        max_length = field.option("max_length")
        if max_length is not None and len(value) > max_length:
            raise FieldValueError(
                FieldFailure.NOT_VALID_VALUE, f"longer than {max_length} characters"
            )


class EnumFieldType(FieldType):
    """String restricted to the ``values`` listed in the definition."""

    def __init__(self) -> None:
        super().__init__(PrimitiveDataType.STRING)

    def get_name(self) -> str:
        return "enum"

    def validate_definition(self, definition: FieldDef) -> bool:
        values = definition.option("values")
        if not isinstance(values, (list, tuple)) or not values:
            return False
        if not all(isinstance(v, str) for v in values):
            return False
        return super().validate_definition(definition)

    def check_value(self, field: Field, value: Any) -> None:
        if not isinstance(value, str):
            raise FieldValueError(FieldFailure.NOT_VALID_TYPE)
        values = field.option("values")
        if value not in values:
            raise FieldValueError(FieldFailure.NOT_VALID_VALUE, f"must be one of {list(values)}")


class IntegerFieldType(FieldType):
    def __init__(self) -> None:
        super().__init__(PrimitiveDataType.INTEGER)

    def get_name(self) -> str:
        return "integer"

    def validate_definition(self, definition: FieldDef) -> bool:
        return _valid_bounds(definition) and super().validate_definition(definition)

    def check_value(self, field: Field, value: Any) -> None:
        if not isinstance(value, int) or isinstance(value, bool):
            raise FieldValueError(FieldFailure.NOT_VALID_TYPE)
        _check_bounds(field, value)

    def set_value_intercept(
        self,
        schema: Schema,
        field: Field,
        value: Any,
        record: Mapping[str, Any],
        context: Any = None,
    ) -> Any:
        if isinstance(value, str):
            try:
                return int(value.strip())
            except ValueError:
                return value
        return value


class NumberFieldType(FieldType):
    def __init__(self) -> None:
        super().__init__(PrimitiveDataType.NUMBER)

    def get_name(self) -> str:
        return "number"

    def validate_definition(self, definition: FieldDef) -> bool:
        return _valid_bounds(definition) and super().validate_definition(definition)

    def check_value(self, field: Field, value: Any) -> None:
        if not _is_number(value):
            raise FieldValueError(FieldFailure.NOT_VALID_TYPE)
        _check_bounds(field, value)

    def set_value_intercept(
        self,
        schema: Schema,
        field: Field,
        value: Any,
        record: Mapping[str, Any],
        context: Any = None,
    ) -> Any:
        if isinstance(value, str):
            try:
                return float(value.strip())
            except ValueError:
                return value
        return value


class BooleanFieldType(FieldType):
    def __init__(self) -> None:
        super().__init__(PrimitiveDataType.BOOLEAN)

    def get_name(self) -> str:
        return "boolean"

    def check_value(self, field: Field, value: Any) -> None:
        if not isinstance(value, bool):
            raise FieldValueError(FieldFailure.NOT_VALID_TYPE)

    def set_value_intercept(
        self,
        schema: Schema,
        field: Field,
        value: Any,
        record: Mapping[str, Any],
        context: Any = None,
    ) -> Any:
        if isinstance(value, str) and value.lower() in ("true", "false"):
            return value.lower() == "true"
        return value


class DateFieldType(FieldType):
    """Calendar date. Stored values may come back as ISO strings."""

    def __init__(self) -> None:
        super().__init__(PrimitiveDataType.DATE)

    def get_name(self) -> str:
        return "date"

    def check_value(self, field: Field, value: Any) -> None:
        if isinstance(value, str):
            raise FieldValueError(FieldFailure.NOT_VALID_VALUE, "not an ISO-8601 date")
        if isinstance(value, datetime) or not isinstance(value, date):
            raise FieldValueError(FieldFailure.NOT_VALID_TYPE)

    def set_value_intercept(
        self,
        schema: Schema,
        field: Field,
        value: Any,
        record: Mapping[str, Any],
        context: Any = None,
    ) -> Any:
        return _parse_date(value)

    def get_value_intercept(
        self,
        schema: Schema,
        field: Field,
        record: Mapping[str, Any],
        context: Any = None,
    ) -> Any:
        return _parse_date(record.get(field.name))


def _parse_date(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str):
        try:
            return date.fromisoformat(value)
        except ValueError:
            return value
    return value


class DateTimeFieldType(FieldType):
    def __init__(self) -> None:
        super().__init__(PrimitiveDataType.DATETIME)

    def get_name(self) -> str:
        return "datetime"

    def check_value(self, field: Field, value: Any) -> None:
        if isinstance(value, str):
            raise FieldValueError(FieldFailure.NOT_VALID_VALUE, "not an ISO-8601 datetime")
        if not isinstance(value, datetime):
            raise FieldValueError(FieldFailure.NOT_VALID_TYPE)

    def set_value_intercept(
        self,
        schema: Schema,
        field: Field,
        value: Any,
        record: Mapping[str, Any],
        context: Any = None,
    ) -> Any:
        return _parse_datetime(value)

    def get_value_intercept(
        self,
        schema: Schema,
        field: Field,
        record: Mapping[str, Any],
        context: Any = None,
    ) -> Any:
        return _parse_datetime(record.get(field.name))


def _parse_datetime(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return value
    return value


class JsonFieldType(FieldType):
    """Structured value: a JSON object or array."""

    def __init__(self) -> None:
        super().__init__(PrimitiveDataType.JSON)

    def get_name(self) -> str:
        return "json"

    def check_value(self, field: Field, value: Any) -> None:
        if not isinstance(value, (dict, list)):
            raise FieldValueError(FieldFailure.NOT_VALID_TYPE)
        try:
            json.dumps(value)
        except (TypeError, ValueError):
            raise FieldValueError(FieldFailure.NOT_VALID_VALUE, "not JSON-serializable")


class ReferenceFieldType(FieldType):
    """Identity of a record in another collection.

    The definition names the target with ``references``. Existence of the
    referenced record is checked against storage.
    """

    def __init__(self) -> None:
        super().__init__(PrimitiveDataType.UUID)

    def get_name(self) -> str:
        return "reference"

    def validate_definition(self, definition: FieldDef) -> bool:
        target = definition.option("references")
        if not isinstance(target, str) or not target:
            return False
        return super().validate_definition(definition)

    def check_value(self, field: Field, value: Any) -> None:
        _check_identifier(value)

    def set_value_intercept(
        self,
        schema: Schema,
        field: Field,
        value: Any,
        record: Mapping[str, Any],
        context: Any = None,
    ) -> Any:
        # Accept a Record directly
        get_id = getattr(value, "get_id", None)
        if callable(get_id):
            value = get_id()
        return normalize_identifier(value)

    async def validate_storage(
        self,
        schema: Schema,
        field: Field,
        record: Mapping[str, Any],
        collection: Collection,
        context: Any = None,
    ) -> None:
        await super().validate_storage(schema, field, record, collection, context)
        value = record.get(field.name)
        if value is None:
            return
        target_name = field.option("references")
        target = collection.get_registry().get_collection(target_name)
        if target is None:
            raise FieldValueError(
                FieldFailure.NOT_VALID_VALUE, f"collection '{target_name}' is not defined"
            )
        if await target.find_raw({ID_FIELD: value}, scoped=True) is None:
            raise FieldValueError(
                FieldFailure.NOT_VALID_VALUE, f"no '{target_name}' record with id {value}"
            )


BUILTIN_FIELD_TYPES: tuple[type[FieldType], ...] = (
    IdFieldType,
    StringFieldType,
    EnumFieldType,
    IntegerFieldType,
    NumberFieldType,
    BooleanFieldType,
    DateFieldType,
    DateTimeFieldType,
    JsonFieldType,
    ReferenceFieldType,
)
