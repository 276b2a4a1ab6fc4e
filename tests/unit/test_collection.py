"""
Unit tests for collection CRUD and records.

Tests cover:
- The employee end-to-end scenario
- Record lifecycle (new, modified, loaded)
- Update, delete, count and lookups
- Subtype discriminator handling
- Storage-backed validation (uniqueness, references)
- Mapper lifecycle
"""

import json
import uuid

import pytest

from recordmap.config import MapperSettings
from recordmap.constants import DISCRIMINATOR_FIELD, ID_FIELD
from recordmap.errors import (
    CollectionNotFoundError,
    DefinitionError,
    FieldFailure,
    StorageError,
    UniqueConstraintError,
    UnknownFieldError,
    ValidationError,
)
from recordmap.mapper import RecordMapper


class TestEmployeeScenario:
    """employee {name: string unique, salary: integer not_null}."""

    @pytest.mark.asyncio
    async def test_insert_succeeds(self, mapper, employee_definition):
        await mapper.connect()
        employees = await mapper.define_collection(employee_definition)

        saved = await employees.create_new_record({"name": "John", "salary": 100}).insert()

        assert saved is not None
        assert saved.get("name") == "John"
        assert saved.get("salary") == 100
        assert not saved.is_new()
        assert await employees.count() == 1

    @pytest.mark.asyncio
    async def test_duplicate_name_is_storage_error(self, mapper, employee_definition):
        await mapper.connect()
        employees = await mapper.define_collection(employee_definition)
        await employees.create_new_record({"name": "John", "salary": 100}).insert()

        with pytest.raises(StorageError) as exc_info:
            await employees.create_new_record({"name": "John", "salary": 200}).insert()

        assert isinstance(exc_info.value, UniqueConstraintError)
        assert exc_info.value.field_name == "name"
        assert await employees.count() == 1

    @pytest.mark.asyncio
    async def test_duplicate_rejected_by_backend_without_precheck(
        self, backend, employee_definition
    ):
        """The backend constraint is authoritative when the pre-check is off."""
        mapper = RecordMapper(MapperSettings(check_unique_before_write=False), backend=backend)
        await mapper.connect()
        employees = await mapper.define_collection(employee_definition)
        await employees.create_new_record({"name": "John", "salary": 100}).insert()
        backend.reset_calls()

        with pytest.raises(UniqueConstraintError):
            await employees.create_new_record({"name": "John", "salary": 200}).insert()
        assert backend.calls["insert_one"] == 1

    @pytest.mark.asyncio
    async def test_missing_salary_fails_before_storage(self, mapper, backend, employee_definition):
        """Missing required field raises REQUIRED before any storage call."""
        await mapper.connect()
        employees = await mapper.define_collection(employee_definition)
        backend.reset_calls()

        with pytest.raises(ValidationError) as exc_info:
            await employees.create_new_record({"name": "Jane"}).insert()

        assert exc_info.value.field_errors == {"salary": FieldFailure.REQUIRED}
        assert "salary is a required field" in exc_info.value.errors
        assert backend.storage_calls == 0


class TestRecord:
    """Tests for Record behavior."""

    @pytest.mark.asyncio
    async def test_new_record_has_identity_and_defaults(self, mapper):
        await mapper.connect()
        tasks = await mapper.define_collection(
            {
                "name": "task",
                "fields": [
                    {"name": "status", "type": "enum", "values": ["todo", "done"], "default": "todo"},
                    {"name": "tags", "type": "json", "default": []},
                ],
            }
        )

        first = tasks.create_new_record()
        second = tasks.create_new_record()

        assert first.is_new()
        assert str(uuid.UUID(first.get_id())) == first.get_id()
        assert first.get("status") == "todo"
        first.get("tags").append("x")
        assert second.get("tags") == []

    @pytest.mark.asyncio
    async def test_set_tracks_modifications(self, mapper, employee_definition):
        await mapper.connect()
        employees = await mapper.define_collection(employee_definition)

        record = employees.create_new_record()
        assert not record.is_modified()

        record.set("salary", "150").set("name", "John")

        assert record.get("salary") == 150
        assert record.get_modified_fields() == ["name", "salary"]

    @pytest.mark.asyncio
    async def test_unknown_field_suggests(self, mapper, employee_definition):
        await mapper.connect()
        employees = await mapper.define_collection(employee_definition)

        with pytest.raises(UnknownFieldError) as exc_info:
            employees.create_new_record().set("salry", 10)

        assert "salary" in exc_info.value.suggestions

    @pytest.mark.asyncio
    async def test_serialization(self, mapper):
        await mapper.connect()
        events = await mapper.define_collection(
            {"name": "event", "fields": [{"name": "on", "type": "date"}]}
        )
        record = events.create_new_record({"on": "2024-03-01"})

        raw = record.to_object()
        raw["on"] = None
        assert record.get("on") is not None
        assert json.loads(record.to_json())["on"] == "2024-03-01"
        assert (await record.get_display_value())["on"] == "2024-03-01"
        assert await record.get_display_value("on") == "2024-03-01"

    @pytest.mark.asyncio
    async def test_hydration_drops_unknown_keys(self, mapper, employee_definition):
        await mapper.connect()
        employees = await mapper.define_collection(employee_definition)

        record = employees.hydrate({ID_FIELD: "x", "name": "John", "legacy": 1})

        assert record.to_object() == {ID_FIELD: "x", "name": "John"}
        assert not record.is_new()


class TestCrud:
    """Tests for update, delete and lookups."""

    @pytest.mark.asyncio
    async def test_update_writes_current_values(self, mapper, employee_definition):
        await mapper.connect()
        employees = await mapper.define_collection(employee_definition)
        record = employees.create_new_record({"name": "John", "salary": 100})
        await record.insert()

        record.set("salary", 120)
        updated = await record.update()

        assert updated.get("salary") == 120
        fetched = await employees.find_by_id(record.get_id())
        assert fetched.get("salary") == 120
        assert fetched.get("name") == "John"

    @pytest.mark.asyncio
    async def test_update_validates(self, mapper, employee_definition):
        await mapper.connect()
        employees = await mapper.define_collection(employee_definition)
        record = employees.create_new_record({"name": "John", "salary": 100})
        await record.insert()

        record.set("salary", None)
        with pytest.raises(ValidationError):
            await record.update()

    @pytest.mark.asyncio
    async def test_update_unique_value_kept(self, mapper, employee_definition):
        """Updating a record does not collide with its own unique value."""
        await mapper.connect()
        employees = await mapper.define_collection(employee_definition)
        record = employees.create_new_record({"name": "John", "salary": 100})
        await record.insert()

        record.set("salary", 101)
        assert await record.update() is not None

    @pytest.mark.asyncio
    async def test_update_missing_record(self, mapper, employee_definition):
        await mapper.connect()
        employees = await mapper.define_collection(employee_definition)
        record = employees.create_new_record({"name": "Ghost", "salary": 1})

        with pytest.raises(StorageError, match="not found"):
            await record.update()

    @pytest.mark.asyncio
    async def test_delete(self, mapper, employee_definition):
        await mapper.connect()
        employees = await mapper.define_collection(employee_definition)
        record = employees.create_new_record({"name": "John", "salary": 100})
        await record.insert()

        assert await record.delete() is True
        assert await record.delete() is False
        assert await employees.find_by_id(record.get_id()) is None

    @pytest.mark.asyncio
    async def test_not_null_default_fills_none_on_insert(self, mapper):
        """A not_null field set to None is stored with its default."""
        await mapper.connect()
        employees = await mapper.define_collection(
            {
                "name": "employee",
                "fields": [
                    {"name": "name", "type": "string"},
                    {"name": "salary", "type": "integer", "not_null": True, "default": 100},
                ],
            }
        )
        record = employees.create_new_record({"name": "John"})
        record.set("salary", None)

        saved = await employees.insert_record(record)

        assert saved.get("salary") == 100
        fetched = await employees.find_by_id(saved.get_id())
        assert fetched.get("salary") == 100

    @pytest.mark.asyncio
    async def test_find_one_coerces_filter_values(self, mapper, employee_definition):
        """Filter values pass through the field's write-time intercept."""
        await mapper.connect()
        employees = await mapper.define_collection(employee_definition)
        await employees.insert_record({"name": "John", "salary": 100})

        found = await employees.find_one({"salary": "100"})

        assert found is not None
        assert found.get("name") == "John"

    @pytest.mark.asyncio
    async def test_insert_accepts_mapping(self, mapper, employee_definition):
        await mapper.connect()
        employees = await mapper.define_collection(employee_definition)

        saved = await employees.insert_record({"name": "John", "salary": 100})

        assert saved.get_id() is not None


class TestSubtypes:
    """Tests for collections that extend another."""

    @pytest.mark.asyncio
    async def test_subtypes_share_host_store(self, mapper, backend):
        await mapper.connect()
        people = await mapper.define_collection(
            {"name": "person", "fields": [{"name": "name", "type": "string"}]}
        )
        staff = await mapper.define_collection(
            {"name": "staff", "extends": "person", "fields": [{"name": "badge", "type": "integer"}]}
        )
        guests = await mapper.define_collection(
            {"name": "guest", "extends": "person", "fields": [{"name": "host", "type": "string"}]}
        )

        await people.insert_record({"name": "Pat"})
        saved = await staff.insert_record({"name": "Sam", "badge": 7})
        await guests.insert_record({"name": "Gil", "host": "Sam"})

        assert saved.get(DISCRIMINATOR_FIELD) == "staff"
        assert backend.get_document_count("person") == 3
        assert await people.count() == 3
        assert await staff.count() == 1
        assert await guests.count() == 1
        assert [r.get("name") for r in await staff.find().to_list()] == ["Sam"]

    @pytest.mark.asyncio
    async def test_drop_refuses_extended(self, mapper):
        await mapper.connect()
        await mapper.define_collection({"name": "person", "fields": []})
        await mapper.define_collection({"name": "staff", "extends": "person", "fields": []})

        with pytest.raises(DefinitionError, match="extended by staff"):
            await mapper.drop_collection("person")

    @pytest.mark.asyncio
    async def test_drop_subtype_removes_its_records(self, mapper, backend):
        await mapper.connect()
        people = await mapper.define_collection({"name": "person", "fields": []})
        staff = await mapper.define_collection({"name": "staff", "extends": "person", "fields": []})
        await people.insert_record({})
        await staff.insert_record({})

        await mapper.drop_collection("staff")

        assert not mapper.has_collection("staff")
        assert backend.get_document_count("person") == 1
        assert backend.active_cursors == 0


class TestReferences:
    """Tests for reference fields."""

    @pytest.fixture
    def definitions(self):
        return [
            {"name": "user", "fields": [{"name": "name", "type": "string"}]},
            {
                "name": "task",
                "fields": [
                    {"name": "title", "type": "string"},
                    {"name": "owner", "type": "reference", "references": "user"},
                ],
            },
        ]

    @pytest.mark.asyncio
    async def test_reference_to_existing_record(self, mapper, definitions):
        await mapper.connect()
        users = await mapper.define_collection(definitions[0])
        tasks = await mapper.define_collection(definitions[1])
        alice = await users.insert_record({"name": "alice"})

        task = tasks.create_new_record({"title": "Write docs"}).set("owner", alice)
        saved = await task.insert()

        assert saved.get("owner") == alice.get_id()

    @pytest.mark.asyncio
    async def test_dangling_reference(self, mapper, definitions):
        await mapper.connect()
        await mapper.define_collection(definitions[0])
        tasks = await mapper.define_collection(definitions[1])

        with pytest.raises(ValidationError) as exc_info:
            await tasks.insert_record({"title": "Orphan", "owner": str(uuid.uuid4())})

        assert exc_info.value.field_errors == {"owner": FieldFailure.NOT_VALID_VALUE}


class TestMapper:
    """Tests for RecordMapper."""

    @pytest.mark.asyncio
    async def test_context_manager(self, backend):
        async with RecordMapper(backend=backend) as mapper:
            assert mapper.backend.is_connected
        assert not backend.is_connected

    @pytest.mark.asyncio
    async def test_unknown_collection(self, mapper):
        await mapper.connect()
        with pytest.raises(CollectionNotFoundError):
            mapper.collection("ghost")

    @pytest.mark.asyncio
    async def test_failed_store_leaves_nothing_registered(self, mapper, backend):
        """A backend failure during define leaves nothing registered."""
        with pytest.raises(StorageError):
            await mapper.define_collection({"name": "task", "fields": []})
        assert not mapper.has_collection("task")

    def test_generate_record_id(self, mapper):
        identity = mapper.generate_record_id()
        assert str(uuid.UUID(identity)) == identity
