"""
Unit tests for lazy cursors.

Tests cover:
- Laziness and options (sort, limit, skip)
- Release exactly once on every exit path
- SELECT interceptors (BEFORE cancellation, per-record AFTER)
- Resource error handling
"""

import asyncio
import gc
import logging

import pytest

from recordmap.backends.base import DESCENDING
from recordmap.constants import OperationType, OperationWhen
from recordmap.errors import CursorStateError
from recordmap.interceptors import OperationInterceptor


class SelectHook(OperationInterceptor):
    """Interceptor acting on SELECT only."""

    def __init__(self, before=..., after=None):
        self.before = before
        self.after = after
        self.after_calls = 0

    def get_name(self):
        return "select_hook"

    def get_order(self):
        return 1

    async def intercept(self, collection_name, operation, when, records, context):
        if operation != OperationType.SELECT:
            return records
        if when == OperationWhen.BEFORE:
            return records if self.before is ... else self.before
        self.after_calls += 1
        if self.after is None:
            return records
        return self.after(records)


async def seed(mapper, count=5):
    await mapper.connect()
    employees = await mapper.define_collection(
        {
            "name": "employee",
            "fields": [
                {"name": "name", "type": "string"},
                {"name": "salary", "type": "integer"},
            ],
        }
    )
    for i in range(count):
        await employees.insert_record({"name": f"emp{i}", "salary": i * 10})
    return employees


async def settle():
    """Let the event loop finalize abandoned loop generators."""
    gc.collect()
    for _ in range(5):
        await asyncio.sleep(0)


class TestCursorIteration:
    """Tests for iteration and options."""

    @pytest.mark.asyncio
    async def test_find_is_lazy(self, mapper, backend):
        employees = await seed(mapper)
        backend.reset_calls()

        cursor = employees.find()

        assert backend.calls["find"] == 0
        assert not cursor.started
        await cursor.aclose()

    @pytest.mark.asyncio
    async def test_reads_all_in_batches(self, mapper, backend):
        """Rows are read in batches but all are returned."""
        employees = await seed(mapper)

        records = await employees.find().to_list()

        assert sorted(r.get("name") for r in records) == [f"emp{i}" for i in range(5)]

    @pytest.mark.asyncio
    async def test_sort_limit_skip(self, mapper):
        employees = await seed(mapper)

        records = await employees.find().sort("salary", DESCENDING).skip(1).limit(2).to_list()

        assert [r.get("salary") for r in records] == [30, 20]

    @pytest.mark.asyncio
    async def test_options_mapping(self, mapper):
        employees = await seed(mapper)

        records = await employees.find(options={"sort": {"salary": 1}, "limit": 2}).to_list()

        assert [r.get("salary") for r in records] == [0, 10]

    @pytest.mark.asyncio
    async def test_modify_after_start_fails(self, mapper):
        employees = await seed(mapper)
        cursor = employees.find()

        await cursor.__anext__()
        with pytest.raises(CursorStateError):
            cursor.limit(1)
        await cursor.aclose()

    @pytest.mark.asyncio
    async def test_not_restartable(self, mapper):
        employees = await seed(mapper, count=2)
        cursor = employees.find()

        assert len(await cursor.to_list()) == 2
        assert await cursor.to_list() == []


class TestCursorRelease:
    """Tests for release-exactly-once semantics."""

    @pytest.mark.asyncio
    async def test_release_on_exhaustion(self, mapper, backend):
        """Happy path releases exactly once."""
        employees = await seed(mapper)

        async for _ in employees.find():
            pass

        assert backend.reserve_count == 1
        assert backend.release_count == 1
        assert backend.active_cursors == 0

    @pytest.mark.asyncio
    async def test_release_on_break(self, mapper, backend):
        employees = await seed(mapper)

        async with employees.find() as cursor:
            async for _ in cursor:
                break

        assert backend.release_count == 1
        assert backend.active_cursors == 0

    @pytest.mark.asyncio
    async def test_release_when_consumer_raises(self, mapper, backend):
        """Consumption that throws midway releases exactly once."""
        employees = await seed(mapper)

        with pytest.raises(ValueError):
            async with employees.find() as cursor:
                async for record in cursor:
                    if record is not None:
                        raise ValueError("stop")

        assert backend.release_count == 1
        assert backend.active_cursors == 0

    @pytest.mark.asyncio
    async def test_release_on_plain_loop_break(self, mapper, backend):
        """A bare async for that breaks releases without aclose or async with."""
        employees = await seed(mapper)

        async for _ in employees.find():
            break
        await settle()

        assert backend.reserve_count == 1
        assert backend.release_count == 1
        assert backend.active_cursors == 0

    @pytest.mark.asyncio
    async def test_release_when_plain_loop_body_raises(self, mapper, backend):
        employees = await seed(mapper)

        with pytest.raises(ValueError):
            async for record in employees.find():
                if record is not None:
                    raise ValueError("stop")
        await settle()

        assert backend.release_count == 1
        assert backend.active_cursors == 0

    @pytest.mark.asyncio
    async def test_release_when_interceptor_raises(self, mapper, backend):
        employees = await seed(mapper)

        def explode(records):
            raise RuntimeError("after failed")

        mapper.add_interceptor(SelectHook(after=explode))

        with pytest.raises(RuntimeError):
            await employees.find().to_list()

        assert backend.release_count == 1
        assert backend.active_cursors == 0

    @pytest.mark.asyncio
    async def test_aclose_is_idempotent(self, mapper, backend):
        employees = await seed(mapper)
        cursor = employees.find()
        await cursor.__anext__()

        await cursor.aclose()
        await cursor.aclose()

        assert backend.release_count == 1
        assert cursor.closed

    @pytest.mark.asyncio
    async def test_release_error_is_logged(self, mapper, backend, caplog):
        """Release failures are logged, not raised over the result."""
        employees = await seed(mapper, count=1)
        cursor = employees.find()
        await cursor.__anext__()

        async def broken_release():
            raise OSError("connection reset")

        cursor._backend_cursor.release = broken_release
        with caplog.at_level(logging.ERROR, logger="recordmap.cursor"):
            await cursor.aclose()

        assert "Failed to release cursor" in caplog.text

    @pytest.mark.asyncio
    async def test_resource_error_is_logged(self, mapper, caplog):
        employees = await seed(mapper, count=1)
        cursor = employees.find()
        await cursor.__anext__()

        with caplog.at_level(logging.ERROR, logger="recordmap.cursor"):
            cursor._backend_cursor.emit_error(OSError("lost connection"))

        assert "lost connection" in caplog.text
        await cursor.aclose()


class TestCursorInterception:
    """Tests for SELECT interceptors around cursors."""

    @pytest.mark.asyncio
    async def test_cancelled_before_skips_backend(self, mapper, backend):
        employees = await seed(mapper)
        mapper.add_interceptor(SelectHook(before=None))
        backend.reset_calls()

        records = await employees.find().to_list()

        assert records == []
        assert backend.calls["find"] == 0

    @pytest.mark.asyncio
    async def test_after_runs_per_record(self, mapper):
        employees = await seed(mapper)
        hook = SelectHook()
        mapper.add_interceptor(hook)

        records = await employees.find().to_list()

        assert len(records) == 5
        assert hook.after_calls == 5

    @pytest.mark.asyncio
    async def test_after_can_drop_records(self, mapper):
        employees = await seed(mapper)
        mapper.add_interceptor(
            SelectHook(after=lambda records: [r for r in records if r.get("salary") >= 20])
        )

        records = await employees.find().sort("salary").to_list()

        assert [r.get("salary") for r in records] == [20, 30, 40]

    @pytest.mark.asyncio
    async def test_find_one_cancelled(self, mapper, backend):
        employees = await seed(mapper)
        mapper.add_interceptor(SelectHook(before=None))
        backend.reset_calls()

        assert await employees.find_one({"name": "emp1"}) is None
        assert backend.calls["find_one"] == 0
