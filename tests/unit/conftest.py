"""
Shared fixtures for recordmap unit tests.
"""

from collections import Counter

import pytest

from recordmap.backends.memory import InMemoryBackend
from recordmap.config import MapperSettings
from recordmap.mapper import RecordMapper


class RecordingBackend(InMemoryBackend):
    """InMemoryBackend that counts storage calls."""

    def __init__(self):
        super().__init__()
        self.calls = Counter()

    async def insert_one(self, store, doc):
        self.calls["insert_one"] += 1
        return await super().insert_one(store, doc)

    async def find_one(self, store, filter, options=None):
        self.calls["find_one"] += 1
        return await super().find_one(store, filter, options)

    async def find(self, store, filter, options=None):
        self.calls["find"] += 1
        return await super().find(store, filter, options)

    async def update_one(self, store, identity, values):
        self.calls["update_one"] += 1
        return await super().update_one(store, identity, values)

    async def delete_one(self, store, identity):
        self.calls["delete_one"] += 1
        return await super().delete_one(store, identity)

    async def count(self, store, filter):
        self.calls["count"] += 1
        return await super().count(store, filter)

    @property
    def storage_calls(self):
        return sum(self.calls.values())

    def reset_calls(self):
        self.calls.clear()


@pytest.fixture
def backend():
    """Create a fresh recording backend."""
    return RecordingBackend()


@pytest.fixture
def settings():
    return MapperSettings(backend="memory", cursor_batch_size=2)


@pytest.fixture
def mapper(settings, backend):
    """Create a mapper over the recording backend (not yet connected)."""
    return RecordMapper(settings, backend=backend)


@pytest.fixture
def employee_definition():
    return {
        "name": "employee",
        "fields": [
            {"name": "name", "type": "string", "unique": True},
            {"name": "salary", "type": "integer", "not_null": True},
        ],
    }
