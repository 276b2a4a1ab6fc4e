"""
Unit tests for configuration and logging setup.
"""

import logging

import json_log_formatter
import pytest

from recordmap.backends.base import create_backend
from recordmap.backends.memory import InMemoryBackend
from recordmap.backends.sqlite import SQLiteBackend
from recordmap.config import MapperSettings, setup_logging


@pytest.fixture
def restore_root_logger():
    """Restore root logger handlers and level after the test."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers = handlers
    root.setLevel(level)


class TestMapperSettings:
    """Tests for MapperSettings."""

    def test_defaults(self):
        settings = MapperSettings()
        assert settings.backend == "memory"
        assert settings.cursor_batch_size == 100
        assert settings.check_unique_before_write is True

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("RECORDMAP_BACKEND", "sqlite")
        monkeypatch.setenv("RECORDMAP_CURSOR_BATCH_SIZE", "25")
        monkeypatch.setenv("RECORDMAP_CHECK_UNIQUE_BEFORE_WRITE", "false")

        settings = MapperSettings()

        assert settings.backend == "sqlite"
        assert settings.cursor_batch_size == 25
        assert settings.check_unique_before_write is False

    def test_rejects_unknown_backend(self):
        with pytest.raises(ValueError):
            MapperSettings(backend="mongo")


class TestCreateBackend:
    """Tests for the backend factory."""

    def test_memory(self):
        assert isinstance(create_backend(MapperSettings(backend="memory")), InMemoryBackend)

    def test_sqlite(self, tmp_path):
        backend = create_backend(
            MapperSettings(
                backend="sqlite",
                sqlite_path=str(tmp_path / "x.db"),
                sqlite_busy_timeout_ms=100,
            )
        )
        assert isinstance(backend, SQLiteBackend)
        assert backend.busy_timeout_ms == 100


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_json_format(self, restore_root_logger):
        setup_logging(MapperSettings(log_format="json", log_level="DEBUG"))

        assert restore_root_logger.level == logging.DEBUG
        assert isinstance(restore_root_logger.handlers[0].formatter, json_log_formatter.JSONFormatter)

    def test_text_format(self, restore_root_logger):
        setup_logging(MapperSettings(log_format="text", log_level="warning"))

        assert restore_root_logger.level == logging.WARNING
        assert "%(levelname)s" in restore_root_logger.handlers[0].formatter._fmt
