"""
Configuration for recordmap.

Settings are read from environment variables with the ``RECORDMAP_`` prefix
and can also be passed explicitly to RecordMapper.

Invariants:
    - All settings have sensible defaults for tests and local development
    - The library never configures logging on import; callers opt in with
      setup_logging()

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep create_backend in sync with the ``backend`` choices
"""

from __future__ import annotations

import logging
from typing import Literal

import json_log_formatter
from pydantic import Field
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class MapperSettings(BaseSettings):
    """Mapper configuration."""

    # Storage
    backend: Literal["memory", "sqlite"] = Field(default="memory")
    sqlite_path: str = Field(default="./recordmap.db")
    sqlite_wal_mode: bool = Field(default=True)
    sqlite_busy_timeout_ms: int = Field(default=5000, ge=0)

    # Query execution
    cursor_batch_size: int = Field(default=100, ge=1, description="Rows read per backend round-trip")

    # Validation
    check_unique_before_write: bool = Field(
        default=True,
        description="Look up unique values before writing; the backend constraint still applies",
    )

    # Observability
    log_level: str = Field(default="INFO")
    log_format: Literal["json", "text"] = Field(default="text")

    model_config = {"env_prefix": "RECORDMAP_"}


def setup_logging(settings: MapperSettings) -> None:
    """Configure root logging from settings.

    Args:
        settings: Mapper settings
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]
