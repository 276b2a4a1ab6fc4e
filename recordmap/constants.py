"""
Shared constants for recordmap.

Operation tags and phases used by the interceptor pipeline, plus the names of
the hidden fields every stored document carries.
"""

from __future__ import annotations

from enum import Enum

# Identity field injected into every root schema
ID_FIELD = "_id"

# Logical-type tag stored with every record of a schema that extends another
DISCRIMINATOR_FIELD = "_collection"


class OperationType(str, Enum):
    """Operations wrapped by the interceptor pipeline."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    SELECT = "SELECT"


class OperationWhen(str, Enum):
    """Pipeline phase relative to the storage call."""

    BEFORE = "BEFORE"
    AFTER = "AFTER"
