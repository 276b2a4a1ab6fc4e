"""
Schema module for recordmap.

- FieldDef / Field: Parsed field definitions bound to their FieldType
- Schema: Validated entity definition with inheritance resolution
- CollectionRegistry: Name -> Collection handle lookup
"""

from .fields import Field, FieldDef
from .registry import CollectionRegistry
from .schema import Schema

__all__ = [
    "Field",
    "FieldDef",
    "Schema",
    "CollectionRegistry",
]
