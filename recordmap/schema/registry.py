"""
Collection registry for recordmap.

Maps an entity name to its live Collection handle. Schemas resolve their
parents through this registry, so a schema can only extend a collection that
was registered before it.

Invariants:
    - Collection names are unique
    - Registration of a name is atomic; a concurrent duplicate fails
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from typing import TYPE_CHECKING

from ..errors import DefinitionError

if TYPE_CHECKING:
    from ..collection import Collection

logger = logging.getLogger(__name__)


class CollectionRegistry:
    """Registry of collection handles keyed by name."""

    def __init__(self) -> None:
        self._collections: dict[str, Collection] = {}
        self._lock = threading.Lock()

    def add_collection(self, collection: Collection) -> None:
        """Register a collection handle.

        Raises:
            DefinitionError: If the name is already registered
        """
        name = collection.get_name()
        with self._lock:
            if name in self._collections:
                raise DefinitionError(
                    f"[Schema] Collection name already exists - [collectionName={name}]", name
                )
            self._collections[name] = collection
            logger.debug(f"Registered collection: {name}")

    def get_collection(self, name: str) -> Collection | None:
        """Get collection by name."""
        return self._collections.get(name)

    def has_collection(self, name: str) -> bool:
        return name in self._collections

    def remove_collection(self, name: str) -> Collection | None:
        with self._lock:
            return self._collections.pop(name, None)

    def get_subtypes(self, name: str) -> list[Collection]:
        """Collections that directly extend ``name``."""
        return [c for c in self._collections.values() if c.get_schema().get_extends() == name]

    def collections(self) -> Iterator[Collection]:
        """Iterate over all collections in registration order."""
        yield from list(self._collections.values())

    def names(self) -> list[str]:
        return list(self._collections.keys())

    def clear(self) -> None:
        with self._lock:
            self._collections.clear()
