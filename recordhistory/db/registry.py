"""
recordhistory Versioned Class Registry - Maps live classes to their HistorySchema.

Filled by the ``@versioned`` decorator at import time. The lifecycle hooks use
it to decide whether a flushed instance is versioned at all. Lookups walk the
MRO, so single-table-inheritance subclasses share the schema of the decorated
base class.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from recordhistory.engine.errors import HistoryConfigError

if TYPE_CHECKING:
    from recordhistory.db.schema import HistorySchema

logger = logging.getLogger("recordhistory.db.registry")


class VersionedRegistry:
    """
    In-memory registry of versioned classes.

    Usage:
        registry = VersionedRegistry()
        registry.register(schema)
        schema = registry.get(Page)
        schema = registry.schema_for(page)   # None if not versioned
    """

    def __init__(self):
        self._schemas: Dict[type, "HistorySchema"] = {}

    def register(self, schema: "HistorySchema") -> None:
        """Register a schema under its live class."""
        self._schemas[schema.live_class] = schema
        logger.debug(
            f"Registered versioned class: {schema.live_class.__name__} "
            f"→ {schema.history_table.name}"
        )

    def unregister(self, cls: type) -> None:
        self._schemas.pop(cls, None)

    def get_own(self, cls: type) -> Optional["HistorySchema"]:
        """Schema registered for exactly ``cls`` (no MRO walk)."""
        return self._schemas.get(cls)

    def get(self, cls: type) -> Optional["HistorySchema"]:
        """Schema for ``cls`` or the nearest registered base class."""
        for klass in cls.__mro__:
            schema = self._schemas.get(klass)
            if schema is not None:
                return schema
        return None

    def require(self, cls: type) -> "HistorySchema":
        schema = self.get(cls)
        if schema is None:
            raise HistoryConfigError(
                f"{cls.__name__} is not versioned - decorate it with @versioned",
                record_type=cls.__name__,
            )
        return schema

    def schema_for(self, instance: Any) -> Optional["HistorySchema"]:
        return self.get(type(instance))

    def is_versioned(self, cls: type) -> bool:
        return self.get(cls) is not None

    def all(self) -> List["HistorySchema"]:
        return list(self._schemas.values())

    def clear(self) -> None:
        self._schemas.clear()

    def __len__(self) -> int:
        return len(self._schemas)


# Global registry singleton
versioned_registry = VersionedRegistry()
