"""
Memory Store Module

This module provides an in-memory implementation of the Store interface for
development and testing purposes. Entities are kept as serialized copies, so
callers never share mutable state with the store.
"""

import copy
from typing import Any, Dict, List, Optional, Type

from assessment_engine.common.logger import app_logger
from .base import Store

logger = app_logger.getChild("store.memory")


class MemoryStore(Store):
    """
    In-memory implementation of the Store.

    This implementation stores records in memory and is intended for
    development and testing purposes only.
    """

    def __init__(self, entity_types: Optional[Dict[str, Type]] = None):
        super().__init__(entity_types)
        self._records: Dict[str, Dict[str, Dict[str, Any]]] = {}

    async def get(self, kind: str, entity_id: str) -> Optional[Any]:
        record = self._records.get(kind, {}).get(entity_id)
        if record is None:
            return None
        return self._rebuild(kind, copy.deepcopy(record))

    async def save(self, entity: Any) -> Any:
        kind = entity.ENTITY_KIND
        self._records.setdefault(kind, {})[entity.id] = entity.to_dict()
        logger.debug(f"Saved {kind} {entity.id}")
        return entity

    async def query(self, kind: str, filter: Optional[Dict[str, Any]] = None) -> List[Any]:
        return [
            self._rebuild(kind, copy.deepcopy(record))
            for record in self._records.get(kind, {}).values()
            if self._matches(record, filter)
        ]

    def count(self, kind: str) -> int:
        """
        Get the number of stored entities of a kind.

        Args:
            kind: Entity kind

        Returns:
            Number of stored entities
        """
        return len(self._records.get(kind, {}))
