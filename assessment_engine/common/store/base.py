"""
Store Interface

This module defines the persistence contract the engine depends on. A store
keeps entities of several kinds (assessments, sessions) keyed by ID; callers
register the entity classes so that stored records are rebuilt through each
class's from_dict.
"""

import abc
from typing import Any, Dict, List, Optional, Type

from assessment_engine.common.error_handling import ConfigurationError


class Store(abc.ABC):
    """
    Abstract base class for entity stores.

    Entities must expose an ``ENTITY_KIND`` class attribute, an ``id`` and a
    ``to_dict()`` method; the registered class must provide ``from_dict()``.
    """

    # Top-level record fields that implementations may index for queries
    INDEXED_FIELDS = ("assessment_id", "student_id", "status")

    def __init__(self, entity_types: Optional[Dict[str, Type]] = None):
        self._entity_types: Dict[str, Type] = dict(entity_types or {})

    def register_entity(self, entity_cls: Type) -> None:
        """
        Register an entity class under its ENTITY_KIND.

        Args:
            entity_cls: Class with ENTITY_KIND and from_dict
        """
        self._entity_types[entity_cls.ENTITY_KIND] = entity_cls

    def _entity_type(self, kind: str) -> Type:
        try:
            return self._entity_types[kind]
        except KeyError:
            raise ConfigurationError(f"No entity type registered for kind: {kind}", config_key=kind)

    def _rebuild(self, kind: str, record: Dict[str, Any]) -> Any:
        return self._entity_type(kind).from_dict(record)

    @staticmethod
    def _matches(record: Dict[str, Any], filter: Optional[Dict[str, Any]]) -> bool:
        if not filter:
            return True
        return all(record.get(key) == value for key, value in filter.items())

    async def start(self) -> None:
        """Prepare the store for use."""

    async def close(self) -> None:
        """Release resources held by the store."""

    @abc.abstractmethod
    async def get(self, kind: str, entity_id: str) -> Optional[Any]:
        """
        Get an entity by kind and ID.

        Args:
            kind: Entity kind
            entity_id: The ID of the entity to retrieve

        Returns:
            The entity if found, None otherwise

        Raises:
            StoreError: If the backing store fails
        """
        pass

    @abc.abstractmethod
    async def save(self, entity: Any) -> Any:
        """
        Save an entity, creating or replacing it.

        Args:
            entity: The entity to save

        Returns:
            The saved entity

        Raises:
            StoreError: If the backing store fails
        """
        pass

    @abc.abstractmethod
    async def query(self, kind: str, filter: Optional[Dict[str, Any]] = None) -> List[Any]:
        """
        Find entities of a kind whose top-level fields equal the filter values.

        Args:
            kind: Entity kind
            filter: Mapping of field name to required (serialized) value

        Returns:
            Matching entities

        Raises:
            StoreError: If the backing store fails
        """
        pass
