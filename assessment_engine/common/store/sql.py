"""
SQL Store Module

Async SQLAlchemy implementation of the Store interface. Every entity is kept
as a JSON payload in one table; the fields queries filter on most often
(assessment, student, status) are copied into indexed columns.
"""

from typing import Any, Dict, List, Optional, Type

from sqlalchemy import JSON, MetaData, String, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from assessment_engine.common.error_handling import StoreError
from assessment_engine.common.logger import app_logger
from .base import Store

logger = app_logger.getChild("store.sql")

# Configure naming convention for constraints
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s"
}


class Base(DeclarativeBase):
    """Declarative base with the engine's naming convention"""
    metadata = MetaData(naming_convention=convention)


class EntityRecord(Base):
    """One stored entity"""
    __tablename__ = "engine_entities"

    kind: Mapped[str] = mapped_column(String(32), primary_key=True)
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    payload: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    assessment_id: Mapped[Optional[str]] = mapped_column(String(64), index=True, nullable=True)
    student_id: Mapped[Optional[str]] = mapped_column(String(128), index=True, nullable=True)
    status: Mapped[Optional[str]] = mapped_column(String(32), index=True, nullable=True)


class SQLAlchemyStore(Store):
    """Store backed by an async SQLAlchemy engine"""

    def __init__(
        self,
        database_url: str,
        echo: bool = False,
        entity_types: Optional[Dict[str, Type]] = None
    ):
        """
        Initialize the store.

        Args:
            database_url: Async database URL, e.g. ``sqlite+aiosqlite:///engine.db``
            echo: Whether to echo SQL statements
            entity_types: Mapping of entity kind to entity class
        """
        super().__init__(entity_types)
        self.database_url = database_url
        self.echo = echo
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker] = None

    async def start(self) -> None:
        """Create the engine and the entity table."""
        if self._engine is not None:
            return
        logger.info(f"Initializing SQL store with URL: {self.database_url[:10]}...")
        try:
            self._engine = create_async_engine(self.database_url, echo=self.echo)
            self._session_factory = async_sessionmaker(self._engine, expire_on_commit=False)
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            raise StoreError("Failed to initialize SQL store", cause=e)

    async def close(self) -> None:
        """Dispose of the engine's connection pool."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("SQL store closed")

    def _sessions(self) -> async_sessionmaker:
        if self._session_factory is None:
            raise StoreError("SQL store has not been started")
        return self._session_factory

    async def get(self, kind: str, entity_id: str) -> Optional[Any]:
        try:
            async with self._sessions()() as session:
                record = await session.get(EntityRecord, (kind, entity_id))
                payload = record.payload if record is not None else None
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to load {kind} {entity_id}", cause=e)
        if payload is None:
            return None
        return self._rebuild(kind, payload)

    async def save(self, entity: Any) -> Any:
        kind = entity.ENTITY_KIND
        payload = entity.to_dict()
        columns = {name: payload.get(name) for name in self.INDEXED_FIELDS}
        try:
            async with self._sessions()() as session:
                async with session.begin():
                    record = await session.get(EntityRecord, (kind, entity.id))
                    if record is None:
                        session.add(EntityRecord(kind=kind, id=entity.id, payload=payload, **columns))
                    else:
                        record.payload = payload
                        for name, value in columns.items():
                            setattr(record, name, value)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to save {kind} {entity.id}", cause=e)
        logger.debug(f"Saved {kind} {entity.id}")
        return entity

    async def query(self, kind: str, filter: Optional[Dict[str, Any]] = None) -> List[Any]:
        filter = dict(filter or {})
        statement = select(EntityRecord).where(EntityRecord.kind == kind)
        for name in self.INDEXED_FIELDS:
            if name in filter:
                statement = statement.where(getattr(EntityRecord, name) == filter[name])
        try:
            async with self._sessions()() as session:
                result = await session.execute(statement)
                payloads = [record.payload for record in result.scalars()]
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to query {kind}", cause=e)
        # Non-indexed filter fields are matched against the payload
        return [self._rebuild(kind, payload) for payload in payloads if self._matches(payload, filter)]
