"""
Async SQLAlchemy engine, sessions and upsert helpers.

Every writer on the webhook path (event store, call upserts, job claims,
lead upserts) relies on database unique constraints plus
``INSERT ... ON CONFLICT`` instead of read-then-write checks, so
``insert_for`` returns the dialect insert that supports those clauses.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import JSON, MetaData
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.config import get_settings
from app.shared.logging import get_logger

logger = get_logger(__name__)

# JSONB on PostgreSQL, plain JSON elsewhere (sqlite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_N_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)


def _engine_options(database_url: str, echo: bool) -> dict[str, Any]:
    if database_url.startswith("sqlite"):
        # Writers from several sessions wait on the file lock instead of failing
        return {"echo": echo, "connect_args": {"timeout": 30}}
    return {"echo": echo, "pool_pre_ping": True, "pool_size": 5, "max_overflow": 10}


class DatabaseManager:
    """Owns the engine and hands out transactional sessions.

    The request path uses ``get_db_session``; the post-ack intake and job
    handlers open their own short transactions with ``session()``.
    """

    def __init__(self, database_url: str | None = None) -> None:
        self._database_url = database_url or get_settings().database_url
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = create_async_engine(
                self._database_url,
                **_engine_options(self._database_url, get_settings().debug),
            )
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = async_sessionmaker(
                bind=self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
                autoflush=False,
            )
        return self._session_factory

    def use_session_factory(self, factory: async_sessionmaker[AsyncSession]) -> None:
        """Bind the manager to an existing session factory (tests, embedding)."""
        self._session_factory = factory

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """One unit of work: commit on success, roll back on error."""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_tables(self) -> None:
        """Create missing tables from the model metadata (non-production bootstrap)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables ensured", extra={"tables": len(Base.metadata.tables)})

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None


_db_manager: DatabaseManager | None = None


def get_database_manager() -> DatabaseManager:
    """Return the process-wide database manager."""
    global _db_manager
    if _db_manager is None:
        _db_manager = DatabaseManager()
    return _db_manager


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a request-scoped session."""
    async with get_database_manager().session() as session:
        yield session


def insert_for(session: AsyncSession, model: Any) -> Any:
    """Return a dialect-specific INSERT supporting ON CONFLICT clauses."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"Upsert not supported for dialect {dialect!r}")


__all__ = [
    "Base",
    "DatabaseManager",
    "JSONType",
    "get_database_manager",
    "get_db_session",
    "insert_for",
]
