"""Database engine and session management (SQLAlchemy async, psycopg3 driver).

The engine is created lazily on first use so that importing the package
never opens a connection pool; tests pass their own session factory.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from event_pipeline.core.database import Base
from event_pipeline.core.settings import get_db_settings

if TYPE_CHECKING:
    from event_pipeline.core.settings import PostgresSettings

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def create_engine_from_settings(settings: PostgresSettings | None = None) -> AsyncEngine:
    """Build an async engine from database settings."""
    settings = settings or get_db_settings()
    return create_async_engine(settings.url, **settings.sqlalchemy_engine_kwargs())


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory with the options the relay relies on.

    ``expire_on_commit=False`` keeps row attributes readable after the
    per-row commit.
    """
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_engine() -> AsyncEngine:
    """Return the process-wide engine, creating it on first call."""
    global _engine
    if _engine is None:
        _engine = create_engine_from_settings()
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the process-wide session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = create_session_factory(get_engine())
    return _session_factory


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession]:
    """Get async database session.

    Example:
        async with get_async_session() as session:
            metrics = await OutboxRepository().get_metrics(session, max_attempts=5)
    """
    async with get_session_factory()() as session:
        yield session


async def init_database(engine: AsyncEngine | None = None) -> None:
    """Check connectivity with a trivial query."""
    engine = engine or get_engine()
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    logger.info("Database connection established", extra={"dialect": engine.dialect.name})


async def create_tables(engine: AsyncEngine | None = None) -> None:
    """Create mapped tables that do not exist yet (``checkfirst``).

    For local and ephemeral environments only; production schemas are owned
    by the business service's migrations.
    """
    # Import for the side effect of registering the mapped tables.
    from event_pipeline.infra.events.outbox import models  # noqa: F401

    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all, checkfirst=True)
    logger.info("Ensured pipeline tables exist", extra={"tables": sorted(Base.metadata.tables)})


async def close_database() -> None:
    """Dispose of the process-wide engine, if one was created."""
    global _engine, _session_factory

    if _engine is None:
        return

    logger.info("Closing database connection")
    try:
        await _engine.dispose()
    except Exception as e:
        logger.exception("Error closing database connection", extra={"error": str(e)})
    finally:
        _engine = None
        _session_factory = None
