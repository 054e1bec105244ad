"""Async database handle: engine, session factory, and lifecycle.

Uses SQLAlchemy 2.0 async with the asyncpg driver for PostgreSQL. One
Database object is built by the application entry point and passed to the
request store; nothing in the package reaches for a module-level engine.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

logger = logging.getLogger(__name__)


class Database:
    """Owns the async engine and hands out sessions.

    Usage:
        db = Database(settings.db.database_url)
        await db.connect()
        async with db.transaction() as session:
            ...
        await db.close()
    """

    def __init__(self, url: str, *, create_tables: bool = False, **engine_options: Any) -> None:
        self._url = url
        self._create_tables = create_tables
        self._engine_options = engine_options
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def is_connected(self) -> bool:
        return self._engine is not None

    async def connect(self) -> None:
        """Create the engine and verify connectivity. Safe to call more than once.

        In production, tables are created via Alembic migrations; with
        ``create_tables`` the schema is created on connect (development, tests).
        """
        if self._engine is not None:
            return

        engine = create_async_engine(self._url, **self._engine_options)
        async with engine.begin() as conn:
            if self._create_tables:
                # Import here to ensure all models are registered with Base.metadata
                from vatwatch.models import Base

                await conn.run_sync(Base.metadata.create_all)

        self._engine = engine
        self._session_factory = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        logger.info("Database connected")

    async def close(self) -> None:
        """Dispose the engine. Safe to call when not connected."""
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._session_factory = None
        logger.info("Database closed")

    def _factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            msg = "Database is not connected; call connect() first"
            raise RuntimeError(msg)
        return self._session_factory

    @contextlib.asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Yield a session for reads and single-statement writes."""
        async with self._factory()() as session:
            yield session

    @contextlib.asynccontextmanager
    async def transaction(self) -> AsyncGenerator[AsyncSession, None]:
        """Yield a session inside one transaction.

        Commits when the block exits normally, rolls back on any exception.
        """
        async with self._factory()() as session, session.begin():
            yield session


@contextlib.asynccontextmanager
async def db_lifespan(database: Database) -> AsyncGenerator[Database, None]:
    """Context manager for database lifecycle.

    Usage in FastAPI lifespan:
        @asynccontextmanager
        async def lifespan(app: FastAPI):
            async with db_lifespan(database):
                yield
    """
    await database.connect()
    try:
        yield database
    finally:
        await database.close()
