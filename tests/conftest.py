"""Shared fixtures: an in-memory SQLite database and the request store on top."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.pool import StaticPool

from vatwatch.db.engine import Database
from vatwatch.store.requests import RequestStore


@pytest_asyncio.fixture
async def database() -> AsyncGenerator[Database, None]:
    """Fresh schema per test; StaticPool keeps the single memory connection alive."""
    db = Database(
        "sqlite+aiosqlite://",
        create_tables=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await db.connect()
    try:
        yield db
    finally:
        await db.close()


@pytest_asyncio.fixture
async def store(database: Database) -> RequestStore:
    return RequestStore(database, expiration_days=90)


@pytest.fixture
def notifier() -> AsyncMock:
    """Notifier double; both methods succeed unless a test sets a side_effect."""
    mock = AsyncMock()
    mock.notify = AsyncMock()
    mock.notify_admin = AsyncMock()
    return mock
