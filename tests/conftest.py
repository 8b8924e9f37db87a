"""Shared test fixtures.

Tests run against in-memory SQLite (aiosqlite) with Redis left uninitialized:
change events are dropped and rate limiting passes requests through.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator

os.environ.setdefault("HUNTBOARD_DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("HUNTBOARD_LOG_FORMAT", "console")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession  # noqa: E402

from huntboard.config import get_settings  # noqa: E402
from huntboard.database import close_db, get_engine, get_session_factory, init_db  # noqa: E402
from huntboard.db import models  # noqa: E402, F401
from huntboard.db.base import Base  # noqa: E402
from huntboard.leaderboard.aggregator import aggregator  # noqa: E402
from huntboard.realtime.manager import manager  # noqa: E402
from huntboard.realtime.state import live_state  # noqa: E402

get_settings.cache_clear()


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory database with the full schema."""
    await init_db("sqlite+aiosqlite://")
    eng = get_engine()
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await close_db()


@pytest_asyncio.fixture
async def db_session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """A database session bound to the test database."""
    async with get_session_factory()() as session:
        yield session


@pytest.fixture(autouse=True)
def reset_live_singletons() -> None:
    """Module-level realtime state must not leak between tests."""
    aggregator._entries = None
    aggregator._computed_at = None
    aggregator._stale = False
    aggregator._retry_task = None
    live_state.profiles = {}
    live_state.activities = []
    manager._connections.clear()
    manager._channels.clear()
    manager._user_connections.clear()


@pytest_asyncio.fixture
async def client(engine: AsyncEngine) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app, sharing the test database."""
    from huntboard.main import create_app

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
