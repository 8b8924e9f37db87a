"""Fail-soft holder for the most recent leaderboard derivation.

Every refresh is a full recompute. When one fails, the previous entries are
kept (marked stale) and a single retry is scheduled on the running loop.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from huntboard.config import get_settings
from huntboard.database import get_session_factory
from huntboard.errors import TransientStoreError
from huntboard.leaderboard.service import LeaderboardEntry, fetch_entries, rank_entries, validate_sort_key
from huntboard.sessions.duration import utcnow

logger = structlog.get_logger()


@dataclass
class RankingsSnapshot:
    sort_key: str
    entries: list[LeaderboardEntry]
    stale: bool
    computed_at: datetime | None


class LeaderboardAggregator:
    """Keeps the last good entries and retries failed recomputes."""

    def __init__(
        self,
        session_factory: Callable[[], async_sessionmaker[AsyncSession]] = get_session_factory,
        retry_delay_seconds: float | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._retry_delay = retry_delay_seconds
        self._entries: list[LeaderboardEntry] | None = None
        self._computed_at: datetime | None = None
        self._stale = False
        self._retry_task: asyncio.Task[None] | None = None

    @property
    def stale(self) -> bool:
        return self._stale

    @property
    def has_entries(self) -> bool:
        return self._entries is not None

    @property
    def retry_pending(self) -> bool:
        return self._retry_task is not None and not self._retry_task.done()

    async def refresh(self, db: AsyncSession | None = None) -> bool:
        """Recompute from the source tables. Returns False (and keeps stale data) on failure."""
        try:
            if db is not None:
                entries = await fetch_entries(db)
            else:
                async with self._session_factory()() as session:
                    entries = await fetch_entries(session)
        except (SQLAlchemyError, OSError, RuntimeError):
            logger.warning("leaderboard_recompute_failed", keep_previous=self._entries is not None, exc_info=True)
            self._stale = True
            self._schedule_retry()
            return False

        self._entries = entries
        self._computed_at = utcnow()
        self._stale = False
        return True

    def snapshot(self, sort_key: str = "hunting_hours") -> RankingsSnapshot:
        """Rank the held entries. Raises TransientStoreError if nothing was ever computed."""
        validate_sort_key(sort_key)
        if self._entries is None:
            raise TransientStoreError("Leaderboard unavailable, try again")
        return RankingsSnapshot(
            sort_key=sort_key,
            entries=rank_entries(self._entries, sort_key),
            stale=self._stale,
            computed_at=self._computed_at,
        )

    async def get_rankings(self, db: AsyncSession | None = None, sort_key: str = "hunting_hours") -> RankingsSnapshot:
        """Recompute on demand, degrading to the previous rankings if the store fails."""
        validate_sort_key(sort_key)
        await self.refresh(db)
        return self.snapshot(sort_key)

    def _schedule_retry(self) -> None:
        if self.retry_pending:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._retry_task = loop.create_task(self._retry_later())

    async def _retry_later(self) -> None:
        delay = self._retry_delay
        if delay is None:
            delay = get_settings().leaderboard_retry_delay_seconds
        await asyncio.sleep(delay)
        self._retry_task = None
        if await self.refresh():
            logger.info("leaderboard_recompute_recovered")

    async def close(self) -> None:
        """Cancel a pending retry."""
        task = self._retry_task
        self._retry_task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass


# Global singleton
aggregator = LeaderboardAggregator()
