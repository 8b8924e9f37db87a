"""Bridges table change events on Redis pub/sub to local state and WebSocket clients.

For every event:
1. merge the row into the local profiles/activities view,
2. forward the event to clients subscribed to that table,
3. recompute the leaderboard from the database and push it.

Events may arrive duplicated or out of order across tables. Step 3 never
reads the payload, so the pushed rankings are always consistent with the
store at the time of the recompute.

When the subscription drops, the bridge backs off, resubscribes, and then
reloads the local view from the database, since events published while it
was away are gone.
"""

import asyncio
import json
from collections.abc import Callable
from dataclasses import asdict

import redis.asyncio as aioredis
import structlog
from pydantic import ValidationError
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from huntboard.database import get_session_factory
from huntboard.leaderboard.aggregator import LeaderboardAggregator, aggregator
from huntboard.leaderboard.service import SORT_KEYS
from huntboard.realtime.events import WATCHED_TABLES, ChangeEvent, channel_for
from huntboard.realtime.manager import ConnectionManager, manager
from huntboard.realtime.state import LiveState, live_state

logger = structlog.get_logger()

# Bonus edits arrive as profile updates, so profiles count too
RANKING_TABLES = frozenset({"sessions", "activities", "profiles"})


def leaderboard_message(agg: LeaderboardAggregator) -> dict:
    """All three rankings from the aggregator's current entries."""
    rankings = {}
    stale = agg.stale
    for key in SORT_KEYS:
        snapshot = agg.snapshot(key)
        rankings[key] = [asdict(e) for e in snapshot.entries]
    return {"type": "leaderboard", "stale": stale, "rankings": rankings}


class RealtimeBridge:
    """Subscribes to per-table change channels and reconciles local view state."""

    def __init__(
        self,
        redis_client: aioredis.Redis,
        agg: LeaderboardAggregator | None = None,
        state: LiveState | None = None,
        connections: ConnectionManager | None = None,
        *,
        session_factory: Callable[[], async_sessionmaker[AsyncSession]] = get_session_factory,
        reconnect_delay: float = 1.0,
        max_reconnect_delay: float = 30.0,
    ) -> None:
        self.redis = redis_client
        self.aggregator = agg or aggregator
        self.state = state or live_state
        self.connections = connections or manager
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay
        self._session_factory = session_factory
        self._running = False
        self._failures = 0
        self._resync_pending = False
        self._channels = {channel_for(table): table for table in WATCHED_TABLES}

    async def handle_event(self, event: ChangeEvent) -> None:
        """Merge, forward and recompute for one change event."""
        self.state.apply(event)
        await self.connections.broadcast_to_channel(event.table, {"type": "change", **event.model_dump()})

        if event.table in RANKING_TABLES:
            await self.push_leaderboard()

    async def push_leaderboard(self) -> None:
        await self.aggregator.refresh()
        if not self.aggregator.has_entries:
            return
        sent = await self.connections.broadcast_to_channel("leaderboard", leaderboard_message(self.aggregator))
        if sent > 0:
            logger.debug("leaderboard_pushed", recipients=sent, stale=self.aggregator.stale)

    async def resync(self) -> None:
        """Reload the local view after missed events and push fresh snapshots to subscribers."""
        try:
            async with self._session_factory()() as db:
                await self.state.load(db)
        except SQLAlchemyError:
            logger.warning("realtime_resync_failed", exc_info=True)
        else:
            await self.connections.broadcast_to_channel(
                "profiles", {"type": "snapshot", "rows": self.state.profiles_snapshot()},
            )
            await self.connections.broadcast_to_channel(
                "activities", {"type": "snapshot", "rows": self.state.feed_snapshot()},
            )
        await self.push_leaderboard()

    def _parse(self, message: dict) -> ChangeEvent | None:
        redis_channel = message.get("channel", "")
        if isinstance(redis_channel, bytes):
            redis_channel = redis_channel.decode()
        table = self._channels.get(redis_channel)
        if table is None:
            return None

        try:
            data = message.get("data", b"")
            if isinstance(data, bytes):
                data = data.decode()
            event = ChangeEvent.model_validate(json.loads(data))
        except (json.JSONDecodeError, UnicodeDecodeError, ValidationError):
            logger.warning("realtime_invalid_message", channel=redis_channel)
            return None

        if event.table != table:
            logger.warning("realtime_table_mismatch", channel=redis_channel, table=event.table)
            return None
        return event

    async def _listen(self) -> None:
        pubsub = self.redis.pubsub()
        try:
            await pubsub.subscribe(*self._channels.keys())
            logger.info("realtime_bridge_started", channels=list(self._channels.keys()))
            self._failures = 0
            if self._resync_pending:
                self._resync_pending = False
                await self.resync()

            while self._running:
                message = await pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=1.0,
                )
                if message is None:
                    continue
                event = self._parse(message)
                if event is None:
                    continue
                try:
                    await self.handle_event(event)
                except Exception:
                    logger.exception("realtime_event_failed", table=event.table, row_id=event.row_id)
        finally:
            try:
                await pubsub.unsubscribe()
                await pubsub.close()
            except (RedisError, OSError):
                logger.debug("realtime_pubsub_close_failed", exc_info=True)

    async def start(self) -> None:
        """Listen to the table channels until stop() is called, resubscribing after Redis failures."""
        self._running = True
        try:
            while self._running:
                try:
                    await self._listen()
                except (RedisError, OSError):
                    if not self._running:
                        break
                    # Exponential backoff: 1s, 2s, 4s ... capped
                    delay = min(self.reconnect_delay * 2 ** self._failures, self.max_reconnect_delay)
                    self._failures += 1
                    self._resync_pending = True
                    logger.warning("realtime_bridge_disconnected", retry_in=delay, exc_info=True)
                    await asyncio.sleep(delay)
        except asyncio.CancelledError:
            pass
        finally:
            logger.info("realtime_bridge_stopped")

    async def stop(self) -> None:
        """Signal the bridge to stop."""
        self._running = False
