"""Tests for the change-event bridge from Redis pub/sub to local state and WebSocket clients."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.ext.asyncio import AsyncSession

from huntboard.leaderboard.aggregator import LeaderboardAggregator
from huntboard.realtime.bridge import RealtimeBridge, leaderboard_message
from huntboard.realtime.events import ChangeEvent
from huntboard.realtime.state import LiveState
from tests.helpers import make_profile


def _mock_redis(messages: list[dict | None]) -> MagicMock:
    """Redis client whose pubsub yields ``messages`` once, then idles."""
    mock_pubsub = AsyncMock()
    remaining = list(messages)

    async def fake_get_message(**kwargs):
        if remaining:
            return remaining.pop(0)
        await asyncio.sleep(0.01)
        return None

    mock_pubsub.get_message = fake_get_message
    mock_pubsub.subscribe = AsyncMock()
    mock_pubsub.unsubscribe = AsyncMock()
    mock_pubsub.close = AsyncMock()
    mock_redis = MagicMock()
    mock_redis.pubsub = MagicMock(return_value=mock_pubsub)
    return mock_redis


def _mock_manager() -> MagicMock:
    mgr = MagicMock()
    mgr.broadcast_to_channel = AsyncMock(return_value=1)
    return mgr


def _mock_aggregator(*, has_entries: bool = True) -> MagicMock:
    agg = MagicMock()
    agg.refresh = AsyncMock(return_value=True)
    agg.has_entries = has_entries
    agg.stale = False
    agg.snapshot = MagicMock(return_value=MagicMock(entries=[]))
    return agg


async def _run_briefly(bridge: RealtimeBridge) -> None:
    async def stop_after_delay():
        await asyncio.sleep(0.1)
        await bridge.stop()

    await asyncio.gather(bridge.start(), stop_after_delay())


class TestBridgeLoop:
    async def test_subscribes_to_table_channels(self) -> None:
        redis = _mock_redis([])
        bridge = RealtimeBridge(redis, _mock_aggregator(), LiveState(), _mock_manager())

        await _run_briefly(bridge)

        pubsub = redis.pubsub.return_value
        pubsub.subscribe.assert_awaited_once_with("realtime:profiles", "realtime:activities", "realtime:sessions")
        pubsub.unsubscribe.assert_awaited_once()
        pubsub.close.assert_awaited_once()

    async def test_activity_insert_is_merged_forwarded_and_reranked(self) -> None:
        event = {
            "event": "INSERT",
            "table": "activities",
            "new": {"id": "a1", "user_id": "u1", "action_type": "BUG", "details": "x", "created_at": "2026-03-02T09:00:00"},
            "old": None,
        }
        redis = _mock_redis([{"type": "message", "channel": "realtime:activities", "data": json.dumps(event)}])
        state = LiveState()
        mgr = _mock_manager()
        agg = _mock_aggregator()
        bridge = RealtimeBridge(redis, agg, state, mgr)

        await _run_briefly(bridge)

        assert [a["id"] for a in state.activities] == ["a1"]
        channels = [call.args[0] for call in mgr.broadcast_to_channel.await_args_list]
        assert channels == ["activities", "leaderboard"]
        forwarded = mgr.broadcast_to_channel.await_args_list[0].args[1]
        assert forwarded["type"] == "change"
        assert forwarded["new"]["id"] == "a1"
        agg.refresh.assert_awaited_once()

    async def test_bytes_payload_decoded(self) -> None:
        event = {"event": "UPDATE", "table": "profiles", "new": {"id": "u1", "status": "IDLE"}, "old": None}
        redis = _mock_redis([{
            "type": "message",
            "channel": b"realtime:profiles",
            "data": json.dumps(event).encode(),
        }])
        state = LiveState()
        bridge = RealtimeBridge(redis, _mock_aggregator(), state, _mock_manager())

        await _run_briefly(bridge)

        assert state.profiles["u1"]["status"] == "IDLE"

    async def test_invalid_message_skipped(self) -> None:
        redis = _mock_redis([
            {"type": "message", "channel": "realtime:activities", "data": "not valid json {{{"},
            {"type": "message", "channel": "realtime:activities", "data": json.dumps({"event": "UPSERT"})},
        ])
        mgr = _mock_manager()
        agg = _mock_aggregator()
        bridge = RealtimeBridge(redis, agg, LiveState(), mgr)

        await _run_briefly(bridge)

        mgr.broadcast_to_channel.assert_not_awaited()
        agg.refresh.assert_not_awaited()

    async def test_unknown_channel_skipped(self) -> None:
        event = {"event": "INSERT", "table": "orders", "new": {"id": "o1"}, "old": None}
        redis = _mock_redis([{"type": "message", "channel": "realtime:orders", "data": json.dumps(event)}])
        mgr = _mock_manager()
        bridge = RealtimeBridge(redis, _mock_aggregator(), LiveState(), mgr)

        await _run_briefly(bridge)

        mgr.broadcast_to_channel.assert_not_awaited()

    async def test_table_mismatch_skipped(self) -> None:
        event = {"event": "INSERT", "table": "sessions", "new": {"id": "s1"}, "old": None}
        redis = _mock_redis([{"type": "message", "channel": "realtime:profiles", "data": json.dumps(event)}])
        mgr = _mock_manager()
        bridge = RealtimeBridge(redis, _mock_aggregator(), LiveState(), mgr)

        await _run_briefly(bridge)

        mgr.broadcast_to_channel.assert_not_awaited()


def _flaky_redis(messages: list[dict]) -> MagicMock:
    """Redis client whose first get_message drops the connection, then yields ``messages``."""
    redis = _mock_redis(messages)
    pubsub = redis.pubsub.return_value
    deliver = pubsub.get_message
    dropped = False

    async def fake_get_message(**kwargs):
        nonlocal dropped
        if not dropped:
            dropped = True
            raise RedisConnectionError("Connection reset by peer")
        return await deliver(**kwargs)

    pubsub.get_message = fake_get_message
    return redis


class TestBridgeRecovery:
    async def test_resubscribes_and_resyncs_after_connection_loss(self, db_session: AsyncSession) -> None:
        await make_profile(db_session, "u1", "Alice")
        event = {
            "event": "INSERT",
            "table": "activities",
            "new": {"id": "a1", "user_id": "u1", "action_type": "TIP", "details": "x", "created_at": "2026-03-02T09:00:00"},
            "old": None,
        }
        redis = _flaky_redis([{"type": "message", "channel": "realtime:activities", "data": json.dumps(event)}])
        state = LiveState()
        mgr = _mock_manager()
        bridge = RealtimeBridge(redis, _mock_aggregator(), state, mgr, reconnect_delay=0.01)

        await _run_briefly(bridge)

        pubsub = redis.pubsub.return_value
        assert pubsub.subscribe.await_count == 2
        # Reloaded from the database after reconnecting, then the delivered event merged on top
        assert state.profiles["u1"]["name"] == "Alice"
        assert [a["id"] for a in state.activities] == ["a1"]
        channels = [call.args[0] for call in mgr.broadcast_to_channel.await_args_list]
        assert channels[:3] == ["profiles", "activities", "leaderboard"]
        assert "activities" in channels[3:]

    async def test_failed_event_does_not_stop_the_loop(self) -> None:
        events = [
            {"event": "UPDATE", "table": "profiles", "new": {"id": f"u{i}", "status": "IDLE"}, "old": None}
            for i in (1, 2)
        ]
        redis = _mock_redis([
            {"type": "message", "channel": "realtime:profiles", "data": json.dumps(e)} for e in events
        ])
        state = LiveState()
        mgr = _mock_manager()
        calls = 0

        async def broadcast(channel: str, message: dict) -> int:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RuntimeError("send failed")
            return 1

        mgr.broadcast_to_channel = AsyncMock(side_effect=broadcast)
        bridge = RealtimeBridge(redis, _mock_aggregator(), state, mgr)

        await _run_briefly(bridge)

        assert set(state.profiles) == {"u1", "u2"}
        assert redis.pubsub.return_value.subscribe.await_count == 1
        assert mgr.broadcast_to_channel.await_count == 3


class TestHandleEvent:
    async def test_no_leaderboard_push_before_first_compute(self) -> None:
        mgr = _mock_manager()
        agg = _mock_aggregator(has_entries=False)
        bridge = RealtimeBridge(MagicMock(), agg, LiveState(), mgr)

        await bridge.handle_event(ChangeEvent(event="INSERT", table="sessions", new={"id": "s1"}))

        assert [call.args[0] for call in mgr.broadcast_to_channel.await_args_list] == ["sessions"]

    async def test_duplicate_events_recompute_from_store(self, db_session: AsyncSession) -> None:
        """Redelivered events never double count: rankings come from the store, not the payload."""
        await make_profile(db_session, "u1", bonus_bug_count=1)
        mgr = _mock_manager()
        agg = LeaderboardAggregator(retry_delay_seconds=60)
        bridge = RealtimeBridge(MagicMock(), agg, LiveState(), mgr)
        event = ChangeEvent(
            event="INSERT",
            table="activities",
            new={"id": "a1", "user_id": "u1", "action_type": "BUG", "details": "x", "created_at": "2026-03-02T09:00:00"},
        )

        await bridge.handle_event(event)
        await bridge.handle_event(event)

        pushed = mgr.broadcast_to_channel.await_args_list[-1].args[1]
        assert pushed["type"] == "leaderboard"
        assert pushed["stale"] is False
        assert [e["bug_count"] for e in pushed["rankings"]["bug_count"]] == [1]


async def test_leaderboard_message_has_all_sort_keys(db_session: AsyncSession) -> None:
    await make_profile(db_session, "u1", bonus_hunting_hours=1.0)
    await make_profile(db_session, "u2", bonus_researching_hours=1.0)
    agg = LeaderboardAggregator(retry_delay_seconds=60)
    await agg.refresh(db_session)

    message = leaderboard_message(agg)

    assert set(message["rankings"]) == {"hunting_hours", "researching_hours", "bug_count"}
    assert [e["user_id"] for e in message["rankings"]["hunting_hours"]] == ["u1", "u2"]
    assert [e["user_id"] for e in message["rankings"]["researching_hours"]] == ["u2", "u1"]
    assert message["rankings"]["hunting_hours"][0]["rank"] == 1
