"""WebSocket endpoint: authentication, protocol and subscribe snapshots."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from huntboard.auth.jwt import create_access_token
from huntboard.main import create_app
from huntboard.realtime.events import ChangeEvent
from huntboard.realtime.manager import manager
from huntboard.realtime.state import live_state


@pytest.fixture
def ws_token() -> str:
    return create_access_token("u1", name="Ada")


@pytest.fixture
def test_client() -> TestClient:
    return TestClient(create_app())


class TestWebSocketAuth:
    def test_invalid_token_closes_4001(self, test_client: TestClient) -> None:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with test_client.websocket_connect("/ws?token=invalid.jwt.token") as ws:
                ws.receive_json()
        assert exc_info.value.code == 4001

    def test_expired_token(self, test_client: TestClient) -> None:
        token = create_access_token("u1", expires_in_minutes=-5)
        with pytest.raises(WebSocketDisconnect):
            with test_client.websocket_connect(f"/ws?token={token}") as ws:
                ws.receive_json()

    def test_connection_limit(self, test_client: TestClient, ws_token: str) -> None:
        manager.max_connections_per_user = 1
        try:
            with test_client.websocket_connect(f"/ws?token={ws_token}") as first:
                first.send_json({"action": "ping"})
                assert first.receive_json() == {"type": "pong"}
                with pytest.raises(WebSocketDisconnect) as exc_info:
                    with test_client.websocket_connect(f"/ws?token={ws_token}") as second:
                        second.receive_json()
                assert exc_info.value.code == 4008
        finally:
            manager.max_connections_per_user = None


class TestProtocol:
    def test_ping_pong(self, test_client: TestClient, ws_token: str) -> None:
        with test_client.websocket_connect(f"/ws?token={ws_token}") as ws:
            ws.send_json({"action": "ping"})
            assert ws.receive_json() == {"type": "pong"}

    def test_invalid_json(self, test_client: TestClient, ws_token: str) -> None:
        with test_client.websocket_connect(f"/ws?token={ws_token}") as ws:
            ws.send_text("not valid json {{{")
            data = ws.receive_json()
            assert data["type"] == "error"
            assert "Invalid JSON" in data["message"]

    def test_unknown_action(self, test_client: TestClient, ws_token: str) -> None:
        with test_client.websocket_connect(f"/ws?token={ws_token}") as ws:
            ws.send_json({"action": "explode"})
            data = ws.receive_json()
            assert data["type"] == "error"
            assert "Unknown action" in data["message"]

    def test_invalid_channel(self, test_client: TestClient, ws_token: str) -> None:
        with test_client.websocket_connect(f"/ws?token={ws_token}") as ws:
            ws.send_json({"action": "subscribe", "channel": "mining"})
            assert ws.receive_json()["type"] == "error"


class TestSnapshots:
    def test_activities_snapshot_on_subscribe(self, test_client: TestClient, ws_token: str) -> None:
        live_state.apply(ChangeEvent(event="INSERT", table="profiles", new={"id": "u1", "name": "Ada"}))
        live_state.apply(ChangeEvent(
            event="INSERT",
            table="activities",
            new={"id": "a1", "user_id": "u1", "action_type": "TIP", "details": "hi", "created_at": "2026-03-02T09:00:00"},
        ))

        with test_client.websocket_connect(f"/ws?token={ws_token}") as ws:
            ws.send_json({"action": "subscribe", "channel": "activities"})
            assert ws.receive_json() == {"type": "subscribed", "channel": "activities"}
            snapshot = ws.receive_json()

        assert snapshot["channel"] == "activities"
        assert snapshot["data"]["type"] == "snapshot"
        assert [(r["id"], r["author_name"]) for r in snapshot["data"]["rows"]] == [("a1", "Ada")]

    def test_leaderboard_without_rankings_sends_no_snapshot(self, test_client: TestClient, ws_token: str) -> None:
        with test_client.websocket_connect(f"/ws?token={ws_token}") as ws:
            ws.send_json({"action": "subscribe", "channel": "leaderboard"})
            assert ws.receive_json() == {"type": "subscribed", "channel": "leaderboard"}
            ws.send_json({"action": "ping"})
            assert ws.receive_json() == {"type": "pong"}

    def test_unsubscribe(self, test_client: TestClient, ws_token: str) -> None:
        with test_client.websocket_connect(f"/ws?token={ws_token}") as ws:
            ws.send_json({"action": "subscribe", "channel": "sessions"})
            assert ws.receive_json()["type"] == "subscribed"
            ws.send_json({"action": "unsubscribe", "channel": "sessions"})
            assert ws.receive_json() == {"type": "unsubscribed", "channel": "sessions"}
