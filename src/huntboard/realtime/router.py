"""WebSocket endpoint with identity-token authentication and table channels."""

import json
import uuid
from dataclasses import asdict

import structlog
from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from jwt import InvalidTokenError

from huntboard.auth.jwt import verify_token
from huntboard.errors import TransientStoreError
from huntboard.leaderboard.aggregator import aggregator
from huntboard.leaderboard.service import SORT_KEYS
from huntboard.realtime.manager import manager
from huntboard.realtime.state import live_state

logger = structlog.get_logger()

router = APIRouter()


def channel_snapshot(channel: str) -> dict | None:
    """Current view for a freshly subscribed channel, or None if there is nothing to send."""
    if channel == "profiles":
        return {"type": "snapshot", "rows": live_state.profiles_snapshot()}
    if channel == "activities":
        return {"type": "snapshot", "rows": live_state.feed_snapshot()}
    if channel == "leaderboard":
        try:
            rankings = {key: [asdict(e) for e in aggregator.snapshot(key).entries] for key in SORT_KEYS}
        except TransientStoreError:
            return None
        return {"type": "leaderboard", "stale": aggregator.stale, "rankings": rankings}
    return None


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: str = Query(...),
) -> None:
    """Single WebSocket endpoint multiplexing the dashboard's live tables.

    Protocol:
        Client -> Server:
            {"action": "subscribe", "channel": "activities"}
            {"action": "unsubscribe", "channel": "activities"}
            {"action": "ping"}

        Server -> Client:
            {"channel": "activities", "data": {"type": "change", ...}}
            {"channel": "activities", "data": {"type": "snapshot", "rows": [...]}}
            {"type": "pong"}
            {"type": "error", "message": "..."}
            {"type": "subscribed", "channel": "activities"}
            {"type": "unsubscribed", "channel": "activities"}
    """
    try:
        payload = verify_token(token)
        user_id = str(payload["sub"])
    except InvalidTokenError as e:
        await websocket.close(code=4001, reason=f"Authentication failed: {e}")
        return

    if not manager.can_accept(user_id):
        await websocket.close(code=4008, reason="Too many connections")
        return

    conn_id = str(uuid.uuid4())
    await manager.connect(websocket, conn_id, user_id)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                await websocket.send_json({"type": "error", "message": "Invalid JSON"})
                continue
            if not isinstance(msg, dict):
                await websocket.send_json({"type": "error", "message": "Expected a JSON object"})
                continue

            action = msg.get("action")

            if action == "subscribe":
                channel = msg.get("channel", "")
                if await manager.subscribe(conn_id, channel):
                    await websocket.send_json({"type": "subscribed", "channel": channel})
                    snapshot = channel_snapshot(channel)
                    if snapshot is not None:
                        await websocket.send_text(json.dumps({"channel": channel, "data": snapshot}, default=str))
                else:
                    await websocket.send_json({
                        "type": "error",
                        "message": f"Invalid channel: {channel}",
                    })

            elif action == "unsubscribe":
                channel = msg.get("channel", "")
                await manager.unsubscribe(conn_id, channel)
                await websocket.send_json({"type": "unsubscribed", "channel": channel})

            elif action == "ping":
                await websocket.send_json({"type": "pong"})

            else:
                await websocket.send_json({
                    "type": "error",
                    "message": f"Unknown action: {action}",
                })

    except WebSocketDisconnect:
        await manager.disconnect(conn_id)
    except Exception:
        logger.exception("ws_error", conn_id=conn_id)
        await manager.disconnect(conn_id)
