"""Change events published after every committed write.

Wire format on the ``{prefix}:{table}`` Redis channel::

    {"event": "INSERT" | "UPDATE" | "DELETE", "table": "...", "new": {...}, "old": {...} | null}

Delivery is at-least-once and may be reordered across tables. Consumers must
treat payloads as hints and re-derive anything aggregate from the database.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Literal

import structlog
from pydantic import BaseModel
from redis.exceptions import RedisError
from sqlalchemy import inspect

from huntboard.config import get_settings
from huntboard.redis_client import get_redis_or_none

logger = structlog.get_logger()

WATCHED_TABLES = ("profiles", "activities", "sessions")

EventType = Literal["INSERT", "UPDATE", "DELETE"]


class ChangeEvent(BaseModel):
    event: EventType
    table: str
    new: dict[str, Any] | None = None
    old: dict[str, Any] | None = None

    @property
    def row_id(self) -> str | None:
        """Primary key of the affected row, from whichever image is present."""
        row = self.new or self.old or {}
        value = row.get("id")
        return str(value) if value is not None else None


def channel_for(table: str) -> str:
    """Redis channel carrying change events for one table."""
    return f"{get_settings().realtime_channel_prefix}:{table}"


def row_to_dict(obj: object) -> dict[str, Any]:
    """Serialize an ORM row's column attributes to JSON-safe values."""
    mapper = inspect(obj).mapper
    out: dict[str, Any] = {}
    for column in mapper.column_attrs:
        value = getattr(obj, column.key)
        if isinstance(value, datetime):
            value = value.isoformat()
        out[column.key] = value
    return out


async def publish_change(
    table: str,
    event: EventType,
    new: dict[str, Any] | None = None,
    old: dict[str, Any] | None = None,
) -> bool:
    """Publish one change event. Returns False when nothing was sent.

    The write that produced the event is already committed, so a publish
    failure is logged and never rolls anything back.
    """
    redis = get_redis_or_none()
    if redis is None:
        logger.debug("realtime_disabled", change=event, table=table)
        return False

    payload = ChangeEvent(event=event, table=table, new=new, old=old)
    try:
        await redis.publish(channel_for(table), json.dumps(payload.model_dump(), default=str))
    except (RedisError, OSError):
        logger.warning("change_publish_failed", change=event, table=table, exc_info=True)
        return False
    return True
