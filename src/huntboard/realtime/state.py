"""Local view state kept in sync by change events.

Holds the profile roster and the newest feed items so WebSocket clients can
get a snapshot on subscribe without a round trip to the database. Merges are
keyed by row id, so redelivered events are harmless.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from huntboard.db.models import Activity, Profile
from huntboard.realtime.events import ChangeEvent, row_to_dict
from huntboard.sessions.duration import as_utc

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Profile columns safe to fan out to every connected client
PUBLIC_PROFILE_FIELDS = (
    "id",
    "name",
    "avatar_url",
    "status",
    "role",
    "banned",
    "bonus_hunting_hours",
    "bonus_researching_hours",
    "bonus_bug_count",
)


def public_profile(row: dict[str, Any]) -> dict[str, Any]:
    return {k: row[k] for k in PUBLIC_PROFILE_FIELDS if k in row}


def _created_at(row: dict[str, Any]) -> datetime:
    value = row.get("created_at")
    if isinstance(value, str) and value:
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            value = None
    if isinstance(value, datetime):
        return as_utc(value)
    return _EPOCH


def feed_order(row: dict[str, Any]) -> tuple[float, str]:
    """Sort key for the feed: newest first, ties by ascending id, the same as list_feed."""
    return (-_created_at(row).timestamp(), str(row.get("id")))


class LiveState:
    """Profiles by id plus a bounded newest-first activity list."""

    def __init__(self, feed_limit: int = 50) -> None:
        self.feed_limit = feed_limit
        self.profiles: dict[str, dict[str, Any]] = {}
        self.activities: list[dict[str, Any]] = []

    async def load(self, db: AsyncSession) -> None:
        """Seed from the database (startup and reconnect)."""
        profiles = (await db.execute(select(Profile))).scalars().all()
        self.profiles = {p.id: public_profile(row_to_dict(p)) for p in profiles}

        activities = (await db.execute(
            select(Activity).order_by(Activity.created_at.desc(), Activity.id).limit(self.feed_limit)
        )).scalars().all()
        self.activities = sorted((row_to_dict(a) for a in activities), key=feed_order)

    def apply(self, event: ChangeEvent) -> bool:
        """Merge one change event. Returns True if local state changed."""
        if event.table == "profiles":
            return self._apply_profile(event)
        if event.table == "activities":
            return self._apply_activity(event)
        return False

    def _apply_profile(self, event: ChangeEvent) -> bool:
        row_id = event.row_id
        if row_id is None:
            return False
        if event.event == "DELETE":
            return self.profiles.pop(row_id, None) is not None

        incoming = public_profile(event.new or {})
        current = self.profiles.get(row_id)
        merged = {**(current or {}), **incoming}
        if merged == current:
            return False
        self.profiles[row_id] = merged
        return True

    def _apply_activity(self, event: ChangeEvent) -> bool:
        row_id = event.row_id
        if row_id is None:
            return False
        existing = next((a for a in self.activities if str(a.get("id")) == row_id), None)
        if event.event == "DELETE":
            if existing is None:
                return False
            self.activities.remove(existing)
            return True

        incoming = dict(event.new or {})
        if existing == incoming:
            return False
        if existing is not None:
            self.activities.remove(existing)
        self.activities.append(incoming)
        self.activities.sort(key=feed_order)
        self.activities = self.activities[: self.feed_limit]
        return True

    def author_name(self, user_id: str) -> str:
        return (self.profiles.get(user_id) or {}).get("name") or "Unknown"

    def feed_snapshot(self) -> list[dict[str, Any]]:
        return [{**a, "author_name": self.author_name(str(a.get("user_id")))} for a in self.activities]

    def profiles_snapshot(self) -> list[dict[str, Any]]:
        return [self.profiles[k] for k in sorted(self.profiles)]


live_state = LiveState()
