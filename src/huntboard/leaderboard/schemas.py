"""Response schemas for leaderboard endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class LeaderboardEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    rank: int
    user_id: str
    name: str
    avatar_url: str | None
    status: str
    hunting_hours: float
    researching_hours: float
    bug_count: int


class LeaderboardResponse(BaseModel):
    """Rankings for one sort key. ``stale`` is set when the last recompute failed."""

    sort: str
    entries: list[LeaderboardEntryResponse]
    stale: bool
    computed_at: datetime | None
