"""Response schemas for profile endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class ProfileResponse(BaseModel):
    """Full profile as seen by its owner or an admin."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    avatar_url: str | None
    status: str
    role: str
    banned: bool
    bonus_hunting_hours: float
    bonus_researching_hours: float
    bonus_bug_count: int
    last_heartbeat_at: datetime | None
    created_at: datetime
