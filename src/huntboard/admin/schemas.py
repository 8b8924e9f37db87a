"""Request/response schemas for admin endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict


class BonusUpdateRequest(BaseModel):
    """Any subset of bonus fields. Negative values are clamped to zero."""

    bonus_hunting_hours: float | None = None
    bonus_researching_hours: float | None = None
    bonus_bug_count: int | None = None


class RoleUpdateRequest(BaseModel):
    role: Literal["user", "admin"]


class BanUpdateRequest(BaseModel):
    banned: bool


class ResetResponse(BaseModel):
    user_id: str
    sessions_deleted: int
    bug_activities_deleted: int


class ForceCloseResponse(BaseModel):
    closed: bool
    session_id: str | None = None
    duration_minutes: int | None = None


class AdminActionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    actor_id: str
    target_user_id: str | None
    action: str
    details: dict[str, Any]
    created_at: datetime
