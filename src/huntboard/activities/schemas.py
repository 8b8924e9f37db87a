"""Request/response schemas for activity endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class RecordActivityRequest(BaseModel):
    action_type: Literal["BUG", "LAB", "TIP"]
    details: str = Field(..., min_length=1)
    link: str | None = None


class SubmitFindingRequest(BaseModel):
    """Bug submission form: title, vulnerability type, severity, optional link."""

    title: str = Field(..., min_length=1, max_length=200)
    type: str
    intensity: str
    link: str | None = None


class ActivityResponse(BaseModel):
    id: str
    user_id: str
    author_name: str | None = None
    action_type: str
    details: str
    link: str | None
    created_at: datetime
