"""Request/response schemas for session endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict


class StartSessionRequest(BaseModel):
    type: Literal["HUNTING", "RESEARCHING"]


class StartSessionResponse(BaseModel):
    """``created`` is False when a matching session was already open (duplicate start)."""

    session_id: str | None
    type: str
    created: bool
    status: str


class StopSessionResponse(BaseModel):
    """``stopped`` is False when there was no open session to close."""

    stopped: bool
    session_id: str | None = None
    duration_minutes: int | None = None
    status: str


class StatusResponse(BaseModel):
    status: str
    session_id: str | None = None


class CurrentSessionResponse(BaseModel):
    active: bool
    session_id: str | None = None
    type: str | None = None
    start_time: datetime | None = None
    elapsed_seconds: int = 0
    elapsed: str = "00:00:00"
    paused: bool = False
    status: str


class HeartbeatResponse(BaseModel):
    last_heartbeat_at: datetime
    session_open: bool
    interval_seconds: int


class SessionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    type: str
    start_time: datetime
    end_time: datetime | None
    duration_minutes: int | None
