"""Session router: /api/v1/sessions/* endpoints.

Duplicate starts and stops without an open session are answered with a
normal 200 describing the no-op. Bans and unknown users still surface as
errors through the global handlers.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from huntboard.auth.dependencies import get_current_profile
from huntboard.config import get_settings
from huntboard.database import get_session
from huntboard.db.models import Profile
from huntboard.errors import SessionAlreadyOpen
from huntboard.sessions.duration import format_elapsed
from huntboard.sessions.schemas import (
    CurrentSessionResponse,
    HeartbeatResponse,
    SessionResponse,
    StartSessionRequest,
    StartSessionResponse,
    StatusResponse,
    StopSessionResponse,
)
from huntboard.sessions.service import (
    get_session_history,
    heartbeat,
    pause_session,
    resume_on_reconnect,
    resume_session,
    start_session,
    stop_session,
)

router = APIRouter(prefix="/api/v1/sessions", tags=["Sessions"])


@router.post("/start", response_model=StartSessionResponse)
async def start(
    body: StartSessionRequest,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_session),
) -> StartSessionResponse:
    """Start (or switch to) a HUNTING or RESEARCHING session."""
    try:
        session = await start_session(db, profile.id, body.type)
    except SessionAlreadyOpen as e:
        await db.refresh(profile)
        return StartSessionResponse(session_id=e.session_id, type=body.type, created=False, status=profile.status)
    return StartSessionResponse(session_id=session.id, type=session.type, created=True, status=session.type)


@router.post("/pause", response_model=StatusResponse)
async def pause(
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_session),
) -> StatusResponse:
    session = await pause_session(db, profile.id)
    return StatusResponse(status=profile.status, session_id=session.id if session else None)


@router.post("/resume", response_model=StatusResponse)
async def resume(
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_session),
) -> StatusResponse:
    session = await resume_session(db, profile.id)
    return StatusResponse(status=profile.status, session_id=session.id if session else None)


@router.post("/stop", response_model=StopSessionResponse)
async def stop(
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_session),
) -> StopSessionResponse:
    """Close the open session. Safe to call repeatedly."""
    result = await stop_session(db, profile.id)
    if result is None:
        return StopSessionResponse(stopped=False, status=profile.status)
    return StopSessionResponse(
        stopped=True,
        session_id=result.session_id,
        duration_minutes=result.duration_minutes,
        status=profile.status,
    )


@router.get("/current", response_model=CurrentSessionResponse)
async def current(
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_session),
) -> CurrentSessionResponse:
    """Restore the session timer after a reload or on another device."""
    current_session = await resume_on_reconnect(db, profile.id)
    if current_session is None:
        return CurrentSessionResponse(active=False, status=profile.status)
    return CurrentSessionResponse(
        active=True,
        session_id=current_session.session_id,
        type=current_session.session_type,
        start_time=current_session.start_time,
        elapsed_seconds=current_session.elapsed_seconds,
        elapsed=format_elapsed(current_session.elapsed_seconds),
        paused=current_session.paused,
        status=current_session.profile_status,
    )


@router.post("/heartbeat", response_model=HeartbeatResponse)
async def beat(
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_session),
) -> HeartbeatResponse:
    result = await heartbeat(db, profile.id)
    return HeartbeatResponse(
        last_heartbeat_at=result.last_heartbeat_at,
        session_open=result.session_open,
        interval_seconds=get_settings().heartbeat_interval_seconds,
    )


@router.get("/history", response_model=list[SessionResponse])
async def history(
    limit: int = Query(20, ge=1, le=100),
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_session),
) -> list[SessionResponse]:
    sessions = await get_session_history(db, profile.id, limit)
    return [SessionResponse.model_validate(s) for s in sessions]
