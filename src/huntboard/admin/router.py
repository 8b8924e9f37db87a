"""Admin router: /api/v1/admin/* endpoints. All require role=admin."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from huntboard.admin.schemas import (
    AdminActionResponse,
    BanUpdateRequest,
    BonusUpdateRequest,
    ForceCloseResponse,
    ResetResponse,
    RoleUpdateRequest,
)
from huntboard.admin.service import (
    delete_activity,
    force_close_session,
    list_all_profiles,
    list_audit_log,
    list_silent_profiles,
    reset_raw_data,
    set_banned,
    set_bonus,
    set_role,
)
from huntboard.auth.dependencies import get_current_profile
from huntboard.database import get_session
from huntboard.db.models import Profile
from huntboard.profiles.schemas import ProfileResponse

router = APIRouter(prefix="/api/v1/admin", tags=["Admin"])


@router.get("/users", response_model=list[ProfileResponse])
async def users(
    actor: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_session),
) -> list[ProfileResponse]:
    return [ProfileResponse.model_validate(p) for p in await list_all_profiles(db, actor)]


@router.get("/users/silent", response_model=list[ProfileResponse])
async def silent_users(
    actor: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_session),
) -> list[ProfileResponse]:
    """Users showing an active status whose heartbeat has gone stale."""
    return [ProfileResponse.model_validate(p) for p in await list_silent_profiles(db, actor)]


@router.patch("/users/{user_id}/bonus", response_model=ProfileResponse)
async def update_bonus(
    user_id: str,
    body: BonusUpdateRequest,
    actor: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_session),
) -> ProfileResponse:
    profile = await set_bonus(db, actor, user_id, body.model_dump(exclude_none=True))
    return ProfileResponse.model_validate(profile)


@router.post("/users/{user_id}/reset", response_model=ResetResponse)
async def reset_user(
    user_id: str,
    confirm: bool = Query(False, description="Must be true; the reset is irreversible"),
    actor: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_session),
) -> ResetResponse:
    """Delete the user's sessions and BUG activities, leaving bonus totals only."""
    result = await reset_raw_data(db, actor, user_id, confirm=confirm)
    return ResetResponse(
        user_id=result.user_id,
        sessions_deleted=result.sessions_deleted,
        bug_activities_deleted=result.bug_activities_deleted,
    )


@router.patch("/users/{user_id}/role", response_model=ProfileResponse)
async def update_role(
    user_id: str,
    body: RoleUpdateRequest,
    actor: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_session),
) -> ProfileResponse:
    return ProfileResponse.model_validate(await set_role(db, actor, user_id, body.role))


@router.patch("/users/{user_id}/banned", response_model=ProfileResponse)
async def update_banned(
    user_id: str,
    body: BanUpdateRequest,
    actor: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_session),
) -> ProfileResponse:
    return ProfileResponse.model_validate(await set_banned(db, actor, user_id, body.banned))


@router.post("/users/{user_id}/close-session", response_model=ForceCloseResponse)
async def close_session(
    user_id: str,
    actor: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_session),
) -> ForceCloseResponse:
    result = await force_close_session(db, actor, user_id)
    if result is None:
        return ForceCloseResponse(closed=False)
    return ForceCloseResponse(closed=True, session_id=result.session_id, duration_minutes=result.duration_minutes)


@router.delete("/activities/{activity_id}", status_code=204)
async def remove_activity(
    activity_id: str,
    actor: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_session),
) -> None:
    await delete_activity(db, actor, activity_id)


@router.get("/audit", response_model=list[AdminActionResponse])
async def audit_log(
    limit: int = Query(100, ge=1, le=500),
    actor: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_session),
) -> list[AdminActionResponse]:
    return [AdminActionResponse.model_validate(a) for a in await list_audit_log(db, actor, limit)]
