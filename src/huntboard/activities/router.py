"""Activity router: /api/v1/activities/* endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from huntboard.activities.schemas import ActivityResponse, RecordActivityRequest, SubmitFindingRequest
from huntboard.activities.service import list_feed, record, submit_finding
from huntboard.auth.dependencies import get_current_profile
from huntboard.database import get_session
from huntboard.db.models import Activity, Profile

router = APIRouter(prefix="/api/v1/activities", tags=["Activities"])


def _activity_response(activity: Activity, author_name: str | None = None) -> ActivityResponse:
    return ActivityResponse(
        id=activity.id,
        user_id=activity.user_id,
        author_name=author_name,
        action_type=activity.action_type,
        details=activity.details,
        link=activity.link,
        created_at=activity.created_at,
    )


@router.get("", response_model=list[ActivityResponse])
async def feed(
    limit: int = Query(50, ge=1, le=200),
    _profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_session),
) -> list[ActivityResponse]:
    """Newest-first team feed."""
    items = await list_feed(db, limit)
    return [_activity_response(item.activity, item.author_name) for item in items]


@router.post("", response_model=ActivityResponse, status_code=201)
async def create_activity(
    body: RecordActivityRequest,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_session),
) -> ActivityResponse:
    """Post a BUG, LAB or TIP entry to the feed."""
    activity = await record(db, profile.id, body.action_type, body.details, body.link)
    return _activity_response(activity, profile.name)


@router.post("/findings", response_model=ActivityResponse, status_code=201)
async def create_finding(
    body: SubmitFindingRequest,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_session),
) -> ActivityResponse:
    """Submit a vulnerability finding (recorded as a BUG activity)."""
    activity = await submit_finding(db, profile.id, body.title, body.type, body.intensity, body.link)
    return _activity_response(activity, profile.name)
