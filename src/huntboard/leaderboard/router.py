"""Leaderboard router: /api/v1/leaderboard."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from huntboard.auth.dependencies import get_current_profile
from huntboard.database import get_session
from huntboard.db.models import Profile
from huntboard.leaderboard.aggregator import RankingsSnapshot, aggregator
from huntboard.leaderboard.schemas import LeaderboardEntryResponse, LeaderboardResponse

router = APIRouter(prefix="/api/v1/leaderboard", tags=["Leaderboard"])


def snapshot_response(snapshot: RankingsSnapshot) -> LeaderboardResponse:
    return LeaderboardResponse(
        sort=snapshot.sort_key,
        entries=[LeaderboardEntryResponse.model_validate(e) for e in snapshot.entries],
        stale=snapshot.stale,
        computed_at=snapshot.computed_at,
    )


@router.get("", response_model=LeaderboardResponse)
async def get_leaderboard(
    sort: str = Query("hunting_hours", description="hunting_hours | researching_hours | bug_count"),
    _profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_session),
) -> LeaderboardResponse:
    """Freshly recomputed rankings; falls back to the last good rankings if the store fails."""
    snapshot = await aggregator.get_rankings(db, sort)
    return snapshot_response(snapshot)
