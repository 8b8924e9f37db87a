"""Profile router: /api/v1/profiles/* endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from huntboard.auth.dependencies import get_current_profile
from huntboard.db.models import Profile
from huntboard.profiles.schemas import ProfileResponse

router = APIRouter(prefix="/api/v1/profiles", tags=["Profiles"])


@router.get("/me", response_model=ProfileResponse)
async def get_my_profile(
    profile: Profile = Depends(get_current_profile),
) -> ProfileResponse:
    """Get own profile, including live status."""
    return ProfileResponse.model_validate(profile)
