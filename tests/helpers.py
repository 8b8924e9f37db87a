"""Test data helpers shared across test modules."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from huntboard.auth.jwt import create_access_token
from huntboard.db.models import Profile

T0 = datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)


def at(seconds: float) -> datetime:
    """A fixed instant ``seconds`` after T0, so durations are exact."""
    return T0 + timedelta(seconds=seconds)


async def make_profile(
    db: AsyncSession,
    user_id: str,
    name: str | None = None,
    *,
    role: str = "user",
    banned: bool = False,
    bonus_hunting_hours: float = 0.0,
    bonus_researching_hours: float = 0.0,
    bonus_bug_count: int = 0,
) -> Profile:
    """Insert a profile directly, as first sight through the identity provider would."""
    profile = Profile(
        id=user_id,
        name=name or user_id,
        status="OFFLINE",
        role=role,
        banned=banned,
        bonus_hunting_hours=bonus_hunting_hours,
        bonus_researching_hours=bonus_researching_hours,
        bonus_bug_count=bonus_bug_count,
        created_at=T0,
        updated_at=T0,
    )
    db.add(profile)
    await db.commit()
    return profile


def auth_headers(user_id: str, name: str | None = None) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id, name=name)}"}
