"""Profile lookup and first-sight creation."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from huntboard.db.models import Profile
from huntboard.errors import NotFound
from huntboard.realtime.events import publish_change, row_to_dict
from huntboard.sessions.duration import utcnow

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


async def get_profile(db: AsyncSession, user_id: str) -> Profile | None:
    """Get a profile by user id."""
    result = await db.execute(select(Profile).where(Profile.id == user_id))
    return result.scalar_one_or_none()


async def require_profile(db: AsyncSession, user_id: str) -> Profile:
    """Get a profile by user id. Raises NotFound."""
    profile = await get_profile(db, user_id)
    if profile is None:
        raise NotFound(f"User {user_id} not found")
    return profile


async def ensure_profile(
    db: AsyncSession,
    user_id: str,
    name: str | None = None,
    avatar_url: str | None = None,
) -> Profile:
    """Return the user's profile, creating it on first sight.

    Accounts are created by the identity provider, so the first
    authenticated request is where the profile row comes into existence.
    Two concurrent first requests race on the primary key; the loser
    re-reads the winner's row.
    """
    profile = await get_profile(db, user_id)
    if profile is not None:
        return profile

    now = utcnow()
    profile = Profile(
        id=user_id,
        name=(name or f"Operator-{user_id[:8]}")[:64],
        avatar_url=avatar_url,
        status="OFFLINE",
        role="user",
        banned=False,
        bonus_hunting_hours=0.0,
        bonus_researching_hours=0.0,
        bonus_bug_count=0,
        created_at=now,
        updated_at=now,
    )
    db.add(profile)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        return await require_profile(db, user_id)

    logger.info("profile_created", user_id=user_id)
    await publish_change("profiles", "INSERT", new=row_to_dict(profile))
    return profile


async def list_profiles(db: AsyncSession) -> list[Profile]:
    """All profiles, oldest first."""
    result = await db.execute(select(Profile).order_by(Profile.created_at, Profile.id))
    return list(result.scalars().all())
