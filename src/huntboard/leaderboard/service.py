"""Leaderboard derivation.

Formulas (per user):
- hunting_hours     = sum(closed HUNTING duration_minutes) / 60 + bonus_hunting_hours
- researching_hours = sum(closed RESEARCHING duration_minutes) / 60 + bonus_researching_hours
- bug_count         = count(BUG activities) + bonus_bug_count

Always a full re-derivation from sessions, activities and profile bonus
fields. Nothing here is persisted. Ordering is descending by the sort key,
ties broken by ascending user id, so equal inputs always give equal output.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from huntboard.db.models import Activity, Profile, WorkSession
from huntboard.errors import InvalidInput

SORT_KEYS = ("hunting_hours", "researching_hours", "bug_count")


@dataclass(frozen=True)
class LeaderboardEntry:
    user_id: str
    name: str
    avatar_url: str | None
    status: str
    hunting_hours: float
    researching_hours: float
    bug_count: int
    rank: int = 0


def validate_sort_key(sort_key: str) -> str:
    if sort_key not in SORT_KEYS:
        raise InvalidInput(f"Unknown sort key: {sort_key}. Valid keys: {list(SORT_KEYS)}")
    return sort_key


def derive_entry(
    profile: Profile,
    hunting_minutes: int = 0,
    researching_minutes: int = 0,
    bug_activities: int = 0,
) -> LeaderboardEntry:
    """Combine organic totals with the profile's bonus offsets."""
    return LeaderboardEntry(
        user_id=profile.id,
        name=profile.name,
        avatar_url=profile.avatar_url,
        status=profile.status,
        hunting_hours=hunting_minutes / 60 + (profile.bonus_hunting_hours or 0.0),
        researching_hours=researching_minutes / 60 + (profile.bonus_researching_hours or 0.0),
        bug_count=bug_activities + (profile.bonus_bug_count or 0),
    )


def build_entries(
    profiles: Iterable[Profile],
    minutes_by_user_type: Mapping[tuple[str, str], int],
    bugs_by_user: Mapping[str, int],
) -> list[LeaderboardEntry]:
    """Pure derivation of unranked entries from aggregated source rows."""
    return [
        derive_entry(
            profile,
            hunting_minutes=minutes_by_user_type.get((profile.id, "HUNTING"), 0),
            researching_minutes=minutes_by_user_type.get((profile.id, "RESEARCHING"), 0),
            bug_activities=bugs_by_user.get(profile.id, 0),
        )
        for profile in profiles
    ]


def rank_entries(entries: Iterable[LeaderboardEntry], sort_key: str) -> list[LeaderboardEntry]:
    """Sort by ``sort_key`` descending, then user id ascending, and assign 1-based ranks."""
    validate_sort_key(sort_key)
    ordered = sorted(entries, key=lambda e: (-getattr(e, sort_key), e.user_id))
    return [replace(entry, rank=i + 1) for i, entry in enumerate(ordered)]


async def fetch_entries(db: AsyncSession) -> list[LeaderboardEntry]:
    """Aggregate the source tables and derive one unranked entry per profile."""
    profiles_result = await db.execute(select(Profile).order_by(Profile.id))
    profiles = list(profiles_result.scalars().all())

    minutes_result = await db.execute(
        select(
            WorkSession.user_id,
            WorkSession.type,
            func.coalesce(func.sum(WorkSession.duration_minutes), 0).label("minutes"),
        )
        .where(WorkSession.end_time.isnot(None))
        .group_by(WorkSession.user_id, WorkSession.type)
    )
    minutes = {(row.user_id, row.type): int(row.minutes) for row in minutes_result}

    bugs_result = await db.execute(
        select(Activity.user_id, func.count(Activity.id).label("bugs"))
        .where(Activity.action_type == "BUG")
        .group_by(Activity.user_id)
    )
    bugs = {row.user_id: int(row.bugs) for row in bugs_result}

    return build_entries(profiles, minutes, bugs)


async def compute_rankings(db: AsyncSession, sort_key: str = "hunting_hours") -> list[LeaderboardEntry]:
    """Fresh, deterministic ranking for ``sort_key``."""
    validate_sort_key(sort_key)
    return rank_entries(await fetch_entries(db), sort_key)
