"""Admin override layer.

Rules:
- Every operation requires the caller's role to be ``admin``.
- Every mutation writes an ``admin_actions`` audit row in the same
  transaction as the change it describes.
- Bonus values are clamped to >= 0 and written in one UPDATE, so the
  leaderboard never sees a half-applied bonus set.
- Banning does not close open sessions. ``force_close_session`` is the
  explicit admin close.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from huntboard.activities.service import get_activity
from huntboard.db.models import ROLES, Activity, AdminAction, Profile, WorkSession
from huntboard.errors import Forbidden, InvalidInput
from huntboard.profiles.service import list_profiles, require_profile
from huntboard.realtime.events import publish_change, row_to_dict
from huntboard.sessions.duration import utcnow
from huntboard.sessions.service import StopResult, find_silent_profiles, finish_stop, prepare_stop

logger = structlog.get_logger()

BONUS_FIELDS = ("bonus_hunting_hours", "bonus_researching_hours", "bonus_bug_count")


@dataclass
class ResetResult:
    user_id: str
    sessions_deleted: int
    bug_activities_deleted: int


def require_admin(actor: Profile) -> None:
    if actor.role != "admin":
        raise Forbidden("Admin role required")


def clamp_bonus(field: str, value: float | int) -> float | int:
    """Clamp a bonus value to >= 0. Bug counts are whole numbers."""
    if field not in BONUS_FIELDS:
        raise InvalidInput(f"Unknown bonus field: {field}")
    if not math.isfinite(value):
        raise InvalidInput(f"{field} must be a finite number")
    if field == "bonus_bug_count":
        return max(0, int(value))
    return max(0.0, float(value))


def _audit(
    db: AsyncSession,
    actor: Profile,
    action: str,
    target_user_id: str | None,
    details: dict[str, Any] | None = None,
) -> None:
    db.add(AdminAction(
        actor_id=actor.id,
        target_user_id=target_user_id,
        action=action,
        details=details or {},
        created_at=utcnow(),
    ))


async def set_bonus(
    db: AsyncSession,
    actor: Profile,
    user_id: str,
    fields: dict[str, float | int | None],
) -> Profile:
    """Set any subset of the three bonus fields atomically."""
    require_admin(actor)
    values = {k: clamp_bonus(k, v) for k, v in fields.items() if v is not None}
    if not values:
        raise InvalidInput("No bonus fields given")

    target = await require_profile(db, user_id)
    await db.execute(
        update(Profile)
        .where(Profile.id == user_id)
        .values(**values, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    _audit(db, actor, "set_bonus", user_id, values)
    await db.commit()
    await db.refresh(target)

    logger.info("bonus_set", actor_id=actor.id, user_id=user_id, **values)
    await publish_change("profiles", "UPDATE", new=row_to_dict(target))
    return target


async def reset_raw_data(
    db: AsyncSession,
    actor: Profile,
    user_id: str,
    *,
    confirm: bool = False,
) -> ResetResult:
    """Delete all of a user's sessions and BUG activities. Irreversible.

    Only bonus-derived totals remain afterwards. The user is set OFFLINE
    since any open session is deleted with the rest.
    """
    require_admin(actor)
    if not confirm:
        raise InvalidInput("Resetting raw data is irreversible and requires confirm=true")

    target = await require_profile(db, user_id)

    session_ids = list((await db.execute(
        select(WorkSession.id).where(WorkSession.user_id == user_id)
    )).scalars().all())
    bug_ids = list((await db.execute(
        select(Activity.id).where(Activity.user_id == user_id, Activity.action_type == "BUG")
    )).scalars().all())

    await db.execute(
        delete(WorkSession)
        .where(WorkSession.user_id == user_id)
        .execution_options(synchronize_session=False)
    )
    await db.execute(
        delete(Activity)
        .where(Activity.user_id == user_id, Activity.action_type == "BUG")
        .execution_options(synchronize_session=False)
    )
    target.status = "OFFLINE"
    target.updated_at = utcnow()

    result = ResetResult(
        user_id=user_id,
        sessions_deleted=len(session_ids),
        bug_activities_deleted=len(bug_ids),
    )
    _audit(db, actor, "reset_raw_data", user_id, {
        "sessions_deleted": result.sessions_deleted,
        "bug_activities_deleted": result.bug_activities_deleted,
    })
    await db.commit()

    logger.warning(
        "raw_data_reset",
        actor_id=actor.id,
        user_id=user_id,
        sessions_deleted=result.sessions_deleted,
        bug_activities_deleted=result.bug_activities_deleted,
    )
    for session_id in session_ids:
        await publish_change("sessions", "DELETE", old={"id": session_id, "user_id": user_id})
    for activity_id in bug_ids:
        await publish_change("activities", "DELETE", old={"id": activity_id, "user_id": user_id})
    await publish_change("profiles", "UPDATE", new=row_to_dict(target))
    return result


async def set_role(db: AsyncSession, actor: Profile, user_id: str, role: str) -> Profile:
    require_admin(actor)
    if role not in ROLES:
        raise InvalidInput(f"Invalid role: {role}")
    target = await require_profile(db, user_id)
    previous = target.role
    target.role = role
    target.updated_at = utcnow()
    _audit(db, actor, "set_role", user_id, {"from": previous, "to": role})
    await db.commit()

    logger.info("role_set", actor_id=actor.id, user_id=user_id, role=role)
    await publish_change("profiles", "UPDATE", new=row_to_dict(target))
    return target


async def set_banned(db: AsyncSession, actor: Profile, user_id: str, banned: bool) -> Profile:
    """Toggle the ban flag. Open sessions are left as they are."""
    require_admin(actor)
    target = await require_profile(db, user_id)
    target.banned = banned
    target.updated_at = utcnow()
    _audit(db, actor, "set_banned", user_id, {"banned": banned})
    await db.commit()

    logger.info("ban_set", actor_id=actor.id, user_id=user_id, banned=banned)
    await publish_change("profiles", "UPDATE", new=row_to_dict(target))
    return target


async def delete_activity(db: AsyncSession, actor: Profile, activity_id: str) -> Activity:
    """Remove a single feed entry."""
    require_admin(actor)
    activity = await get_activity(db, activity_id)
    snapshot = row_to_dict(activity)
    await db.delete(activity)
    _audit(db, actor, "delete_activity", activity.user_id, {
        "activity_id": activity_id,
        "action_type": activity.action_type,
    })
    await db.commit()

    logger.info("activity_deleted", actor_id=actor.id, activity_id=activity_id)
    await publish_change("activities", "DELETE", old=snapshot)
    return activity


async def force_close_session(db: AsyncSession, actor: Profile, user_id: str) -> StopResult | None:
    """Close a user's open session on their behalf (e.g. after a ban)."""
    require_admin(actor)
    pending = await prepare_stop(db, user_id, utcnow())
    result = pending.result
    _audit(db, actor, "force_close_session", user_id, {
        "session_id": result.session_id if result else None,
        "duration_minutes": result.duration_minutes if result else None,
    })
    await db.commit()
    return await finish_stop(db, pending)


async def list_all_profiles(db: AsyncSession, actor: Profile) -> list[Profile]:
    require_admin(actor)
    return await list_profiles(db)


async def list_silent_profiles(db: AsyncSession, actor: Profile) -> list[Profile]:
    """Profiles that look active but stopped heartbeating."""
    require_admin(actor)
    return await find_silent_profiles(db)


async def list_audit_log(db: AsyncSession, actor: Profile, limit: int = 100) -> list[AdminAction]:
    require_admin(actor)
    result = await db.execute(
        select(AdminAction).order_by(AdminAction.created_at.desc(), AdminAction.id.desc()).limit(limit)
    )
    return list(result.scalars().all())
