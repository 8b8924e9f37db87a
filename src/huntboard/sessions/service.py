"""Session state machine.

States per user: OFFLINE -> ACTIVE(type) -> PAUSED -> (ACTIVE(type) | CLOSED)
CLOSED is not a lingering state: closing always lands the user in OFFLINE.

Rules:
- At most one open session (end_time IS NULL) per user. The database enforces
  this with a partial unique index; the checks here only keep the common path
  cheap. A concurrent duplicate start loses at the index and becomes
  SessionAlreadyOpen.
- Closing is a conditional UPDATE guarded by ``end_time IS NULL``, so two
  concurrent stops close the row once and the loser is a no-op.
- Pausing is presentation-only: status becomes IDLE but the row stays open
  and duration keeps accruing from start_time.
- Switching type closes the open session exactly as stop would, then opens
  a new one. start_time is never rewritten in place.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.expression import Exists

from huntboard.activities.service import append_activity
from huntboard.config import get_settings
from huntboard.db.models import SESSION_TYPES, Profile, WorkSession
from huntboard.errors import Forbidden, InvalidInput, SessionAlreadyOpen
from huntboard.profiles.service import require_profile
from huntboard.realtime.events import publish_change, row_to_dict
from huntboard.sessions.duration import as_utc, compute_duration_minutes, elapsed_seconds, utcnow

logger = structlog.get_logger()

SESSION_START_DETAILS: dict[str, str] = {
    "HUNTING": "Start Hunting",
    "RESEARCHING": "Intel Gain",
}

ACTIVE_STATUSES = frozenset({"HUNTING", "RESEARCHING", "IDLE"})


@dataclass
class StopResult:
    session_id: str
    session_type: str
    start_time: datetime
    end_time: datetime
    duration_minutes: int


@dataclass
class CurrentSession:
    """Server-authoritative projection a reconnecting client restores from."""

    session_id: str
    session_type: str
    start_time: datetime
    elapsed_seconds: int
    profile_status: str

    @property
    def paused(self) -> bool:
        return self.profile_status == "IDLE"


@dataclass
class HeartbeatResult:
    last_heartbeat_at: datetime
    session_open: bool


async def get_open_session(db: AsyncSession, user_id: str) -> WorkSession | None:
    """The user's open session, if any."""
    result = await db.execute(
        select(WorkSession).where(
            WorkSession.user_id == user_id,
            WorkSession.end_time.is_(None),
        )
    )
    return result.scalar_one_or_none()


async def _close_session(db: AsyncSession, session: WorkSession, now: datetime) -> int | None:
    """Close ``session`` if it is still open. Returns the duration, or None if already closed."""
    duration = compute_duration_minutes(session.start_time, now)
    result = await db.execute(
        update(WorkSession)
        .where(WorkSession.id == session.id, WorkSession.end_time.is_(None))
        .values(end_time=now, duration_minutes=duration)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        return None
    return duration


def _set_status(profile: Profile, status: str, now: datetime) -> bool:
    if profile.status == status:
        return False
    profile.status = status
    profile.updated_at = now
    return True


def _open_session_exists(user_id: str, session_type: str | None = None) -> Exists:
    query = select(WorkSession.id).where(WorkSession.user_id == user_id, WorkSession.end_time.is_(None))
    if session_type is not None:
        query = query.where(WorkSession.type == session_type)
    return query.exists()


async def _set_status_guarded(
    db: AsyncSession,
    user_id: str,
    status: str,
    now: datetime,
    *,
    session_open: bool,
    session_type: str | None = None,
) -> bool:
    """Write the status only while the open-session condition still holds in the store.

    A stale read of the session row must never leave the status out of step
    with the session lifecycle, so the check and the write are one UPDATE.
    """
    guard = _open_session_exists(user_id, session_type)
    result = await db.execute(
        update(Profile)
        .where(Profile.id == user_id, Profile.status != status, guard if session_open else ~guard)
        .values(status=status, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


async def start_session(
    db: AsyncSession,
    user_id: str,
    session_type: str,
    *,
    now: datetime | None = None,
) -> WorkSession:
    """Open a new typed session for the user.

    Raises:
        NotFound: No such user.
        Forbidden: The user is banned. Checked before any input validation.
        InvalidInput: Unknown session type.
        SessionAlreadyOpen: A session of the same type is already open, or a
            concurrent start won the race.
    """
    profile = await require_profile(db, user_id)
    if profile.banned:
        raise Forbidden("Banned users cannot start sessions")

    if session_type not in SESSION_TYPES:
        raise InvalidInput(f"Invalid session type: {session_type}")

    now = now or utcnow()
    closed: WorkSession | None = None

    open_session = await get_open_session(db, user_id)
    if open_session is not None:
        if open_session.type == session_type:
            raise SessionAlreadyOpen(open_session.id)
        # Type switch: close exactly as stop_session would
        if await _close_session(db, open_session, now) is not None:
            closed = open_session

    session = WorkSession(user_id=user_id, type=session_type, start_time=now)
    db.add(session)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        existing = await get_open_session(db, user_id)
        logger.info("duplicate_session_start_rejected", user_id=user_id, session_type=session_type)
        raise SessionAlreadyOpen(existing.id if existing else None) from None

    _set_status(profile, session_type, now)
    activity = await append_activity(
        db, user_id, "TIP", SESSION_START_DETAILS[session_type], now=now,
    )
    await db.commit()

    logger.info(
        "session_started",
        user_id=user_id,
        session_id=session.id,
        session_type=session_type,
        switched_from=closed.id if closed else None,
    )

    if closed is not None:
        await db.refresh(closed)
        await publish_change("sessions", "UPDATE", new=row_to_dict(closed))
    await publish_change("sessions", "INSERT", new=row_to_dict(session))
    await publish_change("activities", "INSERT", new=row_to_dict(activity))
    await publish_change("profiles", "UPDATE", new=row_to_dict(profile))
    return session


async def pause_session(
    db: AsyncSession,
    user_id: str,
    *,
    now: datetime | None = None,
) -> WorkSession | None:
    """Show the user as IDLE without closing the session. No-op without an open session."""
    profile = await require_profile(db, user_id)
    open_session = await get_open_session(db, user_id)
    if open_session is None:
        return None

    changed = await _set_status_guarded(db, user_id, "IDLE", now or utcnow(), session_open=True)
    await db.commit()
    await db.refresh(profile)
    if changed:
        await publish_change("profiles", "UPDATE", new=row_to_dict(profile))
    elif profile.status != "IDLE":
        # Closed concurrently
        return None
    return open_session


async def resume_session(
    db: AsyncSession,
    user_id: str,
    *,
    now: datetime | None = None,
) -> WorkSession | None:
    """Return a paused user to the open session's type. No-op without an open session."""
    profile = await require_profile(db, user_id)
    open_session = await get_open_session(db, user_id)
    if open_session is None:
        return None

    changed = await _set_status_guarded(
        db, user_id, open_session.type, now or utcnow(), session_open=True, session_type=open_session.type,
    )
    await db.commit()
    await db.refresh(profile)
    if changed:
        await publish_change("profiles", "UPDATE", new=row_to_dict(profile))
    elif profile.status != open_session.type:
        return None
    return open_session


@dataclass
class PendingStop:
    """A stop applied to the current transaction but not yet committed."""

    profile: Profile
    session: WorkSession | None
    duration: int | None
    status_changed: bool
    now: datetime

    @property
    def result(self) -> StopResult | None:
        if self.session is None or self.duration is None:
            return None
        return StopResult(
            session_id=self.session.id,
            session_type=self.session.type,
            start_time=as_utc(self.session.start_time),
            end_time=as_utc(self.now),
            duration_minutes=self.duration,
        )


async def prepare_stop(db: AsyncSession, user_id: str, now: datetime) -> PendingStop:
    """Close the open session and reconcile the status to OFFLINE, without committing.

    The status only moves to OFFLINE if no session is open once the close has
    run. When a concurrent switch closed the row first and opened another one,
    the new session keeps its status.
    """
    profile = await require_profile(db, user_id)

    open_session = await get_open_session(db, user_id)
    duration = None
    if open_session is not None:
        duration = await _close_session(db, open_session, now)
        if duration is None:
            open_session = None

    status_changed = await _set_status_guarded(db, user_id, "OFFLINE", now, session_open=False)
    return PendingStop(
        profile=profile,
        session=open_session,
        duration=duration,
        status_changed=status_changed,
        now=now,
    )


async def finish_stop(db: AsyncSession, pending: PendingStop) -> StopResult | None:
    """Publish the changes of a committed stop."""
    await db.refresh(pending.profile)
    if pending.status_changed:
        await publish_change("profiles", "UPDATE", new=row_to_dict(pending.profile))
    result = pending.result
    if result is None:
        return None

    await db.refresh(pending.session)
    logger.info(
        "session_stopped",
        user_id=pending.profile.id,
        session_id=result.session_id,
        duration_minutes=result.duration_minutes,
    )
    await publish_change("sessions", "UPDATE", new=row_to_dict(pending.session))
    return result


async def stop_session(
    db: AsyncSession,
    user_id: str,
    *,
    now: datetime | None = None,
) -> StopResult | None:
    """Close the user's open session and set them OFFLINE.

    Idempotent: with no open session (never started, already stopped, or a
    concurrent stop got there first) nothing is closed and None is returned.
    The status is still reconciled to OFFLINE unless another session is open.
    """
    pending = await prepare_stop(db, user_id, now or utcnow())
    await db.commit()
    return await finish_stop(db, pending)


async def resume_on_reconnect(
    db: AsyncSession,
    user_id: str,
    *,
    now: datetime | None = None,
) -> CurrentSession | None:
    """Rebuild the client's view of the open session after attach or reload.

    Read-only. Every tab and device derives its elapsed timer from the same
    stored start_time, so they converge without client-side state.
    """
    profile = await require_profile(db, user_id)
    open_session = await get_open_session(db, user_id)
    if open_session is None:
        return None

    return CurrentSession(
        session_id=open_session.id,
        session_type=open_session.type,
        start_time=as_utc(open_session.start_time),
        elapsed_seconds=elapsed_seconds(open_session.start_time, now or utcnow()),
        profile_status=profile.status,
    )


async def heartbeat(
    db: AsyncSession,
    user_id: str,
    *,
    now: datetime | None = None,
) -> HeartbeatResult:
    """Touch the profile's liveness timestamp. Never touches session rows."""
    profile = await require_profile(db, user_id)
    now = now or utcnow()
    profile.last_heartbeat_at = now
    await db.commit()

    open_session = await get_open_session(db, user_id)
    return HeartbeatResult(last_heartbeat_at=now, session_open=open_session is not None)


def is_silently_disconnected(
    profile: Profile,
    now: datetime | None = None,
    stale_after_seconds: int | None = None,
) -> bool:
    """True when a profile claims to be working but has stopped heartbeating."""
    if profile.status not in ACTIVE_STATUSES:
        return False
    if profile.last_heartbeat_at is None:
        return True
    if stale_after_seconds is None:
        stale_after_seconds = get_settings().heartbeat_stale_after_seconds
    now = now or utcnow()
    return as_utc(now) - as_utc(profile.last_heartbeat_at) > timedelta(seconds=stale_after_seconds)


async def find_silent_profiles(
    db: AsyncSession,
    *,
    now: datetime | None = None,
) -> list[Profile]:
    """Profiles in an active status whose heartbeat has gone stale."""
    result = await db.execute(
        select(Profile).where(Profile.status.in_(ACTIVE_STATUSES)).order_by(Profile.id)
    )
    return [p for p in result.scalars().all() if is_silently_disconnected(p, now)]


async def get_session_history(
    db: AsyncSession,
    user_id: str,
    limit: int = 20,
) -> list[WorkSession]:
    """Most recent sessions for a user, newest first."""
    result = await db.execute(
        select(WorkSession)
        .where(WorkSession.user_id == user_id)
        .order_by(WorkSession.start_time.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


