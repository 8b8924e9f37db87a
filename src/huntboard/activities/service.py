"""Activity log writer.

Append-only. The ban check is done here against the stored profile, so no
client can bypass it. BUG records feed the bug-count leaderboard metric;
every insert is published as a change event, which is what triggers the
leaderboard's recomputation.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from urllib.parse import urlparse

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from huntboard.config import get_settings
from huntboard.db.models import ACTION_TYPES, Activity, Profile
from huntboard.errors import Forbidden, InvalidInput, NotFound
from huntboard.profiles.service import require_profile
from huntboard.realtime.events import publish_change, row_to_dict
from huntboard.sessions.duration import utcnow

logger = structlog.get_logger()

VULNERABILITY_TYPES = ("XSS", "SQLi", "SSRF", "CSRF", "IDOR", "RCE", "LFI/RFI", "XXE", "Other")
SEVERITIES = ("Critical", "High", "Medium", "Low", "Info")


@dataclass
class FeedItem:
    activity: Activity
    author_name: str


def validate_details(details: str | None) -> str:
    """Strip and require non-empty details."""
    cleaned = (details or "").strip()
    if not cleaned:
        raise InvalidInput("Activity details must not be empty")
    max_length = get_settings().activity_details_max_length
    if len(cleaned) > max_length:
        raise InvalidInput(f"Activity details exceed {max_length} characters")
    return cleaned


def validate_link(link: str | None) -> str | None:
    """Empty links become None; anything else must be an absolute http(s) URL."""
    if link is None or not link.strip():
        return None
    cleaned = link.strip()
    parsed = urlparse(cleaned)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidInput(f"Malformed link: {cleaned}")
    return cleaned


async def append_activity(
    db: AsyncSession,
    user_id: str,
    action_type: str,
    details: str,
    link: str | None = None,
    *,
    now: datetime | None = None,
) -> Activity:
    """Add an activity row to the current transaction without committing."""
    activity = Activity(
        user_id=user_id,
        action_type=action_type,
        details=details,
        link=link,
        created_at=now or utcnow(),
    )
    db.add(activity)
    await db.flush()
    return activity


async def require_author(db: AsyncSession, user_id: str, action_type: str) -> Profile:
    """The stored profile of an activity's author. Raises Forbidden if banned."""
    profile = await require_profile(db, user_id)
    if profile.banned:
        logger.info("banned_activity_rejected", user_id=user_id, action_type=action_type)
        raise Forbidden("Banned users cannot post activities")
    return profile


async def record(
    db: AsyncSession,
    user_id: str,
    action_type: str,
    details: str,
    link: str | None = None,
) -> Activity:
    """Append an activity for ``user_id``.

    Raises:
        NotFound: No such user.
        Forbidden: The author is banned. Checked before the input, and no row is written.
        InvalidInput: Unknown action type, empty details or malformed link.
    """
    await require_author(db, user_id, action_type)
    if action_type not in ACTION_TYPES:
        raise InvalidInput(f"Invalid action type: {action_type}")
    details = validate_details(details)
    link = validate_link(link)

    activity = await append_activity(db, user_id, action_type, details, link)
    await db.commit()

    logger.info("activity_recorded", user_id=user_id, activity_id=activity.id, action_type=action_type)
    await publish_change("activities", "INSERT", new=row_to_dict(activity))
    return activity


def format_finding(title: str, vuln_type: str, severity: str) -> str:
    """Details line for a submitted finding, e.g. ``Login bypass - IDOR (High)``."""
    return f"{title.strip()} - {vuln_type} ({severity})"


async def submit_finding(
    db: AsyncSession,
    user_id: str,
    title: str,
    vuln_type: str,
    severity: str,
    link: str | None = None,
) -> Activity:
    """Record a BUG activity from the finding submission form."""
    await require_author(db, user_id, "BUG")
    if not title or not title.strip():
        raise InvalidInput("Finding title must not be empty")
    if vuln_type not in VULNERABILITY_TYPES:
        raise InvalidInput(f"Unknown vulnerability type: {vuln_type}")
    if severity not in SEVERITIES:
        raise InvalidInput(f"Unknown severity: {severity}")
    return await record(db, user_id, "BUG", format_finding(title, vuln_type, severity), link)


async def list_feed(db: AsyncSession, limit: int | None = None) -> list[FeedItem]:
    """Newest activities with their author's name."""
    if limit is None:
        limit = get_settings().activity_feed_limit
    result = await db.execute(
        select(Activity, Profile.name)
        .join(Profile, Profile.id == Activity.user_id)
        .order_by(Activity.created_at.desc(), Activity.id)
        .limit(limit)
    )
    return [FeedItem(activity=row[0], author_name=row[1]) for row in result.all()]


async def get_activity(db: AsyncSession, activity_id: str) -> Activity:
    """Get an activity by id. Raises NotFound."""
    result = await db.execute(select(Activity).where(Activity.id == activity_id))
    activity = result.scalar_one_or_none()
    if activity is None:
        raise NotFound(f"Activity {activity_id} not found")
    return activity
