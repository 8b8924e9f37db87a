"""ORM models for the dashboard tables.

The partial unique index on ``sessions`` is what enforces a single open
session per user; every state-machine write relies on it.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from huntboard.db.base import Base

STATUSES = ("HUNTING", "RESEARCHING", "IDLE", "OFFLINE")
SESSION_TYPES = ("HUNTING", "RESEARCHING")
ACTION_TYPES = ("BUG", "LAB", "TIP")
ROLES = ("user", "admin")


def _uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


class Profile(Base):
    """Per-user profile: live status, role, ban flag and bonus offsets."""

    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    avatar_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="OFFLINE", server_default="OFFLINE")
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="user", server_default="user")
    banned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    bonus_hunting_hours: Mapped[float] = mapped_column(Float, nullable=False, default=0.0, server_default="0")
    bonus_researching_hours: Mapped[float] = mapped_column(Float, nullable=False, default=0.0, server_default="0")
    bonus_bug_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_heartbeat_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    sessions: Mapped[list[WorkSession]] = relationship("WorkSession", back_populates="profile")
    activities: Mapped[list[Activity]] = relationship("Activity", back_populates="profile")


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class WorkSession(Base):
    """A timed HUNTING or RESEARCHING session. Open while end_time is NULL."""

    __tablename__ = "sessions"
    __table_args__ = (
        Index(
            "uq_sessions_one_open_per_user",
            "user_id",
            unique=True,
            postgresql_where=text("end_time IS NULL"),
            sqlite_where=text("end_time IS NULL"),
        ),
        Index("idx_sessions_user_id", "user_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)

    profile: Mapped[Profile] = relationship("Profile", back_populates="sessions")


# ---------------------------------------------------------------------------
# Activities
# ---------------------------------------------------------------------------


class Activity(Base):
    """Immutable feed record. BUG rows feed the bug-count leaderboard metric."""

    __tablename__ = "activities"
    __table_args__ = (
        Index("idx_activities_created_at", "created_at"),
        Index("idx_activities_user_type", "user_id", "action_type"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    action_type: Mapped[str] = mapped_column(String(8), nullable=False)
    details: Mapped[str] = mapped_column(Text, nullable=False)
    link: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    profile: Mapped[Profile] = relationship("Profile", back_populates="activities")


# ---------------------------------------------------------------------------
# Admin audit trail
# ---------------------------------------------------------------------------


class AdminAction(Base):
    """Append-only record of every privileged mutation."""

    __tablename__ = "admin_actions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[str] = mapped_column(String(36), nullable=False)
    target_user_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
