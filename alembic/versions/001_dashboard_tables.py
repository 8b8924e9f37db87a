"""Dashboard tables.

Creates profiles, sessions, activities and admin_actions. The partial unique
index on sessions(user_id) WHERE end_time IS NULL is the single-open-session
guarantee the application relies on.

Revision ID: 001_dashboard_tables
Revises:
Create Date: 2026-10-18
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_dashboard_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # Raw SQL with IF NOT EXISTS so partial reruns are harmless

    # --- Profiles ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS profiles (
            id VARCHAR(36) PRIMARY KEY,
            name VARCHAR(64) NOT NULL,
            avatar_url TEXT,
            status VARCHAR(16) NOT NULL DEFAULT 'OFFLINE'
                CHECK (status IN ('HUNTING', 'RESEARCHING', 'IDLE', 'OFFLINE')),
            role VARCHAR(16) NOT NULL DEFAULT 'user' CHECK (role IN ('user', 'admin')),
            banned BOOLEAN NOT NULL DEFAULT FALSE,
            bonus_hunting_hours DOUBLE PRECISION NOT NULL DEFAULT 0 CHECK (bonus_hunting_hours >= 0),
            bonus_researching_hours DOUBLE PRECISION NOT NULL DEFAULT 0 CHECK (bonus_researching_hours >= 0),
            bonus_bug_count INTEGER NOT NULL DEFAULT 0 CHECK (bonus_bug_count >= 0),
            last_heartbeat_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- Sessions ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS sessions (
            id VARCHAR(36) PRIMARY KEY,
            user_id VARCHAR(36) NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            type VARCHAR(16) NOT NULL CHECK (type IN ('HUNTING', 'RESEARCHING')),
            start_time TIMESTAMPTZ NOT NULL,
            end_time TIMESTAMPTZ,
            duration_minutes INTEGER CHECK (duration_minutes >= 0),
            CHECK ((end_time IS NULL) = (duration_minutes IS NULL))
        )
    """)
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS uq_sessions_one_open_per_user
        ON sessions (user_id)
        WHERE end_time IS NULL
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_sessions_user_id ON sessions (user_id)")

    # --- Activities ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS activities (
            id VARCHAR(36) PRIMARY KEY,
            user_id VARCHAR(36) NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            action_type VARCHAR(8) NOT NULL CHECK (action_type IN ('BUG', 'LAB', 'TIP')),
            details TEXT NOT NULL,
            link TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_activities_created_at ON activities (created_at DESC)")
    op.execute("CREATE INDEX IF NOT EXISTS idx_activities_user_type ON activities (user_id, action_type)")

    # --- Admin audit trail ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS admin_actions (
            id SERIAL PRIMARY KEY,
            actor_id VARCHAR(36) NOT NULL,
            target_user_id VARCHAR(36),
            action VARCHAR(32) NOT NULL,
            details JSON NOT NULL DEFAULT '{}',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS admin_actions")
    op.execute("DROP TABLE IF EXISTS activities")
    op.execute("DROP TABLE IF EXISTS sessions")
    op.execute("DROP TABLE IF EXISTS profiles")
