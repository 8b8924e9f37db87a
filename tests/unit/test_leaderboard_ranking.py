"""Leaderboard derivation: formulas, bonuses, tie-break and determinism."""

from __future__ import annotations

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from huntboard.activities.service import append_activity
from huntboard.admin.service import reset_raw_data
from huntboard.db.models import WorkSession
from huntboard.errors import InvalidInput
from huntboard.leaderboard.service import LeaderboardEntry, compute_rankings, rank_entries
from huntboard.sessions.service import start_session, stop_session
from tests.helpers import T0, at, make_profile


def _entry(user_id: str, hunting: float = 0.0, researching: float = 0.0, bugs: int = 0) -> LeaderboardEntry:
    return LeaderboardEntry(
        user_id=user_id,
        name=user_id,
        avatar_url=None,
        status="OFFLINE",
        hunting_hours=hunting,
        researching_hours=researching,
        bug_count=bugs,
    )


async def _closed_session(db: AsyncSession, user_id: str, session_type: str, minutes: int, offset: int = 0) -> None:
    db.add(WorkSession(
        user_id=user_id,
        type=session_type,
        start_time=at(offset),
        end_time=at(offset + minutes * 60),
        duration_minutes=minutes,
    ))
    await db.commit()


class TestRankEntries:
    def test_descending_by_key(self) -> None:
        ranked = rank_entries([_entry("a", hunting=1), _entry("b", hunting=3), _entry("c", hunting=2)], "hunting_hours")
        assert [e.user_id for e in ranked] == ["b", "c", "a"]
        assert [e.rank for e in ranked] == [1, 2, 3]

    def test_ties_broken_by_user_id(self) -> None:
        ranked = rank_entries([_entry("zed", bugs=2), _entry("amy", bugs=2), _entry("kim", bugs=5)], "bug_count")
        assert [e.user_id for e in ranked] == ["kim", "amy", "zed"]

    def test_input_order_does_not_matter(self) -> None:
        entries = [_entry("c", researching=1.5), _entry("a", researching=1.5), _entry("b", researching=0.5)]
        assert rank_entries(entries, "researching_hours") == rank_entries(list(reversed(entries)), "researching_hours")

    def test_unknown_key(self) -> None:
        with pytest.raises(InvalidInput):
            rank_entries([], "karma")


class TestComputeRankings:
    async def test_hours_plus_bonus(self, db_session: AsyncSession) -> None:
        """5 organic hours plus a 2 hour bonus shows 7 hours."""
        await make_profile(db_session, "u1", bonus_hunting_hours=2.0)
        await _closed_session(db_session, "u1", "HUNTING", 180)
        await _closed_session(db_session, "u1", "HUNTING", 120, offset=20000)

        entries = await compute_rankings(db_session, "hunting_hours")

        assert entries[0].hunting_hours == pytest.approx(7.0)

    async def test_open_sessions_do_not_count(self, db_session: AsyncSession) -> None:
        await make_profile(db_session, "u1")
        await start_session(db_session, "u1", "HUNTING", now=T0)

        entries = await compute_rankings(db_session)

        assert entries[0].hunting_hours == 0

    async def test_types_are_separate(self, db_session: AsyncSession) -> None:
        await make_profile(db_session, "u1")
        await _closed_session(db_session, "u1", "HUNTING", 60)
        await _closed_session(db_session, "u1", "RESEARCHING", 90, offset=10000)

        entry = (await compute_rankings(db_session))[0]

        assert entry.hunting_hours == pytest.approx(1.0)
        assert entry.researching_hours == pytest.approx(1.5)

    async def test_bug_count_only_counts_bug_rows(self, db_session: AsyncSession) -> None:
        await make_profile(db_session, "u1", bonus_bug_count=3)
        await append_activity(db_session, "u1", "BUG", "one", now=at(0))
        await append_activity(db_session, "u1", "BUG", "two", now=at(1))
        await append_activity(db_session, "u1", "LAB", "lab", now=at(2))
        await append_activity(db_session, "u1", "TIP", "tip", now=at(3))
        await db_session.commit()

        entry = (await compute_rankings(db_session, "bug_count"))[0]

        assert entry.bug_count == 5

    async def test_switch_counts_toward_ranking(self, db_session: AsyncSession) -> None:
        await make_profile(db_session, "u1")
        await start_session(db_session, "u1", "HUNTING", now=at(0))
        await start_session(db_session, "u1", "RESEARCHING", now=at(600))
        await stop_session(db_session, "u1", now=at(1800))

        entry = (await compute_rankings(db_session))[0]

        assert entry.hunting_hours == pytest.approx(10 / 60)
        assert entry.researching_hours == pytest.approx(20 / 60)

    async def test_users_without_activity_rank_at_zero(self, db_session: AsyncSession) -> None:
        await make_profile(db_session, "b")
        await make_profile(db_session, "a")

        entries = await compute_rankings(db_session, "researching_hours")

        assert [(e.user_id, e.rank, e.researching_hours) for e in entries] == [("a", 1, 0.0), ("b", 2, 0.0)]

    async def test_deterministic(self, db_session: AsyncSession) -> None:
        for user_id in ("u3", "u1", "u2"):
            await make_profile(db_session, user_id, bonus_hunting_hours=1.0)
        await _closed_session(db_session, "u2", "HUNTING", 30)

        first = await compute_rankings(db_session)
        second = await compute_rankings(db_session)

        assert first == second
        assert [e.user_id for e in first] == ["u2", "u1", "u3"]

    async def test_reset_leaves_bonus_only(self, db_session: AsyncSession) -> None:
        admin = await make_profile(db_session, "admin", role="admin")
        await make_profile(db_session, "u1", bonus_hunting_hours=2.0, bonus_bug_count=1)
        await _closed_session(db_session, "u1", "HUNTING", 300)
        await append_activity(db_session, "u1", "BUG", "finding", now=at(0))
        await db_session.commit()

        before = {e.user_id: e for e in await compute_rankings(db_session)}
        assert before["u1"].hunting_hours == pytest.approx(7.0)
        assert before["u1"].bug_count == 2

        await reset_raw_data(db_session, admin, "u1", confirm=True)

        after = {e.user_id: e for e in await compute_rankings(db_session)}
        assert after["u1"].hunting_hours == pytest.approx(2.0)
        assert after["u1"].bug_count == 1
