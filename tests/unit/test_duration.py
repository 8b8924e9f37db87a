"""Unit tests for session duration arithmetic."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from huntboard.sessions.duration import as_utc, compute_duration_minutes, elapsed_seconds, format_elapsed

START = datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)


class TestComputeDurationMinutes:
    @pytest.mark.parametrize(
        ("delta", "expected"),
        [
            (timedelta(seconds=0), 0),
            (timedelta(seconds=59), 0),
            (timedelta(seconds=60), 1),
            (timedelta(seconds=119), 1),
            (timedelta(minutes=10), 10),
            (timedelta(hours=2, seconds=30), 120),
        ],
    )
    def test_floors_to_whole_minutes(self, delta: timedelta, expected: int) -> None:
        assert compute_duration_minutes(START, START + delta) == expected

    def test_end_before_start_clamps_to_zero(self) -> None:
        assert compute_duration_minutes(START, START - timedelta(minutes=5)) == 0

    def test_naive_stored_start_is_utc(self) -> None:
        naive = START.replace(tzinfo=None)
        assert compute_duration_minutes(naive, START + timedelta(minutes=3)) == 3

    def test_other_timezone_end(self) -> None:
        plus_two = timezone(timedelta(hours=2))
        end = (START + timedelta(minutes=45)).astimezone(plus_two)
        assert compute_duration_minutes(START, end) == 45


class TestElapsed:
    def test_elapsed_seconds(self) -> None:
        assert elapsed_seconds(START, START + timedelta(seconds=125.9)) == 125

    def test_elapsed_never_negative(self) -> None:
        assert elapsed_seconds(START, START - timedelta(seconds=3)) == 0

    @pytest.mark.parametrize(
        ("seconds", "rendered"),
        [(0, "00:00:00"), (59, "00:00:59"), (3725, "01:02:05"), (360000, "100:00:00"), (-4, "00:00:00")],
    )
    def test_format_elapsed(self, seconds: int, rendered: str) -> None:
        assert format_elapsed(seconds) == rendered


def test_as_utc_converts_aware() -> None:
    plus_two = timezone(timedelta(hours=2))
    local = datetime(2026, 3, 2, 11, 0, tzinfo=plus_two)
    assert as_utc(local) == START
    assert as_utc(local).utcoffset() == timedelta(0)
