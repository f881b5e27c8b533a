"""Tests for the injectable clocks (fab_kernel/domain/clock.py)."""

from datetime import datetime, timedelta, timezone

import pytest

from fab_kernel.domain.clock import DeterministicClock, SystemClock

IST = timezone(timedelta(hours=5, minutes=30))


class TestDeterministicClock:

    def test_stable_until_advanced(self):
        clock = DeterministicClock(datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc))
        assert clock.now() == clock.now()
        assert clock.advance(90) == datetime(2024, 3, 1, 9, 1, 30, tzinfo=timezone.utc)
        assert clock.now() == datetime(2024, 3, 1, 9, 1, 30, tzinfo=timezone.utc)

    def test_advance_by_timedelta(self):
        clock = DeterministicClock(datetime(2024, 3, 1, tzinfo=timezone.utc))
        clock.advance(timedelta(days=1))
        assert clock.now().day == 2

    def test_never_moves_backwards(self):
        clock = DeterministicClock()
        with pytest.raises(ValueError):
            clock.advance(-1)

    def test_rejects_naive_start(self):
        with pytest.raises(ValueError):
            DeterministicClock(datetime(2024, 3, 1))

    def test_now_utc_converts(self):
        clock = DeterministicClock(datetime(2024, 3, 1, 10, 30, tzinfo=IST))
        assert clock.now_utc() == datetime(2024, 3, 1, 5, 0, tzinfo=timezone.utc)
        assert clock.now_utc().tzinfo == timezone.utc


def test_system_clock_is_aware():
    assert SystemClock().now().tzinfo is not None
