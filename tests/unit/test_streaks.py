"""Unit tests for streak advancement, recomputation and milestones."""

from datetime import date, timedelta

import pytest

from questline.modules.progression.streaks import (
    StreakState,
    advance_streak,
    is_milestone,
    recompute_streak,
)

D = date(2025, 1, 6)


def days(*offsets):
    return [D + timedelta(days=offset) for offset in offsets]


class TestAdvanceStreak:
    def test_first_activity_starts_at_one(self):
        state = advance_streak(StreakState(), D)
        assert state == StreakState(current=1, longest=1, last_date=D)

    def test_consecutive_days_extend(self):
        state = StreakState()
        for day in days(0, 1, 2):
            state = advance_streak(state, day)
        assert state.current == 3
        assert state.longest == 3

    def test_gap_resets_to_one(self):
        state = StreakState()
        for day in days(0, 1, 2, 5):
            state = advance_streak(state, day)
        assert state.current == 1
        assert state.longest == 3
        assert state.last_date == D + timedelta(days=5)

    def test_yesterday_extends_existing_streak(self):
        state = advance_streak(StreakState(5, 5, D - timedelta(days=1)), D)
        assert (state.current, state.longest) == (6, 6)

    def test_same_day_is_unchanged(self):
        before = StreakState(4, 9, D)
        assert advance_streak(before, D) == before

    def test_backfill_keeps_streak_and_last_date(self):
        state = advance_streak(StreakState(3, 3, D), D - timedelta(days=4))
        assert state.current == 3
        assert state.last_date == D

    def test_zero_streak_with_last_date_is_lifted_to_one(self):
        state = advance_streak(StreakState(0, 2, D), D)
        assert state.current == 1
        assert state.longest == 2

    def test_longest_never_decreases(self):
        state = StreakState(current=2, longest=10, last_date=D - timedelta(days=3))
        state = advance_streak(state, D)
        assert state.current == 1
        assert state.longest == 10


class TestRecomputeStreak:
    def test_order_and_duplicates_do_not_matter(self):
        state = recompute_streak(days(0, -2, -1, 0, -1), today=D)
        assert state.current == 3
        assert state.last_date == D

    def test_counts_back_from_latest_date(self):
        state = recompute_streak(days(-1, -2, -5, -6, -7), today=D)
        assert state.current == 2
        assert state.last_date == D - timedelta(days=1)

    def test_stale_latest_date_gives_zero(self):
        state = recompute_streak(days(-2, -3), today=D, longest=4)
        assert state.current == 0
        assert state.longest == 4
        assert state.last_date == D - timedelta(days=2)

    def test_empty_dates(self):
        assert recompute_streak([], today=D, longest=6) == StreakState(0, 6, None)

    def test_longest_grows_from_rebuilt_run(self):
        state = recompute_streak(days(0, -1, -2, -3), today=D, longest=2)
        assert state.longest == 4


class TestMilestones:
    @pytest.mark.parametrize("streak", [7, 14, 21, 30, 100, 700])
    def test_milestones(self, streak):
        assert is_milestone(streak)

    @pytest.mark.parametrize("streak", [-7, 0, 1, 6, 8, 29, 31, 99])
    def test_non_milestones(self, streak):
        assert not is_milestone(streak)

    def test_custom_interval_and_extras(self):
        assert is_milestone(5, interval=5, extra=())
        assert not is_milestone(30, interval=5 * 7, extra=())
        assert is_milestone(3, interval=0, extra=(3,))
