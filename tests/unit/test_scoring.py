"""
Unit tests for CompletionScorer.

Values come from the packaged YAML balance defaults; overrides are applied
through ConfigManager and cleared by the `config_manager` fixture.
"""

from datetime import datetime, timedelta, timezone

import pytest

from questline.modules.progression.scoring import HabitScoreInput, TaskScoreInput
from questline.modules.shared.exceptions import InvariantViolationError, ValidationError

NOW = datetime(2025, 1, 6, 12, 0, tzinfo=timezone.utc)


def task_input(**overrides):
    values = dict(
        xp_reward=None,
        difficulty="medium",
        priority="medium",
        due_date=None,
        completed_at=NOW,
    )
    values.update(overrides)
    return TaskScoreInput(**values)


def habit_input(**overrides):
    values = dict(
        xp_reward=None,
        difficulty="medium",
        frequency="daily",
        target_days=[],
        streak_after=1,
        total_completions_before=5,
        completions_in_week=0,
    )
    values.update(overrides)
    return HabitScoreInput(**values)


class TestTaskScoring:
    """Test task XP: base table, priority, due date and subtasks."""

    def test_default_medium_task(self, scorer):
        assert scorer.score_task(task_input()) == 25

    def test_hard_high_priority(self, scorer):
        assert scorer.score_task(task_input(difficulty="hard", priority="high")) == 60

    def test_explicit_reward_overrides_table(self, scorer):
        assert scorer.score_task(task_input(xp_reward=40, priority="low")) == 36

    def test_zero_reward_falls_back_to_table(self, scorer):
        assert scorer.score_task(task_input(xp_reward=0, difficulty="easy")) == 10

    def test_unknown_difficulty_uses_default(self, scorer):
        assert scorer.score_task(task_input(difficulty="legendary")) == 25

    def test_early_completion_bonus(self, scorer):
        data = task_input(due_date=NOW + timedelta(days=3))
        assert scorer.score_task(data) == 29

    def test_early_bonus_is_capped(self, scorer):
        data = task_input(due_date=NOW + timedelta(days=10))
        assert scorer.score_task(data) == 30

    def test_late_penalty(self, scorer):
        data = task_input(difficulty="hard", due_date=NOW - timedelta(days=2))
        assert scorer.score_task(data) == 45

    def test_one_hour_late_counts_as_a_day(self, scorer):
        data = task_input(due_date=NOW - timedelta(hours=1))
        assert scorer.days_early(data.due_date, data.completed_at) == -1
        assert scorer.score_task(data) == 24

    def test_late_penalty_is_capped(self, scorer):
        data = task_input(difficulty="extreme", due_date=NOW - timedelta(days=20))
        assert scorer.score_task(data) == 70

    def test_completed_on_due_date_is_neutral(self, scorer):
        assert scorer.due_date_multiplier(NOW + timedelta(hours=5), NOW) == 1.0
        assert scorer.due_date_multiplier(None, NOW) == 1.0

    def test_naive_due_date_is_treated_as_utc(self, scorer):
        naive_due = (NOW + timedelta(days=3)).replace(tzinfo=None)
        assert scorer.days_early(naive_due, NOW) == 3

    def test_subtask_bonus_when_all_done(self, scorer):
        data = task_input(difficulty="hard", subtasks_total=2, subtasks_completed=2)
        assert scorer.score_task(data) == 55

    def test_no_subtask_bonus_when_partial(self, scorer):
        data = task_input(difficulty="hard", subtasks_total=2, subtasks_completed=1)
        assert scorer.score_task(data) == 50

    def test_result_is_clamped_to_cap(self, scorer):
        data = task_input(xp_reward=1_000_000, priority="critical")
        assert scorer.score_task(data) == 1_000_000

    def test_priority_override(self, scorer, config_manager):
        config_manager.set_override("scoring.task.priority_multipliers", {"high": 2.0})
        assert scorer.score_task(task_input(difficulty="hard", priority="high")) == 100
        assert scorer.score_task(task_input(difficulty="hard", priority="medium")) == 50


class TestTaskScoringErrors:
    def test_negative_reward(self, scorer):
        with pytest.raises(InvariantViolationError):
            scorer.score_task(task_input(xp_reward=-5))

    def test_nan_reward(self, scorer):
        with pytest.raises(InvariantViolationError):
            scorer.score_task(task_input(xp_reward=float("nan")))

    def test_non_numeric_reward(self, scorer):
        with pytest.raises(ValidationError):
            scorer.score_task(task_input(xp_reward="lots"))

    def test_negative_factor_in_config(self, scorer, config_manager):
        config_manager.set_override("scoring.task.subtask_bonus", -1)
        data = task_input(subtasks_total=1, subtasks_completed=1)
        with pytest.raises(InvariantViolationError):
            scorer.score_task(data)


class TestHabitScoring:
    """Test habit XP: streak bonus, first completion and weekly target."""

    def test_plain_completion(self, scorer):
        assert scorer.score_habit(habit_input()) == 15

    def test_first_completion_multiplier(self, scorer):
        assert scorer.score_habit(habit_input(total_completions_before=0)) == 23

    def test_streak_bonus(self, scorer):
        data = habit_input(difficulty="hard", streak_after=14)
        assert scorer.score_habit(data) == 31

    def test_streak_bonus_is_capped(self, scorer):
        assert scorer.streak_bonus(700) == pytest.approx(0.30)
        assert scorer.score_habit(habit_input(difficulty="hard", streak_after=700)) == 39

    def test_streak_bonus_below_one_week(self, scorer):
        assert scorer.streak_bonus(6) == 0.0
        assert scorer.streak_bonus(-3) == 0.0

    def test_weekly_target_reached_with_this_completion(self, scorer):
        data = habit_input(frequency="weekly", target_days=[0, 2, 4], completions_in_week=2)
        assert scorer.score_habit(data) == 17

    def test_weekly_target_not_reached(self, scorer):
        data = habit_input(frequency="weekly", target_days=[0, 2, 4], completions_in_week=1)
        assert scorer.score_habit(data) == 15

    def test_daily_habit_needs_seven(self, scorer):
        assert scorer.score_habit(habit_input(completions_in_week=5)) == 15
        assert scorer.score_habit(habit_input(completions_in_week=6)) == 17

    def test_weekly_targets(self, scorer):
        assert scorer.weekly_target("daily", [1, 2]) == 7
        assert scorer.weekly_target("weekly", []) == 3
        assert scorer.weekly_target("custom", [1, 2]) == 2

    def test_explicit_habit_reward(self, scorer):
        assert scorer.score_habit(habit_input(xp_reward=40)) == 40


class TestScorerWithMockConfig:
    def test_falls_back_to_code_defaults(self, mock_config_manager):
        from questline.modules.progression.scoring import CompletionScorer

        scorer = CompletionScorer(mock_config_manager)

        assert scorer.cap == 1_000_000
        assert scorer.score_task(task_input()) == 25
        assert scorer.score_habit(habit_input()) == 15
