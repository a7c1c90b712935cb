"""
Completion scoring.

Purpose
-------
Turn a task or habit completion into a non-negative integer XP amount.
Tables and bonus constants are read from ConfigManager under
`scoring.task.*` and `scoring.habit.*`; the packaged YAML defaults carry
the production values.

Rules
-----
Task XP:
    base (xp_reward, else difficulty table) x priority multiplier
    x due-date adjustment (+5%/day early up to +20%, -5%/day late down to -30%)
    x subtask bonus (+10% when every subtask is completed)

Habit XP:
    base (xp_reward, else difficulty table)
    x (1 + min(floor(streak / 7) * 2%, 30%))   using the streak after this completion
    x 1.5 on the very first completion
    x 1.15 when the trailing week meets the weekly target

Both results are rounded half-up and clamped to [0, max_xp_per_event].
Invalid input amounts raise instead of clamping.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Optional, Sequence

from questline.core.database.base import ensure_utc
from questline.core.logging.logger import get_logger
from questline.database.models.enums import HabitFrequency
from questline.modules.shared.exceptions import InvariantViolationError
from questline.modules.shared.formulas import (
    MAX_XP_PER_EVENT,
    round_half_up,
    validate_xp_amount,
)

logger = get_logger(__name__)

SECONDS_PER_DAY = 86_400


@dataclass(frozen=True)
class TaskScoreInput:
    xp_reward: Optional[int]
    difficulty: str
    priority: str
    due_date: Optional[datetime]
    completed_at: datetime
    subtasks_total: int = 0
    subtasks_completed: int = 0

    @property
    def all_subtasks_completed(self) -> bool:
        return self.subtasks_total > 0 and self.subtasks_completed >= self.subtasks_total


@dataclass(frozen=True)
class HabitScoreInput:
    xp_reward: Optional[int]
    difficulty: str
    frequency: str
    target_days: Sequence[int]
    streak_after: int
    total_completions_before: int
    completions_in_week: int


class CompletionScorer:
    """
    Stateless XP calculator backed by balance configuration.

    Examples
    --------
    >>> scorer = CompletionScorer(ConfigManager)
    >>> scorer.score_task(TaskScoreInput(None, "hard", "high", None, now))
    60
    """

    def __init__(self, config_manager: Any) -> None:
        self._config = config_manager

    def _get(self, key: str, default: Any) -> Any:
        return self._config.get(key, default)

    def _factor(self, key: str, default: float) -> float:
        value = self._get(key, default)
        try:
            value = float(value)
        except (TypeError, ValueError):
            value = float("nan")
        if not math.isfinite(value) or value < 0:
            raise InvariantViolationError(key, value, "scoring factor must be a finite non-negative number")
        return value

    @property
    def cap(self) -> int:
        return int(self._get("progression.max_xp_per_event", MAX_XP_PER_EVENT))

    def _base_xp(self, kind: str, xp_reward: Optional[int], difficulty: str, fallback: int) -> float:
        if xp_reward is not None:
            reward = validate_xp_amount(xp_reward, "xp_reward", self.cap)
            if reward > 0:
                return float(reward)

        table: Mapping[str, Any] = self._get(f"scoring.{kind}.base_xp", {}) or {}
        default = self._get(f"scoring.{kind}.default_xp", fallback)
        base = table.get(difficulty, default)
        return float(validate_xp_amount(base, f"scoring.{kind}.base_xp", self.cap))

    def _finish(self, raw: float, context: str) -> int:
        if not math.isfinite(raw):
            raise InvariantViolationError("xp", raw, f"{context} score is not finite")
        xp = round_half_up(raw)
        clamped = min(max(xp, 0), self.cap)
        if clamped != xp:
            logger.warning(
                "Computed XP clamped",
                extra={"context": context, "raw_xp": xp, "clamped_xp": clamped},
            )
        return clamped

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    @staticmethod
    def days_early(due_date: datetime, completed_at: datetime) -> int:
        """Whole days between completion and due date; negative when late."""
        delta = ensure_utc(due_date) - ensure_utc(completed_at)  # type: ignore[operator]
        return math.floor(delta.total_seconds() / SECONDS_PER_DAY)

    def due_date_multiplier(self, due_date: Optional[datetime], completed_at: datetime) -> float:
        if due_date is None:
            return 1.0

        days = self.days_early(due_date, completed_at)
        if days > 0:
            per_day = self._factor("scoring.task.early_bonus_per_day", 0.05)
            cap = self._factor("scoring.task.early_bonus_cap", 0.20)
            return 1.0 + min(days * per_day, cap)
        if days < 0:
            per_day = self._factor("scoring.task.late_penalty_per_day", 0.05)
            cap = self._factor("scoring.task.late_penalty_cap", 0.30)
            return 1.0 + max(days * per_day, -cap)
        return 1.0

    def score_task(self, data: TaskScoreInput) -> int:
        xp = self._base_xp("task", data.xp_reward, data.difficulty, 25)
        priorities: Mapping[str, Any] = self._get("scoring.task.priority_multipliers", {}) or {}
        xp *= float(priorities.get(data.priority, 1.0))
        xp *= self.due_date_multiplier(data.due_date, data.completed_at)
        if data.all_subtasks_completed:
            xp *= 1.0 + self._factor("scoring.task.subtask_bonus", 0.10)
        return self._finish(xp, "task")

    # ------------------------------------------------------------------
    # Habits
    # ------------------------------------------------------------------

    def weekly_target(self, frequency: str, target_days: Sequence[int]) -> int:
        if frequency == HabitFrequency.DAILY.value:
            return 7
        if target_days:
            return len(target_days)
        return int(self._get("scoring.habit.default_weekly_target", 3))

    def streak_bonus(self, streak: int) -> float:
        per_week = self._factor("scoring.habit.streak_bonus_per_week", 0.02)
        cap = self._factor("scoring.habit.streak_bonus_cap", 0.30)
        return min((max(streak, 0) // 7) * per_week, cap)

    def score_habit(self, data: HabitScoreInput) -> int:
        xp = self._base_xp("habit", data.xp_reward, data.difficulty, 15)
        xp *= 1.0 + self.streak_bonus(data.streak_after)

        if data.total_completions_before == 0:
            xp *= self._factor("scoring.habit.first_completion_multiplier", 1.5)

        # The completion being scored counts toward the week.
        target = self.weekly_target(data.frequency, data.target_days)
        if data.completions_in_week + 1 >= target:
            xp *= self._factor("scoring.habit.weekly_target_multiplier", 1.15)

        return self._finish(xp, "habit")
