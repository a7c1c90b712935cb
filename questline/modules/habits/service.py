"""
Habit completion service.

Completes and uncompletes habits for one calendar day, keeping the habit's
streak fields, the HabitCompletion rows and the character ledger in step
inside a single unit of work.

Events: `habit.completed`, `habit.uncompleted`, `habit.streak_milestone`.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, Any, Dict, Optional

from questline.core.database.base import ensure_utc
from questline.database.models import ActivityType, Habit, HabitCompletion
from questline.modules.habits.repository import HabitCompletionRepository, HabitRepository
from questline.modules.progression.ledger import LedgerResult, ProgressionLedger
from questline.modules.progression.scoring import CompletionScorer, HabitScoreInput
from questline.modules.progression.streaks import (
    StreakState,
    advance_streak,
    is_milestone,
    recompute_streak,
)
from questline.modules.shared.base_service import BaseService
from questline.modules.shared.exceptions import (
    NotFoundError,
    PermissionDeniedError,
    StateConflictError,
)

if TYPE_CHECKING:
    from logging import Logger

    from questline.core.database.unit_of_work import UnitOfWork
    from questline.core.event.bus import EventBus


@dataclass
class HabitCompletionResult:
    habit: Habit
    xp_earned: int
    ledger: LedgerResult
    completion: Optional[HabitCompletion] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "habit_id": self.habit.id,
            "current_streak": self.habit.current_streak,
            "longest_streak": self.habit.longest_streak,
            "total_completions": self.habit.total_completions,
            "last_completed_date": (
                self.habit.last_completed_date.isoformat()
                if self.habit.last_completed_date
                else None
            ),
            "completion_id": self.completion.id if self.completion else None,
            "xp_earned": self.xp_earned,
            **self.ledger.to_dict(),
        }


class HabitService(BaseService):
    def __init__(
        self,
        config_manager: Any,
        event_bus: Optional[EventBus],
        logger: Logger,
        *,
        scorer: CompletionScorer,
        ledger: ProgressionLedger,
        habits: Optional[HabitRepository] = None,
        completions: Optional[HabitCompletionRepository] = None,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self.scorer = scorer
        self.ledger = ledger
        self.habits = habits or HabitRepository()
        self.completions = completions or HabitCompletionRepository()

    async def _load_owned(self, uow: UnitOfWork, user_id: int, habit_id: int, action: str) -> Habit:
        habit = await self.habits.get(uow.session, habit_id, for_update=True)
        if habit is None:
            raise NotFoundError("Habit", habit_id)
        if habit.user_id != user_id:
            raise PermissionDeniedError(action, "habit belongs to another user")
        return habit

    def _is_milestone(self, streak: int) -> bool:
        return is_milestone(
            streak,
            interval=int(self.get_config("habits.streak_milestone_interval", 7)),
            extra=self.get_config("habits.streak_milestones", [30, 100]) or [],
        )

    async def complete_habit(
        self,
        uow: UnitOfWork,
        user_id: int,
        habit_id: int,
        completed_at: Optional[datetime] = None,
    ) -> HabitCompletionResult:
        """
        Record a completion for the calendar day of `completed_at` (default now).

        Raises StateConflictError when the habit is inactive or already has a
        completion for that day.
        """
        habit = await self._load_owned(uow, user_id, habit_id, "complete_habit")
        if not habit.is_active:
            raise StateConflictError(
                "complete_habit", "habit_inactive", "cannot complete an inactive habit"
            )

        completed_at = ensure_utc(completed_at) or uow.now()
        day = completed_at.date()

        if await self.completions.get_for_day(uow.session, habit.id, day) is not None:
            raise StateConflictError(
                "complete_habit",
                "already_completed",
                "habit already completed for this day",
                details={"habit_id": habit.id, "completed_date": day.isoformat()},
            )

        previous_streak = habit.current_streak
        state = advance_streak(
            StreakState(
                current=habit.current_streak,
                longest=habit.longest_streak,
                last_date=habit.last_completed_date,
            ),
            day,
        )

        in_week = await self.completions.count_between(
            uow.session, habit.id, day - timedelta(days=7), day + timedelta(days=1)
        )
        xp_earned = self.scorer.score_habit(
            HabitScoreInput(
                xp_reward=habit.xp_reward,
                difficulty=habit.difficulty,
                frequency=habit.frequency,
                target_days=habit.target_days or [],
                streak_after=state.current,
                total_completions_before=habit.total_completions,
                completions_in_week=in_week,
            )
        )

        completion = self.completions.add(
            uow.session,
            HabitCompletion(
                habit_id=habit.id,
                user_id=user_id,
                completed_date=day,
                completed_at=completed_at,
                xp_earned=xp_earned,
                streak_at_completion=state.current,
            ),
        )

        habit.current_streak = state.current
        habit.longest_streak = state.longest
        habit.last_completed_date = state.last_date
        habit.total_completions += 1
        await self.completions.flush(uow.session)

        ledger_result = await self.ledger.award(
            uow,
            user_id,
            xp_earned,
            source=ActivityType.HABIT_COMPLETED.value,
            source_id=habit.id,
        )
        await self.ledger.record_activity(uow, user_id, "habit", day)

        self.queue_event(
            uow,
            "habit.completed",
            {
                "user_id": user_id,
                "habit_id": habit.id,
                "habit_title": habit.title,
                "xp_earned": xp_earned,
                "streak": habit.current_streak,
                "completed_date": day.isoformat(),
                "leveled_up": ledger_result.leveled_up,
                "new_level": ledger_result.new_level if ledger_result.leveled_up else None,
            },
        )
        if habit.current_streak != previous_streak and self._is_milestone(habit.current_streak):
            self.queue_event(
                uow,
                "habit.streak_milestone",
                {
                    "user_id": user_id,
                    "habit_id": habit.id,
                    "habit_title": habit.title,
                    "streak": habit.current_streak,
                    "longest_streak": habit.longest_streak,
                },
            )

        self.log_operation(
            "complete_habit",
            user_id=user_id,
            habit_id=habit.id,
            xp_earned=xp_earned,
            streak=habit.current_streak,
        )
        return HabitCompletionResult(habit, xp_earned, ledger_result, completion)

    async def uncomplete_habit(
        self,
        uow: UnitOfWork,
        user_id: int,
        habit_id: int,
        completed_date: Optional[date] = None,
    ) -> HabitCompletionResult:
        """Undo the completion on `completed_date` (default today) and take its XP back."""
        habit = await self._load_owned(uow, user_id, habit_id, "uncomplete_habit")
        day = completed_date or uow.today()

        completion = await self.completions.get_for_day(uow.session, habit.id, day)
        if completion is None:
            raise NotFoundError("HabitCompletion", f"{habit.id}@{day.isoformat()}")

        xp_removed = completion.xp_earned
        ledger_result = await self.ledger.remove(
            uow,
            user_id,
            xp_removed,
            source=ActivityType.HABIT_UNCOMPLETED.value,
            source_id=habit.id,
            description=f"Uncompleted habit: {habit.title}",
        )

        await self.completions.delete(uow.session, completion)
        await self.completions.flush(uow.session)

        remaining = await self.completions.list_dates(uow.session, habit.id)
        state = recompute_streak(remaining, uow.today(), habit.longest_streak)
        habit.current_streak = state.current
        habit.longest_streak = state.longest
        habit.last_completed_date = state.last_date
        habit.total_completions = max(0, habit.total_completions - 1)

        await self.ledger.revert_activity(uow, user_id, "habit")

        self.queue_event(
            uow,
            "habit.uncompleted",
            {
                "user_id": user_id,
                "habit_id": habit.id,
                "xp_removed": xp_removed,
                "streak": habit.current_streak,
                "completed_date": day.isoformat(),
                "leveled_down": ledger_result.leveled_down,
            },
        )
        self.log_operation(
            "uncomplete_habit",
            user_id=user_id,
            habit_id=habit.id,
            xp_removed=xp_removed,
            streak=habit.current_streak,
        )
        return HabitCompletionResult(habit, -xp_removed, ledger_result)
