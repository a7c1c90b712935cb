"""
Integration tests for HabitService.

Tests completion scoring, streak bookkeeping, milestones and undo against a
real database. The test clock stands at Monday 2025-01-06 12:00 UTC.
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from questline.database.models import Habit, HabitCompletion
from questline.modules.shared.exceptions import (
    NotFoundError,
    PermissionDeniedError,
    StateConflictError,
)
from tests.fixtures.factories import (
    character_for,
    count_rows,
    make_character,
    make_habit,
    published_events,
    published_names,
    reload,
    seed,
)

pytestmark = [pytest.mark.asyncio, pytest.mark.integration, pytest.mark.database]

TODAY = date(2025, 1, 6)


def at(day: date) -> datetime:
    return datetime(day.year, day.month, day.day, 9, 0, tzinfo=timezone.utc)


async def seed_user_with_habit(session_factory, **habit_overrides):
    await seed(session_factory, make_character(1))
    (habit,) = await seed(session_factory, make_habit(1, **habit_overrides))
    return habit


class TestCompleteHabit:
    async def test_extends_streak_and_awards_xp(self, session_factory, uow_factory, habit_service, mock_event_bus):
        habit = await seed_user_with_habit(
            session_factory,
            current_streak=5,
            longest_streak=5,
            total_completions=5,
            last_completed_date=TODAY - timedelta(days=1),
        )

        async with uow_factory() as uow:
            result = await habit_service.complete_habit(uow, 1, habit.id)

        assert result.xp_earned == 15
        assert result.completion.completed_date == TODAY
        assert result.to_dict()["current_streak"] == 6

        stored = await reload(session_factory, Habit, habit.id)
        assert (stored.current_streak, stored.longest_streak, stored.total_completions) == (6, 6, 6)
        assert stored.last_completed_date == TODAY

        character = await character_for(session_factory, 1)
        assert character.total_xp == 15
        assert character.total_habits_completed == 1
        assert character.streak_days == 1

        names = published_names(mock_event_bus)
        assert names[-1] == "habit.completed"
        assert "habit.streak_milestone" not in names

    async def test_first_completion_bonus(self, session_factory, uow_factory, habit_service):
        habit = await seed_user_with_habit(session_factory)

        async with uow_factory() as uow:
            result = await habit_service.complete_habit(uow, 1, habit.id)

        assert result.xp_earned == 23

    async def test_streak_milestone_event(self, session_factory, uow_factory, habit_service, mock_event_bus):
        habit = await seed_user_with_habit(
            session_factory,
            current_streak=6,
            longest_streak=6,
            total_completions=6,
            last_completed_date=TODAY - timedelta(days=1),
        )

        async with uow_factory() as uow:
            result = await habit_service.complete_habit(uow, 1, habit.id)

        assert result.xp_earned == 15
        milestones = [payload for name, payload in published_events(mock_event_bus) if name == "habit.streak_milestone"]
        assert milestones == [
            {
                "user_id": 1,
                "habit_id": habit.id,
                "habit_title": habit.title,
                "streak": 7,
                "longest_streak": 7,
            }
        ]

    async def test_weekly_target_bonus(self, session_factory, uow_factory, habit_service):
        habit = await seed_user_with_habit(session_factory, frequency="weekly", target_days=[0, 2, 4])

        earned = []
        for offset in (4, 2, 0):
            async with uow_factory() as uow:
                result = await habit_service.complete_habit(uow, 1, habit.id, at(TODAY - timedelta(days=offset)))
            earned.append(result.xp_earned)

        # First completion x1.5, then plain, then the third of three target days x1.15.
        assert earned == [23, 15, 17]
        stored = await reload(session_factory, Habit, habit.id)
        assert stored.current_streak == 1
        assert stored.total_completions == 3

    async def test_backfill_keeps_current_streak(self, session_factory, uow_factory, habit_service):
        habit = await seed_user_with_habit(session_factory)

        async with uow_factory() as uow:
            await habit_service.complete_habit(uow, 1, habit.id)
        async with uow_factory() as uow:
            await habit_service.complete_habit(uow, 1, habit.id, at(TODAY - timedelta(days=3)))

        stored = await reload(session_factory, Habit, habit.id)
        assert stored.current_streak == 1
        assert stored.last_completed_date == TODAY
        assert stored.total_completions == 2

    async def test_second_completion_same_day(self, session_factory, uow_factory, habit_service, mock_event_bus):
        habit = await seed_user_with_habit(session_factory)

        async with uow_factory() as uow:
            await habit_service.complete_habit(uow, 1, habit.id)
        mock_event_bus.publish.reset_mock()

        with pytest.raises(StateConflictError) as exc_info:
            async with uow_factory() as uow:
                await habit_service.complete_habit(uow, 1, habit.id, at(TODAY))

        assert exc_info.value.rule == "already_completed"
        mock_event_bus.publish.assert_not_awaited()
        character = await character_for(session_factory, 1)
        assert character.total_xp == 23

    async def test_inactive_habit(self, session_factory, uow_factory, habit_service):
        habit = await seed_user_with_habit(session_factory, is_active=False)

        with pytest.raises(StateConflictError) as exc_info:
            async with uow_factory() as uow:
                await habit_service.complete_habit(uow, 1, habit.id)
        assert exc_info.value.rule == "habit_inactive"

    async def test_other_users_habit(self, session_factory, uow_factory, habit_service):
        habit = await seed_user_with_habit(session_factory)
        await seed(session_factory, make_character(2))

        with pytest.raises(PermissionDeniedError):
            async with uow_factory() as uow:
                await habit_service.complete_habit(uow, 2, habit.id)

    async def test_missing_habit(self, session_factory, uow_factory, habit_service):
        await seed(session_factory, make_character(1))

        with pytest.raises(NotFoundError):
            async with uow_factory() as uow:
                await habit_service.complete_habit(uow, 1, 999)


class TestUncompleteHabit:
    async def test_removes_xp_and_recomputes_streak(self, session_factory, uow_factory, habit_service, mock_event_bus):
        habit = await seed_user_with_habit(session_factory)

        earned = []
        for offset in (2, 1, 0):
            async with uow_factory() as uow:
                result = await habit_service.complete_habit(uow, 1, habit.id, at(TODAY - timedelta(days=offset)))
            earned.append(result.xp_earned)
        mock_event_bus.publish.reset_mock()

        async with uow_factory() as uow:
            result = await habit_service.uncomplete_habit(uow, 1, habit.id)

        assert result.xp_earned == -earned[-1]
        stored = await reload(session_factory, Habit, habit.id)
        assert (stored.current_streak, stored.longest_streak) == (2, 3)
        assert stored.last_completed_date == TODAY - timedelta(days=1)
        assert stored.total_completions == 2

        character = await character_for(session_factory, 1)
        assert character.total_xp == sum(earned[:-1])
        assert character.total_habits_completed == 2
        assert await count_rows(session_factory, HabitCompletion) == 2
        assert published_names(mock_event_bus)[-1] == "habit.uncompleted"

    async def test_undo_only_completion_clears_streak(self, session_factory, uow_factory, habit_service):
        habit = await seed_user_with_habit(session_factory)
        async with uow_factory() as uow:
            await habit_service.complete_habit(uow, 1, habit.id, at(TODAY - timedelta(days=5)))

        async with uow_factory() as uow:
            await habit_service.uncomplete_habit(uow, 1, habit.id, TODAY - timedelta(days=5))

        stored = await reload(session_factory, Habit, habit.id)
        assert stored.current_streak == 0
        assert stored.last_completed_date is None
        assert stored.longest_streak == 1

    async def test_missing_completion(self, session_factory, uow_factory, habit_service):
        habit = await seed_user_with_habit(session_factory)

        with pytest.raises(NotFoundError) as exc_info:
            async with uow_factory() as uow:
                await habit_service.uncomplete_habit(uow, 1, habit.id)
        assert exc_info.value.resource_type == "HabitCompletion"
