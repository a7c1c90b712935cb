"""
Test data factories.

`make_*` builders return unsaved model instances with sensible defaults;
every keyword overrides a column. `seed` persists instances and returns
them with their ids populated.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional, Tuple, TypeVar

from sqlalchemy import select

from questline.database.models import (
    ChallengeParticipant,
    ChallengeStatus,
    ChallengeTask,
    Character,
    Difficulty,
    GoalType,
    GroupChallenge,
    Habit,
    HabitFrequency,
    ParticipantStatus,
    Rank,
    Task,
    TaskPriority,
    TaskStatus,
    VerificationType,
)

T = TypeVar("T")

BASE_TIME = datetime(2025, 1, 6, 12, 0, tzinfo=timezone.utc)


async def seed(session_factory, *instances: Any) -> List[Any]:
    async with session_factory() as session:
        session.add_all(instances)
        await session.commit()
    return list(instances)


async def reload(session_factory, model: type[T], id_value: Any) -> T:
    async with session_factory() as session:
        instance = await session.get(model, id_value)
        assert instance is not None, f"{model.__name__} {id_value} not found"
        return instance


async def count_rows(session_factory, model: type, *conditions: Any) -> int:
    async with session_factory() as session:
        result = await session.execute(select(model).where(*conditions))
        return len(result.scalars().all())


async def character_for(session_factory, user_id: int) -> Character:
    async with session_factory() as session:
        result = await session.execute(select(Character).where(Character.user_id == user_id))
        return result.scalar_one()


def published_events(event_bus) -> List[Tuple[str, dict]]:
    """(name, payload) pairs awaited on a mocked EventBus.publish."""
    return [(call.args[0], call.args[1]) for call in event_bus.publish.await_args_list]


def published_names(event_bus) -> List[str]:
    return [name for name, _ in published_events(event_bus)]


# ============================================================================
# Progression
# ============================================================================


def make_default_ranks() -> List[Rank]:
    return [
        Rank(name="Novice", min_level=1, max_level=4, color="#9CA3AF"),
        Rank(name="Adept", min_level=5, max_level=9, color="#3B82F6"),
        Rank(name="Master", min_level=10, max_level=None, color="#F59E0B"),
    ]


def make_character(user_id: int, **overrides: Any) -> Character:
    values = dict(
        user_id=user_id,
        level=1,
        current_xp=0,
        total_xp=0,
        xp_to_next_level=100,
        rank_id=None,
        streak_days=0,
        longest_streak=0,
        total_tasks_completed=0,
        total_habits_completed=0,
        total_challenges_joined=0,
        total_challenges_completed=0,
    )
    values.update(overrides)
    return Character(**values)


# ============================================================================
# Habits & Tasks
# ============================================================================


def make_habit(user_id: int, **overrides: Any) -> Habit:
    values = dict(
        user_id=user_id,
        title="Read 20 pages",
        difficulty=Difficulty.MEDIUM.value,
        xp_reward=None,
        frequency=HabitFrequency.DAILY.value,
        target_days=[],
        is_active=True,
        current_streak=0,
        longest_streak=0,
        total_completions=0,
        last_completed_date=None,
    )
    values.update(overrides)
    return Habit(**values)


def make_task(user_id: int, **overrides: Any) -> Task:
    values = dict(
        user_id=user_id,
        title="Write report",
        status=TaskStatus.PENDING.value,
        priority=TaskPriority.MEDIUM.value,
        difficulty=Difficulty.MEDIUM.value,
        xp_reward=None,
        due_date=None,
        is_recurring=False,
        parent_task_id=None,
    )
    values.update(overrides)
    return Task(**values)


# ============================================================================
# Challenges
# ============================================================================


def make_challenge(creator_id: int, *, now: datetime = BASE_TIME, **overrides: Any) -> GroupChallenge:
    values = dict(
        creator_id=creator_id,
        title="30 Day Fitness",
        status=ChallengeStatus.ACTIVE.value,
        goal_type=GoalType.TASK_COUNT.value,
        goal_target=5,
        verification_type=VerificationType.NONE.value,
        xp_reward=100,
        start_date=now - timedelta(days=1),
        end_date=now + timedelta(days=7),
        is_public=True,
        invite_code=None,
        max_participants=None,
        current_participants=0,
    )
    values.update(overrides)
    return GroupChallenge(**values)


def make_participant(challenge_id: int, user_id: int, **overrides: Any) -> ChallengeParticipant:
    values = dict(
        challenge_id=challenge_id,
        user_id=user_id,
        status=ParticipantStatus.ACTIVE.value,
        current_progress=0,
        total_points=0,
        total_xp_earned=0,
        completed_tasks_count=0,
        streak_days=0,
        longest_streak=0,
        joined_at=BASE_TIME - timedelta(days=1),
    )
    values.update(overrides)
    return ChallengeParticipant(**values)


def make_challenge_task(challenge_id: int, **overrides: Any) -> ChallengeTask:
    values = dict(
        challenge_id=challenge_id,
        title="Run 5k",
        description="Run five kilometres and share the tracker screenshot",
        order_index=0,
        point_value=10,
        xp_reward=20,
        is_repeatable=True,
        max_completions=None,
        prerequisites=[],
        available_from=None,
        available_until=None,
        is_active=True,
        requires_proof=False,
        completion_count=0,
    )
    values.update(overrides)
    return ChallengeTask(**values)


async def seed_challenge(
    session_factory,
    creator_id: int = 1,
    participant_ids: Tuple[int, ...] = (1, 2, 3),
    task_overrides: Optional[dict] = None,
    **challenge_overrides: Any,
) -> Tuple[GroupChallenge, List[ChallengeParticipant], ChallengeTask]:
    """Challenge with one task, the given participants and a character for everyone."""
    user_ids = sorted({creator_id, *participant_ids})
    await seed(session_factory, *(make_character(user_id) for user_id in user_ids))

    challenge_overrides.setdefault("current_participants", len(participant_ids))
    (challenge,) = await seed(session_factory, make_challenge(creator_id, **challenge_overrides))
    participants = await seed(
        session_factory, *(make_participant(challenge.id, user_id) for user_id in participant_ids)
    )
    (task,) = await seed(session_factory, make_challenge_task(challenge.id, **(task_overrides or {})))
    return challenge, participants, task
