"""Data access for group challenges, participants, tasks and completions."""

from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING, Iterable, List, Optional, Sequence

from sqlalchemy import and_, func, or_, select, update

from questline.core.logging.logger import get_logger
from questline.database.models import (
    ChallengeParticipant,
    ChallengeProgress,
    ChallengeStatus,
    ChallengeTask,
    ChallengeTaskCompletion,
    CompletionStatus,
    GroupChallenge,
    ParticipantStatus,
)
from questline.modules.shared.base_repository import BaseRepository

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

RANKED_STATUSES = (ParticipantStatus.ACTIVE.value, ParticipantStatus.COMPLETED.value)


class GroupChallengeRepository(BaseRepository[GroupChallenge]):
    def __init__(self) -> None:
        super().__init__(GroupChallenge, logger)

    async def get_by_invite_code(self, session: AsyncSession, code: str) -> Optional[GroupChallenge]:
        return await self.find_one_where(session, GroupChallenge.invite_code == code)

    async def mark_completed(
        self,
        session: AsyncSession,
        challenge_id: int,
        completed_at: datetime,
        now: datetime,
    ) -> bool:
        """
        Conditionally move a non-terminal challenge to `completed`.

        Returns True only for the caller whose UPDATE matched the row; an
        existing `completed_at` is kept.
        """
        stmt = (
            update(GroupChallenge)
            .where(
                GroupChallenge.id == challenge_id,
                GroupChallenge.status.in_(ChallengeStatus.open_values()),
            )
            .values(
                status=ChallengeStatus.COMPLETED.value,
                completed_at=func.coalesce(GroupChallenge.completed_at, completed_at),
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        transitioned = result.rowcount == 1
        self._trace("mark_completed", challenge_id=challenge_id, transitioned=transitioned)
        return transitioned

    async def mark_active(self, session: AsyncSession, challenge_id: int, now: datetime) -> bool:
        stmt = (
            update(GroupChallenge)
            .where(
                GroupChallenge.id == challenge_id,
                GroupChallenge.status == ChallengeStatus.UPCOMING.value,
            )
            .values(status=ChallengeStatus.ACTIVE.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount == 1

    async def list_due_for_finalization(
        self, session: AsyncSession, now: datetime, *, limit: int = 200
    ) -> List[GroupChallenge]:
        return await self.find_many_where(
            session,
            GroupChallenge.status.in_(ChallengeStatus.open_values()),
            GroupChallenge.end_date <= now,
            order_by=[GroupChallenge.end_date.asc(), GroupChallenge.id.asc()],
            limit=limit,
        )

    async def list_started_upcoming(
        self, session: AsyncSession, now: datetime, *, limit: int = 200
    ) -> List[GroupChallenge]:
        return await self.find_many_where(
            session,
            GroupChallenge.status == ChallengeStatus.UPCOMING.value,
            GroupChallenge.start_date <= now,
            GroupChallenge.end_date > now,
            order_by=[GroupChallenge.start_date.asc(), GroupChallenge.id.asc()],
            limit=limit,
        )


class ChallengeParticipantRepository(BaseRepository[ChallengeParticipant]):
    def __init__(self) -> None:
        super().__init__(ChallengeParticipant, logger)

    async def get_for_user(
        self,
        session: AsyncSession,
        challenge_id: int,
        user_id: int,
        *,
        for_update: bool = False,
    ) -> Optional[ChallengeParticipant]:
        return await self.find_one_where(
            session,
            ChallengeParticipant.challenge_id == challenge_id,
            ChallengeParticipant.user_id == user_id,
            for_update=for_update,
        )

    async def count_active(self, session: AsyncSession, challenge_id: int) -> int:
        return await self.count(
            session,
            ChallengeParticipant.challenge_id == challenge_id,
            ChallengeParticipant.status == ParticipantStatus.ACTIVE.value,
        )

    # ------------------------------------------------------------------
    # Leaderboard queries
    # ------------------------------------------------------------------

    @staticmethod
    def _ranked_filter(challenge_id: int) -> list:
        return [
            ChallengeParticipant.challenge_id == challenge_id,
            ChallengeParticipant.status.in_(RANKED_STATUSES),
        ]

    async def list_ranked(
        self,
        session: AsyncSession,
        challenge_id: int,
        *,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[ChallengeParticipant]:
        return await self.find_many_where(
            session,
            *self._ranked_filter(challenge_id),
            order_by=[
                ChallengeParticipant.total_points.desc(),
                ChallengeParticipant.completed_tasks_count.desc(),
                ChallengeParticipant.current_progress.desc(),
                ChallengeParticipant.id.asc(),
            ],
            limit=limit,
            offset=offset,
        )

    async def count_ranked(self, session: AsyncSession, challenge_id: int) -> int:
        return await self.count(session, *self._ranked_filter(challenge_id))

    async def count_ahead(
        self,
        session: AsyncSession,
        challenge_id: int,
        total_points: int,
        completed_tasks_count: int,
        current_progress: int,
    ) -> int:
        """Ranked participants strictly ahead on (points, tasks, progress)."""
        p = ChallengeParticipant
        ahead = or_(
            p.total_points > total_points,
            and_(
                p.total_points == total_points,
                p.completed_tasks_count > completed_tasks_count,
            ),
            and_(
                p.total_points == total_points,
                p.completed_tasks_count == completed_tasks_count,
                p.current_progress > current_progress,
            ),
        )
        return await self.count(session, *self._ranked_filter(challenge_id), ahead)


class ChallengeTaskRepository(BaseRepository[ChallengeTask]):
    def __init__(self) -> None:
        super().__init__(ChallengeTask, logger)

    async def get_in_challenge(
        self, session: AsyncSession, challenge_id: int, task_id: int, *, for_update: bool = False
    ) -> Optional[ChallengeTask]:
        return await self.find_one_where(
            session,
            ChallengeTask.id == task_id,
            ChallengeTask.challenge_id == challenge_id,
            for_update=for_update,
        )

    async def increment_completion_count(self, session: AsyncSession, task_id: int) -> None:
        """Increment `completion_count` in one UPDATE; the task row is not locked."""
        await session.execute(
            update(ChallengeTask)
            .where(ChallengeTask.id == task_id)
            .values(completion_count=ChallengeTask.completion_count + 1)
        )
        self._trace("increment_completion_count", task_id=task_id)


class ChallengeTaskCompletionRepository(BaseRepository[ChallengeTaskCompletion]):
    def __init__(self) -> None:
        super().__init__(ChallengeTaskCompletion, logger)

    async def get_in_challenge(
        self,
        session: AsyncSession,
        challenge_id: int,
        completion_id: int,
        *,
        for_update: bool = False,
    ) -> Optional[ChallengeTaskCompletion]:
        return await self.find_one_where(
            session,
            ChallengeTaskCompletion.id == completion_id,
            ChallengeTaskCompletion.challenge_id == challenge_id,
            for_update=for_update,
        )

    async def count_for_task(
        self,
        session: AsyncSession,
        participant_id: int,
        task_id: int,
        statuses: Optional[Sequence[str]] = None,
    ) -> int:
        conditions = [
            ChallengeTaskCompletion.participant_id == participant_id,
            ChallengeTaskCompletion.task_id == task_id,
        ]
        if statuses is not None:
            conditions.append(ChallengeTaskCompletion.status.in_(list(statuses)))
        return await self.count(session, *conditions)

    async def approved_task_ids(
        self, session: AsyncSession, participant_id: int, task_ids: Iterable[int]
    ) -> set[int]:
        wanted = list(task_ids)
        if not wanted:
            return set()
        stmt = select(ChallengeTaskCompletion.task_id).where(
            ChallengeTaskCompletion.participant_id == participant_id,
            ChallengeTaskCompletion.task_id.in_(wanted),
            ChallengeTaskCompletion.status == CompletionStatus.APPROVED.value,
        )
        result = await session.execute(stmt)
        return set(result.scalars().all())

    async def list_pending(
        self, session: AsyncSession, challenge_id: int, *, limit: int = 100
    ) -> List[ChallengeTaskCompletion]:
        return await self.find_many_where(
            session,
            ChallengeTaskCompletion.challenge_id == challenge_id,
            ChallengeTaskCompletion.status == CompletionStatus.PENDING.value,
            order_by=[ChallengeTaskCompletion.completed_at.asc(), ChallengeTaskCompletion.id.asc()],
            limit=limit,
        )


class ChallengeProgressRepository(BaseRepository[ChallengeProgress]):
    def __init__(self) -> None:
        super().__init__(ChallengeProgress, logger)

    async def get_for_day(
        self, session: AsyncSession, participant_id: int, day: date
    ) -> Optional[ChallengeProgress]:
        return await self.find_one_where(
            session,
            ChallengeProgress.participant_id == participant_id,
            ChallengeProgress.activity_date == day,
        )

    async def list_for_participant(
        self, session: AsyncSession, participant_id: int
    ) -> List[ChallengeProgress]:
        return await self.find_many_where(
            session,
            ChallengeProgress.participant_id == participant_id,
            order_by=[ChallengeProgress.activity_date.asc()],
        )
