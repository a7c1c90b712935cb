"""Data access for habits and habit completions."""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import select

from questline.core.logging.logger import get_logger
from questline.database.models import Habit, HabitCompletion
from questline.modules.shared.base_repository import BaseRepository

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


class HabitRepository(BaseRepository[Habit]):
    def __init__(self) -> None:
        super().__init__(Habit, logger)

    async def list_streaks_at_risk(
        self,
        session: AsyncSession,
        last_completed: date,
        *,
        limit: int = 500,
        after_id: int = 0,
    ) -> List[Habit]:
        """
        Active habits whose streak ends on `last_completed` and breaks without
        a completion today. Pages by id: pass the last id seen as `after_id`.
        """
        return await self.find_many_where(
            session,
            Habit.is_active.is_(True),
            Habit.current_streak > 0,
            Habit.last_completed_date == last_completed,
            Habit.id > after_id,
            order_by=[Habit.id.asc()],
            limit=limit,
        )


class HabitCompletionRepository(BaseRepository[HabitCompletion]):
    def __init__(self) -> None:
        super().__init__(HabitCompletion, logger)

    async def get_for_day(
        self, session: AsyncSession, habit_id: int, day: date
    ) -> Optional[HabitCompletion]:
        return await self.find_one_where(
            session,
            HabitCompletion.habit_id == habit_id,
            HabitCompletion.completed_date == day,
        )

    async def count_between(
        self, session: AsyncSession, habit_id: int, start: date, end: date
    ) -> int:
        """Completions with `start <= completed_date < end`."""
        return await self.count(
            session,
            HabitCompletion.habit_id == habit_id,
            HabitCompletion.completed_date >= start,
            HabitCompletion.completed_date < end,
        )

    async def list_dates(self, session: AsyncSession, habit_id: int) -> List[date]:
        stmt = (
            select(HabitCompletion.completed_date)
            .where(HabitCompletion.habit_id == habit_id)
            .order_by(HabitCompletion.completed_date.desc())
        )
        result = await session.execute(stmt)
        dates = list(result.scalars().all())
        self._trace("list_dates", habit_id=habit_id, count=len(dates))
        return dates
