"""Data access for tasks and task completions."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, List, Optional, Tuple

from sqlalchemy import case, func, select

from questline.core.logging.logger import get_logger
from questline.database.models import Task, TaskCompletion, TaskStatus
from questline.modules.shared.base_repository import BaseRepository

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


class TaskRepository(BaseRepository[Task]):
    def __init__(self) -> None:
        super().__init__(Task, logger)

    async def get_owned(
        self, session: AsyncSession, task_id: int, user_id: int, *, for_update: bool = False
    ) -> Optional[Task]:
        return await self.find_one_where(
            session, Task.id == task_id, Task.user_id == user_id, for_update=for_update
        )

    async def subtask_counts(self, session: AsyncSession, task_id: int) -> Tuple[int, int]:
        """`(total, completed)` for live (non-deleted) subtasks of `task_id`."""
        completed = func.sum(case((Task.status == TaskStatus.COMPLETED.value, 1), else_=0))
        stmt = select(func.count(), completed).select_from(Task).where(
            Task.parent_task_id == task_id,
            Task.status != TaskStatus.DELETED.value,
        )
        total, done = (await session.execute(stmt)).one()
        self._trace("subtask_counts", task_id=task_id, total=total, completed=done or 0)
        return int(total or 0), int(done or 0)

    async def get_parent_id(self, session: AsyncSession, task_id: int) -> Optional[int]:
        stmt = select(Task.parent_task_id).where(Task.id == task_id)
        return (await session.execute(stmt)).scalar_one_or_none()

    async def list_open_due_between(
        self,
        session: AsyncSession,
        start: datetime,
        end: datetime,
        *,
        limit: int = 500,
        after_id: int = 0,
    ) -> List[Task]:
        """Open tasks whose due date falls in `[start, end)`, paged by id."""
        return await self.find_many_where(
            session,
            Task.status.in_([TaskStatus.PENDING.value, TaskStatus.IN_PROGRESS.value]),
            Task.due_date.is_not(None),
            Task.due_date >= start,
            Task.due_date < end,
            Task.id > after_id,
            order_by=[Task.id.asc()],
            limit=limit,
        )


class TaskCompletionRepository(BaseRepository[TaskCompletion]):
    def __init__(self) -> None:
        super().__init__(TaskCompletion, logger)

    async def latest_for_task(
        self, session: AsyncSession, task_id: int, user_id: int
    ) -> Optional[TaskCompletion]:
        return await self.find_one_where(
            session,
            TaskCompletion.task_id == task_id,
            TaskCompletion.user_id == user_id,
            order_by=[TaskCompletion.completed_at.desc(), TaskCompletion.id.desc()],
        )
