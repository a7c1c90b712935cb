"""
Task completion service.

Completes and uncompletes tasks, scoring each completion, recording a
TaskCompletion and moving XP through the ledger in one unit of work.
Recurring tasks return to pending after every completion; one-off tasks
end in `completed`. Also guards the parent/subtask tree against cycles.

Events: `task.completed`, `task.uncompleted`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional, Set

from questline.core.database.base import ensure_utc
from questline.database.models import ActivityType, Task, TaskCompletion, TaskStatus
from questline.modules.progression.ledger import LedgerResult, ProgressionLedger
from questline.modules.progression.scoring import CompletionScorer, TaskScoreInput
from questline.modules.shared.base_service import BaseService
from questline.modules.shared.exceptions import NotFoundError, StateConflictError
from questline.modules.tasks.repository import TaskCompletionRepository, TaskRepository

if TYPE_CHECKING:
    from logging import Logger

    from questline.core.database.unit_of_work import UnitOfWork
    from questline.core.event.bus import EventBus


@dataclass
class TaskCompletionResult:
    task: Task
    xp_earned: int
    ledger: LedgerResult
    completion: Optional[TaskCompletion] = None
    was_early: bool = False
    was_late: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task.id,
            "status": self.task.status,
            "completion_id": self.completion.id if self.completion else None,
            "xp_earned": self.xp_earned,
            "was_early": self.was_early,
            "was_late": self.was_late,
            **self.ledger.to_dict(),
        }


class TaskService(BaseService):
    def __init__(
        self,
        config_manager: Any,
        event_bus: Optional[EventBus],
        logger: Logger,
        *,
        scorer: CompletionScorer,
        ledger: ProgressionLedger,
        tasks: Optional[TaskRepository] = None,
        completions: Optional[TaskCompletionRepository] = None,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self.scorer = scorer
        self.ledger = ledger
        self.tasks = tasks or TaskRepository()
        self.completions = completions or TaskCompletionRepository()

    async def _load_owned(self, uow: UnitOfWork, user_id: int, task_id: int) -> Task:
        task = await self.tasks.get_owned(uow.session, task_id, user_id, for_update=True)
        if task is None or task.status == TaskStatus.DELETED.value:
            raise NotFoundError("Task", task_id)
        return task

    async def complete_task(
        self,
        uow: UnitOfWork,
        user_id: int,
        task_id: int,
        *,
        notes: Optional[str] = None,
        duration_minutes: Optional[int] = None,
    ) -> TaskCompletionResult:
        task = await self._load_owned(uow, user_id, task_id)

        if task.status == TaskStatus.COMPLETED.value and not task.is_recurring:
            raise StateConflictError(
                "complete_task", "already_completed", "task is already completed"
            )

        total, done = await self.tasks.subtask_counts(uow.session, task.id)
        if done < total:
            raise StateConflictError(
                "complete_task",
                "incomplete_subtasks",
                f"{total - done} subtask(s) are still incomplete",
                details={"task_id": task.id, "incomplete_subtasks": total - done},
            )

        completed_at = uow.now()
        due = ensure_utc(task.due_date)
        xp_earned = self.scorer.score_task(
            TaskScoreInput(
                xp_reward=task.xp_reward,
                difficulty=task.difficulty,
                priority=task.priority,
                due_date=due,
                completed_at=completed_at,
                subtasks_total=total,
                subtasks_completed=done,
            )
        )

        completion = self.completions.add(
            uow.session,
            TaskCompletion(
                task_id=task.id,
                user_id=user_id,
                completed_at=completed_at,
                xp_earned=xp_earned,
                notes=notes,
                duration_minutes=duration_minutes,
            ),
        )

        if task.is_recurring:
            task.status = TaskStatus.PENDING.value
        else:
            task.status = TaskStatus.COMPLETED.value
        task.completed_at = completed_at
        await self.completions.flush(uow.session)

        ledger_result = await self.ledger.award(
            uow,
            user_id,
            xp_earned,
            source=ActivityType.TASK_COMPLETED.value,
            source_id=task.id,
        )
        await self.ledger.record_activity(uow, user_id, "task", completed_at.date())

        was_early = due is not None and completed_at < due
        was_late = due is not None and completed_at > due
        self.queue_event(
            uow,
            "task.completed",
            {
                "user_id": user_id,
                "task_id": task.id,
                "task_title": task.title,
                "xp_earned": xp_earned,
                "was_early": was_early,
                "was_late": was_late,
                "completed_at": completed_at.isoformat(),
                "leveled_up": ledger_result.leveled_up,
                "new_level": ledger_result.new_level if ledger_result.leveled_up else None,
            },
        )
        self.log_operation(
            "complete_task",
            user_id=user_id,
            task_id=task.id,
            xp_earned=xp_earned,
            recurring=task.is_recurring,
        )
        return TaskCompletionResult(task, xp_earned, ledger_result, completion, was_early, was_late)

    async def uncomplete_task(self, uow: UnitOfWork, user_id: int, task_id: int) -> TaskCompletionResult:
        """Delete the latest completion, take its XP back and reopen the task."""
        task = await self._load_owned(uow, user_id, task_id)
        completion = await self.completions.latest_for_task(uow.session, task.id, user_id)

        if task.status != TaskStatus.COMPLETED.value and not (task.is_recurring and completion):
            raise StateConflictError("uncomplete_task", "not_completed", "task is not completed")
        if completion is None:
            raise NotFoundError("TaskCompletion", task.id)

        xp_removed = completion.xp_earned
        ledger_result = await self.ledger.remove(
            uow,
            user_id,
            xp_removed,
            source=ActivityType.TASK_UNCOMPLETED.value,
            source_id=task.id,
            description=f"Uncompleted task: {task.title}",
        )

        await self.completions.delete(uow.session, completion)
        task.status = TaskStatus.PENDING.value
        task.completed_at = None
        await self.completions.flush(uow.session)

        await self.ledger.revert_activity(uow, user_id, "task")

        self.queue_event(
            uow,
            "task.uncompleted",
            {
                "user_id": user_id,
                "task_id": task.id,
                "xp_removed": xp_removed,
                "leveled_down": ledger_result.leveled_down,
            },
        )
        self.log_operation("uncomplete_task", user_id=user_id, task_id=task.id, xp_removed=xp_removed)
        return TaskCompletionResult(task, -xp_removed, ledger_result)

    async def set_parent_task(
        self,
        uow: UnitOfWork,
        user_id: int,
        task_id: int,
        parent_task_id: Optional[int],
    ) -> Task:
        """Re-parent a task, refusing any assignment that would create a cycle."""
        task = await self._load_owned(uow, user_id, task_id)

        if parent_task_id is None:
            task.parent_task_id = None
            return task

        if parent_task_id == task.id:
            raise StateConflictError("set_parent_task", "cycle", "a task cannot be its own parent")

        parent = await self.tasks.get_owned(uow.session, parent_task_id, user_id)
        if parent is None or parent.status == TaskStatus.DELETED.value:
            raise NotFoundError("Task", parent_task_id)

        seen: Set[int] = {task.id}
        ancestor_id: Optional[int] = parent.id
        while ancestor_id is not None:
            if ancestor_id in seen:
                raise StateConflictError(
                    "set_parent_task",
                    "cycle",
                    "the new parent is a descendant of this task",
                    details={"task_id": task.id, "parent_task_id": parent_task_id},
                )
            seen.add(ancestor_id)
            ancestor_id = await self.tasks.get_parent_id(uow.session, ancestor_id)

        task.parent_task_id = parent.id
        self.log_operation("set_parent_task", user_id=user_id, task_id=task.id, parent_task_id=parent.id)
        return task
