"""Task completion and the parent/subtask tree."""

from questline.modules.tasks.repository import TaskCompletionRepository, TaskRepository
from questline.modules.tasks.service import TaskCompletionResult, TaskService

__all__ = [
    "TaskCompletionRepository",
    "TaskCompletionResult",
    "TaskRepository",
    "TaskService",
]
