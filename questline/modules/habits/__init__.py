"""Habit completion and streak bookkeeping."""

from questline.modules.habits.repository import HabitCompletionRepository, HabitRepository
from questline.modules.habits.service import HabitCompletionResult, HabitService

__all__ = [
    "HabitCompletionRepository",
    "HabitCompletionResult",
    "HabitRepository",
    "HabitService",
]
