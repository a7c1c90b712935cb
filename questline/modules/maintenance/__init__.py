"""Recurring maintenance jobs."""

from questline.modules.maintenance.jobs import (
    ChallengeFinalizationJob,
    HabitStreakReminderJob,
    TaskDeadlineReminderJob,
)

__all__ = ["ChallengeFinalizationJob", "HabitStreakReminderJob", "TaskDeadlineReminderJob"]
