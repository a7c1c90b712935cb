"""
Questline database models.

Importing this package registers every table on `Base.metadata`.
"""

from questline.database.models.challenges import (
    ChallengeParticipant,
    ChallengeProgress,
    ChallengeTask,
    ChallengeTaskCompletion,
    GroupChallenge,
)
from questline.database.models.enums import (
    ActivityType,
    ChallengeStatus,
    CompletionStatus,
    Difficulty,
    GoalType,
    HabitFrequency,
    LeaderboardTimeframe,
    ParticipantStatus,
    TaskPriority,
    TaskStatus,
    VerificationType,
)
from questline.database.models.habits import Habit, HabitCompletion
from questline.database.models.progression import ActivityLog, Character, Rank
from questline.database.models.tasks import Task, TaskCompletion

__all__ = [
    "ActivityLog",
    "Character",
    "Rank",
    "Habit",
    "HabitCompletion",
    "Task",
    "TaskCompletion",
    "GroupChallenge",
    "ChallengeParticipant",
    "ChallengeTask",
    "ChallengeTaskCompletion",
    "ChallengeProgress",
    "ActivityType",
    "ChallengeStatus",
    "CompletionStatus",
    "Difficulty",
    "GoalType",
    "HabitFrequency",
    "LeaderboardTimeframe",
    "ParticipantStatus",
    "TaskPriority",
    "TaskStatus",
    "VerificationType",
]
