"""
Database Model Enums
====================

Categorical values for the progression schema. Columns store the
`.value` string; services compare against these enums.
"""

from __future__ import annotations

import enum


class Difficulty(str, enum.Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
    EXTREME = "extreme"


class TaskPriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class TaskStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    DELETED = "deleted"


class HabitFrequency(str, enum.Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    CUSTOM = "custom"


class ChallengeStatus(str, enum.Enum):
    """
    Lifecycle of a group challenge.

    upcoming -> active -> completed, with cancelled reachable from either
    non-terminal state. Completed and cancelled are terminal.
    """

    UPCOMING = "upcoming"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @classmethod
    def open_values(cls) -> tuple[str, str]:
        return (cls.UPCOMING.value, cls.ACTIVE.value)


class GoalType(str, enum.Enum):
    TASK_COUNT = "task_count"
    TOTAL_XP = "total_xp"
    HABIT_STREAK = "habit_streak"
    CUSTOM = "custom"


class VerificationType(str, enum.Enum):
    NONE = "none"
    MANUAL = "manual"
    AI = "ai"


class ParticipantStatus(str, enum.Enum):
    """One-directional: active -> completed, active -> dropped_out."""

    ACTIVE = "active"
    COMPLETED = "completed"
    DROPPED_OUT = "dropped_out"


class CompletionStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ActivityType(str, enum.Enum):
    """Kinds of rows written to the activity log by the ledger."""

    TASK_COMPLETED = "task_completed"
    TASK_UNCOMPLETED = "task_uncompleted"
    HABIT_COMPLETED = "habit_completed"
    HABIT_UNCOMPLETED = "habit_uncompleted"
    CHALLENGE_TASK_COMPLETED = "challenge_task_completed"
    CHALLENGE_COMPLETED = "challenge_completed"
    CHALLENGE_JOINED = "challenge_joined"
    XP_AWARDED = "xp_awarded"
    XP_REMOVED = "xp_removed"
    RANK_UP = "rank_up"
    RANK_DOWN = "rank_down"


class LeaderboardTimeframe(str, enum.Enum):
    ALL = "all"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
