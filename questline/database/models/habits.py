"""
Habit Models
============

Habits and their per-day completions. Streak fields on `Habit` are
maintained by `HabitService` through the pure streak functions.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from questline.core.database.base import JSON_TYPE, PK_TYPE, Base, IdMixin, TimestampMixin, utc_now
from questline.database.models.enums import Difficulty, HabitFrequency


class Habit(Base, IdMixin, TimestampMixin):
    """A recurring habit owned by one user."""

    __tablename__ = "habits"
    __table_args__ = (
        Index("ix_habits_user_active", "user_id", "is_active"),
    )

    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    difficulty: Mapped[str] = mapped_column(
        String(16), nullable=False, default=Difficulty.MEDIUM.value
    )
    xp_reward: Mapped[Optional[int]] = mapped_column(
        Integer, nullable=True, doc="Explicit base XP; difficulty table applies when 0/None"
    )
    frequency: Mapped[str] = mapped_column(
        String(16), nullable=False, default=HabitFrequency.DAILY.value
    )
    target_days: Mapped[List[int]] = mapped_column(
        JSON_TYPE, nullable=False, default=list, doc="Weekday numbers, Monday=0"
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_completions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_completed_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<Habit(id={self.id}, user_id={self.user_id}, "
            f"current_streak={self.current_streak})>"
        )


class HabitCompletion(Base, IdMixin, TimestampMixin):
    """One completion of a habit on one calendar day."""

    __tablename__ = "habit_completions"
    __table_args__ = (
        UniqueConstraint("habit_id", "completed_date", name="uq_habit_completions_habit_date"),
        Index("ix_habit_completions_user_date", "user_id", "completed_date"),
    )

    habit_id: Mapped[int] = mapped_column(
        PK_TYPE, ForeignKey("habits.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    completed_date: Mapped[date] = mapped_column(Date, nullable=False)
    completed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    xp_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    streak_at_completion: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
