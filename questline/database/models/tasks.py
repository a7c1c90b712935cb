"""
Task Models
===========

Tasks (optionally nested through `parent_task_id`) and their completion
events. Recurring tasks accumulate one `TaskCompletion` per completion
and return to pending; one-off tasks end in `completed`.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from questline.core.database.base import PK_TYPE, Base, IdMixin, TimestampMixin, utc_now
from questline.database.models.enums import Difficulty, TaskPriority, TaskStatus


class Task(Base, IdMixin, TimestampMixin):
    __tablename__ = "tasks"
    __table_args__ = (
        Index("ix_tasks_user_status", "user_id", "status"),
        Index("ix_tasks_status_due", "status", "due_date"),
    )

    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=TaskStatus.PENDING.value
    )
    priority: Mapped[str] = mapped_column(
        String(16), nullable=False, default=TaskPriority.MEDIUM.value
    )
    difficulty: Mapped[str] = mapped_column(
        String(16), nullable=False, default=Difficulty.MEDIUM.value
    )
    xp_reward: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    is_recurring: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    parent_task_id: Mapped[Optional[int]] = mapped_column(
        PK_TYPE, ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True, index=True
    )

    def __repr__(self) -> str:
        return f"<Task(id={self.id}, user_id={self.user_id}, status={self.status!r})>"


class TaskCompletion(Base, IdMixin, TimestampMixin):
    """One completion event of a task, with the XP it earned."""

    __tablename__ = "task_completions"
    __table_args__ = (
        Index("ix_task_completions_task_completed", "task_id", "completed_at"),
    )

    task_id: Mapped[int] = mapped_column(
        PK_TYPE, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    completed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    xp_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    duration_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
