"""
Group Challenge Models
======================

Group challenges, their participants, the tasks inside a challenge, the
per-participant completions of those tasks and the per-day progress
snapshots that feed progress charts.

Schema only. Eligibility, verification and goal rules live in
`questline.modules.challenges`.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from questline.core.database.base import JSON_TYPE, PK_TYPE, Base, IdMixin, TimestampMixin, utc_now
from questline.database.models.enums import (
    ChallengeStatus,
    CompletionStatus,
    GoalType,
    ParticipantStatus,
    VerificationType,
)


class GroupChallenge(Base, IdMixin, TimestampMixin):
    """
    A time-boxed challenge that users join and progress through.

    `status` only moves forward (upcoming -> active -> completed); the
    finalizer performs the completed transition with a conditional UPDATE.
    """

    __tablename__ = "group_challenges"
    __table_args__ = (
        Index("ix_group_challenges_status_end", "status", "end_date"),
        Index("ix_group_challenges_status_start", "status", "start_date"),
    )

    creator_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=ChallengeStatus.UPCOMING.value
    )
    goal_type: Mapped[str] = mapped_column(
        String(16), nullable=False, default=GoalType.TASK_COUNT.value
    )
    goal_target: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    verification_type: Mapped[str] = mapped_column(
        String(16), nullable=False, default=VerificationType.NONE.value
    )
    xp_reward: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, doc="Bonus XP for reaching the goal"
    )
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    invite_code: Mapped[Optional[str]] = mapped_column(String(16), nullable=True, unique=True)
    max_participants: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    current_participants: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in (ChallengeStatus.COMPLETED.value, ChallengeStatus.CANCELLED.value)

    def __repr__(self) -> str:
        return f"<GroupChallenge(id={self.id}, status={self.status!r})>"


class ChallengeParticipant(Base, IdMixin, TimestampMixin):
    """Membership and progress counters of one user in one challenge."""

    __tablename__ = "challenge_participants"
    __table_args__ = (
        UniqueConstraint("challenge_id", "user_id", name="uq_challenge_participants_user"),
        Index(
            "ix_challenge_participants_board",
            "challenge_id",
            "status",
            "total_points",
            "completed_tasks_count",
            "current_progress",
        ),
    )

    challenge_id: Mapped[int] = mapped_column(
        PK_TYPE, ForeignKey("group_challenges.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=ParticipantStatus.ACTIVE.value
    )

    current_progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_xp_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_tasks_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    streak_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_activity_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    rank: Mapped[Optional[int]] = mapped_column(
        Integer, nullable=True, doc="Cached leaderboard position"
    )

    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    dropped_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return (
            f"<ChallengeParticipant(challenge_id={self.challenge_id}, "
            f"user_id={self.user_id}, status={self.status!r})>"
        )


class ChallengeTask(Base, IdMixin, TimestampMixin):
    """A task inside a challenge, worth fixed points and XP once approved."""

    __tablename__ = "challenge_tasks"
    __table_args__ = (
        Index("ix_challenge_tasks_challenge_order", "challenge_id", "order_index"),
    )

    challenge_id: Mapped[int] = mapped_column(
        PK_TYPE, ForeignKey("group_challenges.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    point_value: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    xp_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_repeatable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    max_completions: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    prerequisites: Mapped[List[int]] = mapped_column(
        JSON_TYPE, nullable=False, default=list, doc="ChallengeTask ids that must be approved first"
    )
    available_from: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    available_until: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    requires_proof: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    completion_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, doc="Approved completions across all participants"
    )


class ChallengeTaskCompletion(Base, IdMixin, TimestampMixin):
    """One attempt of a participant at a challenge task."""

    __tablename__ = "challenge_task_completions"
    __table_args__ = (
        Index(
            "ix_challenge_task_completions_participant_task",
            "participant_id",
            "task_id",
            "status",
        ),
        Index("ix_challenge_task_completions_challenge_status", "challenge_id", "status"),
    )

    challenge_id: Mapped[int] = mapped_column(
        PK_TYPE, ForeignKey("group_challenges.id", ondelete="CASCADE"), nullable=False
    )
    task_id: Mapped[int] = mapped_column(
        PK_TYPE, ForeignKey("challenge_tasks.id", ondelete="CASCADE"), nullable=False
    )
    participant_id: Mapped[int] = mapped_column(
        PK_TYPE, ForeignKey("challenge_participants.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=CompletionStatus.PENDING.value
    )
    completion_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    completed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    proof: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    proof_image_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    verified_by: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    verified_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ai_analysis: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON_TYPE, nullable=True)

    points_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    xp_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class ChallengeProgress(Base, IdMixin, TimestampMixin):
    """Per-participant, per-day progress snapshot."""

    __tablename__ = "challenge_progress"
    __table_args__ = (
        UniqueConstraint("participant_id", "activity_date", name="uq_challenge_progress_participant_date"),
    )

    participant_id: Mapped[int] = mapped_column(
        PK_TYPE, ForeignKey("challenge_participants.id", ondelete="CASCADE"), nullable=False
    )
    challenge_id: Mapped[int] = mapped_column(PK_TYPE, nullable=False, index=True)
    activity_date: Mapped[date] = mapped_column(Date, nullable=False)
    progress_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tasks_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    xp_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    points_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cumulative_progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    streak_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
