"""
Progression Models
==================

Character ledger state, the rank lookup table and the append-only
activity log.

Schema only. Level/XP rules live in `questline.modules.progression.ledger`;
the Character row is mutated only by the ledger.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, Optional

from sqlalchemy import BigInteger, Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from questline.core.database.base import JSON_TYPE, PK_TYPE, Base, IdMixin, TimestampMixin


class Rank(Base, IdMixin, TimestampMixin):
    """
    Ordered rank tier keyed by a level range.

    `max_level` of None means the tier is unbounded above. Seeded once and
    treated as an immutable lookup table.
    """

    __tablename__ = "ranks"
    __table_args__ = (Index("ix_ranks_min_level", "min_level", unique=True),)

    name: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    min_level: Mapped[int] = mapped_column(Integer, nullable=False)
    max_level: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    color: Mapped[str] = mapped_column(String(16), nullable=False, default="#9CA3AF")

    def contains(self, level: int) -> bool:
        return self.min_level <= level and (self.max_level is None or level <= self.max_level)

    def __repr__(self) -> str:
        return f"<Rank(name={self.name!r}, min_level={self.min_level}, max_level={self.max_level})>"


class Character(Base, IdMixin, TimestampMixin):
    """
    One progression ledger per user.

    Invariants: `level >= 1` and `0 <= current_xp < xp_to_next_level`.
    `total_xp` only decreases through explicit reversal.
    """

    __tablename__ = "characters"
    __table_args__ = (
        Index("ix_characters_level_xp", "level", "current_xp"),
    )

    user_id: Mapped[int] = mapped_column(
        BigInteger, nullable=False, unique=True, index=True, doc="Owning user"
    )

    # ========================================================================
    # LEVEL & EXPERIENCE
    # ========================================================================

    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    current_xp: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0, doc="XP within the current level"
    )
    total_xp: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0, doc="Lifetime XP"
    )
    xp_to_next_level: Mapped[int] = mapped_column(
        Integer, nullable=False, default=100, doc="Threshold for the current level"
    )
    rank_id: Mapped[Optional[int]] = mapped_column(
        PK_TYPE, ForeignKey("ranks.id", ondelete="SET NULL"), nullable=True
    )
    last_level_up: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # ========================================================================
    # ACTIVITY COUNTERS
    # ========================================================================

    streak_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_active_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    total_tasks_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_habits_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_challenges_joined: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_challenges_completed: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "level": self.level,
            "current_xp": self.current_xp,
            "total_xp": self.total_xp,
            "xp_to_next_level": self.xp_to_next_level,
            "rank_id": self.rank_id,
            "streak_days": self.streak_days,
            "longest_streak": self.longest_streak,
            "total_tasks_completed": self.total_tasks_completed,
            "total_habits_completed": self.total_habits_completed,
            "total_challenges_joined": self.total_challenges_joined,
            "total_challenges_completed": self.total_challenges_completed,
        }

    def __repr__(self) -> str:
        return (
            f"<Character(user_id={self.user_id}, level={self.level}, "
            f"current_xp={self.current_xp}, total_xp={self.total_xp})>"
        )


class ActivityLog(Base, IdMixin, TimestampMixin):
    """Append-only audit row for every ledger operation."""

    __tablename__ = "activity_logs"
    __table_args__ = (
        Index("ix_activity_logs_user_created", "user_id", "created_at"),
    )

    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    activity_type: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    xp_gained: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0, doc="Signed; negative for removals"
    )
    level_before: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    level_after: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    rank_before_id: Mapped[Optional[int]] = mapped_column(PK_TYPE, nullable=True)
    rank_after_id: Mapped[Optional[int]] = mapped_column(PK_TYPE, nullable=True)
    importance: Mapped[str] = mapped_column(
        String(16), nullable=False, default="info", doc="info or milestone"
    )
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    details: Mapped[Dict[str, Any]] = mapped_column(JSON_TYPE, nullable=False, default=dict)
