"""
Progression Ledger

Purpose
-------
Single writer of `Character` progression state. Awards and removes XP,
walks levels up and down along the configured level curve, resolves the
character's rank, keeps activity counters and the daily activity streak,
writes the activity log and queues progression events.

Design Notes
------------
- Every call runs inside the caller's `UnitOfWork`; the Character row is
  locked with `SELECT ... FOR UPDATE` before it is read.
- `award(n)` followed by `remove(n)` restores level, current_xp, total_xp
  and rank exactly.
- Stored numeric fields are sanitized on read (string-typed, fractional,
  negative or NaN values are coerced) and each repair is logged.
- Events are queued and published only after commit:
  `progression.xp_changed`, `progression.level_up`, `progression.level_down`,
  `progression.rank_up`, `progression.rank_down`.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from questline.database.models import ActivityLog, ActivityType, Character, Rank
from questline.modules.progression.repository import (
    ActivityLogRepository,
    CharacterRepository,
    RankRepository,
)
from questline.modules.progression.streaks import StreakState, advance_streak
from questline.modules.shared.base_service import BaseService
from questline.modules.shared.exceptions import NotFoundError, ValidationError
from questline.modules.shared.formulas import (
    MAX_XP_PER_EVENT,
    apply_xp_gain,
    apply_xp_loss,
    validate_xp_amount,
    xp_to_next_level,
)

if TYPE_CHECKING:
    from logging import Logger

    from questline.core.database.unit_of_work import UnitOfWork
    from questline.core.event.bus import EventBus


# Activity kinds accepted by record_activity / revert_activity, mapped to
# the Character counter they bump. None means "streak only".
ACTIVITY_COUNTERS: Dict[str, Optional[str]] = {
    "task": "total_tasks_completed",
    "habit": "total_habits_completed",
    "challenge_task": None,
    "challenge_joined": "total_challenges_joined",
    "challenge_completed": "total_challenges_completed",
}
STREAK_KINDS = frozenset({"task", "habit", "challenge_task"})


def _rank_dict(rank: Optional[Rank]) -> Optional[Dict[str, Any]]:
    if rank is None:
        return None
    return {
        "id": rank.id,
        "name": rank.name,
        "color": rank.color,
        "min_level": rank.min_level,
        "max_level": rank.max_level,
    }


@dataclass
class LedgerResult:
    """
    Outcome of one award/remove call.

    Level and XP figures are copied when the result is built, so a later
    award on the same character in the same unit of work does not change
    what an earlier result reports. `character` is the live row; its
    activity counters are read when the result is serialized.
    """

    character: Character
    xp_delta: int
    old_level: int
    new_level: int
    current_xp: int
    total_xp: int
    xp_to_next_level: int
    old_rank: Optional[Rank] = None
    new_rank: Optional[Rank] = None
    repaired_fields: List[str] = field(default_factory=list)

    @classmethod
    def capture(
        cls,
        character: Character,
        *,
        xp_delta: int,
        old_level: int,
        old_rank: Optional[Rank],
        new_rank: Optional[Rank],
        repaired_fields: List[str],
    ) -> "LedgerResult":
        return cls(
            character,
            xp_delta=xp_delta,
            old_level=old_level,
            new_level=character.level,
            current_xp=character.current_xp,
            total_xp=character.total_xp,
            xp_to_next_level=character.xp_to_next_level,
            old_rank=old_rank,
            new_rank=new_rank,
            repaired_fields=repaired_fields,
        )

    @property
    def leveled_up(self) -> bool:
        return self.new_level > self.old_level

    @property
    def leveled_down(self) -> bool:
        return self.new_level < self.old_level

    @property
    def ranked_up(self) -> bool:
        return self._rank_changed() and self._rank_order(self.new_rank) > self._rank_order(self.old_rank)

    @property
    def ranked_down(self) -> bool:
        return self._rank_changed() and self._rank_order(self.new_rank) < self._rank_order(self.old_rank)

    def _rank_changed(self) -> bool:
        old_id = self.old_rank.id if self.old_rank else None
        new_id = self.new_rank.id if self.new_rank else None
        return old_id != new_id

    @staticmethod
    def _rank_order(rank: Optional[Rank]) -> int:
        return rank.min_level if rank is not None else 0

    def _figures(self) -> Dict[str, Any]:
        return {
            "level": self.new_level,
            "current_xp": self.current_xp,
            "total_xp": self.total_xp,
            "xp_to_next_level": self.xp_to_next_level,
            "rank_id": self.new_rank.id if self.new_rank else None,
        }

    def to_dict(self) -> Dict[str, Any]:
        level_changed = self.leveled_up or self.leveled_down
        rank_changed = self.ranked_up or self.ranked_down
        return {
            "character": {**self.character.to_dict(), **self._figures()},
            "xp_delta": self.xp_delta,
            "leveled_up": self.leveled_up,
            "leveled_down": self.leveled_down,
            "new_level": self.new_level if level_changed else None,
            "ranked_up": self.ranked_up,
            "ranked_down": self.ranked_down,
            "new_rank": _rank_dict(self.new_rank) if rank_changed else None,
            "current_xp": self.current_xp,
            "xp_to_next_level": self.xp_to_next_level,
            "xp_for_next_level": self.xp_to_next_level,
        }


def _coerce_count(value: Any, minimum: int = 0) -> int:
    """Best-effort conversion of a stored counter to an int >= minimum."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return minimum
    if not math.isfinite(number):
        return minimum
    return max(minimum, int(math.floor(number)))


class ProgressionLedger(BaseService):
    """
    Applies XP to characters with level and rank transitions.

    Examples
    --------
    >>> async with unit_of_work(session_factory, bus) as uow:
    ...     result = await ledger.award(uow, user_id=7, amount=30, source="task_completed")
    >>> result.leveled_up
    True
    """

    def __init__(
        self,
        config_manager: Any,
        event_bus: Optional[EventBus],
        logger: Logger,
        *,
        characters: Optional[CharacterRepository] = None,
        ranks: Optional[RankRepository] = None,
        activity_logs: Optional[ActivityLogRepository] = None,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self.characters = characters or CharacterRepository()
        self.ranks = ranks or RankRepository()
        self.activity_logs = activity_logs or ActivityLogRepository()

    # ------------------------------------------------------------------
    # Curve & validation
    # ------------------------------------------------------------------

    @property
    def max_xp_per_event(self) -> int:
        return int(self.get_config("progression.max_xp_per_event", MAX_XP_PER_EVENT))

    def threshold(self, level: int) -> int:
        base = float(self.get_config("progression.level_curve.base", 100))
        growth = float(self.get_config("progression.level_curve.growth", 1.15))
        return xp_to_next_level(level, base, growth)

    def validate_amount(self, amount: Any) -> int:
        return validate_xp_amount(amount, "amount", self.max_xp_per_event)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def ensure_character(self, uow: UnitOfWork, user_id: int) -> Character:
        """Return the user's character, creating the level-1 row if missing."""
        self.validate_positive_int(user_id, "user_id")
        character = await self.characters.get_by_user(uow.session, user_id, for_update=True)
        if character is not None:
            return character

        rank = await self.ranks.resolve_for_level(uow.session, 1)
        character = Character(
            user_id=user_id,
            level=1,
            current_xp=0,
            total_xp=0,
            xp_to_next_level=self.threshold(1),
            rank_id=rank.id if rank else None,
            streak_days=0,
            longest_streak=0,
            total_tasks_completed=0,
            total_habits_completed=0,
            total_challenges_joined=0,
            total_challenges_completed=0,
        )
        self.characters.add(uow.session, character)
        await self.characters.flush(uow.session)
        self.log_operation("ensure_character", user_id=user_id, character_created=True)
        return character

    async def _load_locked(self, uow: UnitOfWork, user_id: int) -> Character:
        character = await self.characters.get_by_user(uow.session, user_id, for_update=True)
        if character is None:
            raise NotFoundError("Character", user_id)
        return character

    def _sanitize(self, character: Character) -> List[str]:
        """Coerce stored numeric fields back into range; returns repaired names."""
        repaired: List[str] = []

        def fix(name: str, value: int) -> None:
            stored = getattr(character, name)
            if type(stored) is not int or stored != value:
                setattr(character, name, value)
                repaired.append(name)

        fix("level", _coerce_count(character.level, minimum=1))
        fix("current_xp", _coerce_count(character.current_xp))
        fix("total_xp", max(_coerce_count(character.total_xp), character.current_xp))
        fix("xp_to_next_level", self.threshold(character.level))
        for counter in (
            "streak_days",
            "longest_streak",
            "total_tasks_completed",
            "total_habits_completed",
            "total_challenges_joined",
            "total_challenges_completed",
        ):
            fix(counter, _coerce_count(getattr(character, counter)))

        if repaired:
            self.log.warning(
                "Repaired corrupt character fields",
                extra={"user_id": character.user_id, "fields": repaired},
            )
        return repaired

    async def _current_rank(self, uow: UnitOfWork, character: Character) -> Optional[Rank]:
        if character.rank_id is None:
            return None
        return await self.ranks.get(uow.session, character.rank_id)

    # ------------------------------------------------------------------
    # XP operations
    # ------------------------------------------------------------------

    async def award(
        self,
        uow: UnitOfWork,
        user_id: int,
        amount: Any,
        *,
        source: str = ActivityType.XP_AWARDED.value,
        source_id: Optional[int] = None,
        description: Optional[str] = None,
    ) -> LedgerResult:
        """Add `amount` XP, leveling up as many times as the curve allows."""
        amount = self.validate_amount(amount)
        character = await self._load_locked(uow, user_id)
        repaired = self._sanitize(character)
        old_level = character.level
        old_rank = await self._current_rank(uow, character)

        character.level, character.current_xp = apply_xp_gain(
            character.level, character.current_xp, amount, self.threshold
        )
        character.total_xp += amount
        character.xp_to_next_level = self.threshold(character.level)
        if character.level > old_level:
            character.last_level_up = uow.now()

        new_rank = await self._apply_rank(uow, character)
        result = LedgerResult.capture(
            character,
            xp_delta=amount,
            old_level=old_level,
            old_rank=old_rank,
            new_rank=new_rank,
            repaired_fields=repaired,
        )

        if description is None:
            description = (
                f"Leveled up to {character.level}! Earned {amount} XP"
                if result.leveled_up
                else f"Earned {amount} XP"
            )
        self._write_logs(uow, result, source, source_id, description)
        self._queue_events(uow, result, source, source_id)

        self.log_operation(
            "award_xp",
            user_id=user_id,
            amount=amount,
            source=source,
            level=character.level,
            leveled_up=result.leveled_up,
        )
        return result

    async def remove(
        self,
        uow: UnitOfWork,
        user_id: int,
        amount: Any,
        *,
        source: str = ActivityType.XP_REMOVED.value,
        source_id: Optional[int] = None,
        description: Optional[str] = None,
    ) -> LedgerResult:
        """Take back `amount` XP, walking levels down; never below level 1 / 0 XP."""
        amount = self.validate_amount(amount)
        character = await self._load_locked(uow, user_id)
        repaired = self._sanitize(character)
        old_level = character.level
        old_rank = await self._current_rank(uow, character)

        character.level, character.current_xp = apply_xp_loss(
            character.level, character.current_xp, amount, self.threshold
        )
        character.total_xp -= min(character.total_xp, amount)
        character.xp_to_next_level = self.threshold(character.level)

        new_rank = await self._apply_rank(uow, character)
        result = LedgerResult.capture(
            character,
            xp_delta=-amount,
            old_level=old_level,
            old_rank=old_rank,
            new_rank=new_rank,
            repaired_fields=repaired,
        )

        if description is None:
            description = (
                f"Dropped to level {character.level}. Lost {amount} XP"
                if result.leveled_down
                else f"Lost {amount} XP"
            )
        self._write_logs(uow, result, source, source_id, description)
        self._queue_events(uow, result, source, source_id)

        self.log_operation(
            "remove_xp",
            user_id=user_id,
            amount=amount,
            source=source,
            level=character.level,
            leveled_down=result.leveled_down,
        )
        return result

    async def _apply_rank(self, uow: UnitOfWork, character: Character) -> Optional[Rank]:
        rank = await self.ranks.resolve_for_level(uow.session, character.level)
        new_id = rank.id if rank else None
        if new_id != character.rank_id:
            character.rank_id = new_id
        return rank

    def _write_logs(
        self,
        uow: UnitOfWork,
        result: LedgerResult,
        source: str,
        source_id: Optional[int],
        description: str,
    ) -> None:
        character = result.character
        milestone = result.leveled_up or result.leveled_down
        self.activity_logs.add(
            uow.session,
            ActivityLog(
                user_id=character.user_id,
                activity_type=source,
                description=description,
                xp_gained=result.xp_delta,
                level_before=result.old_level,
                level_after=result.new_level,
                rank_before_id=result.old_rank.id if result.old_rank else None,
                rank_after_id=character.rank_id,
                importance="milestone" if milestone else "info",
                is_public=True,
                details={"source_id": source_id, "repaired_fields": result.repaired_fields},
            ),
        )

        if result.ranked_up or result.ranked_down:
            verb = "Advanced to" if result.ranked_up else "Dropped to"
            rank_name = result.new_rank.name if result.new_rank else "unranked"
            self.activity_logs.add(
                uow.session,
                ActivityLog(
                    user_id=character.user_id,
                    activity_type=(
                        ActivityType.RANK_UP.value if result.ranked_up else ActivityType.RANK_DOWN.value
                    ),
                    description=f"{verb} {rank_name} rank",
                    xp_gained=0,
                    level_before=result.old_level,
                    level_after=result.new_level,
                    rank_before_id=result.old_rank.id if result.old_rank else None,
                    rank_after_id=character.rank_id,
                    importance="milestone",
                    is_public=True,
                    details={"source": source, "source_id": source_id},
                ),
            )

    def _queue_events(
        self,
        uow: UnitOfWork,
        result: LedgerResult,
        source: str,
        source_id: Optional[int],
    ) -> None:
        character = result.character
        user_id = character.user_id

        self.queue_event(
            uow,
            "progression.xp_changed",
            {
                "user_id": user_id,
                "xp_earned": result.xp_delta,
                "current_xp": result.current_xp,
                "total_xp": result.total_xp,
                "level": result.new_level,
                "xp_to_next_level": result.xp_to_next_level,
                "source": source,
                "source_id": source_id,
            },
        )
        if result.leveled_up:
            self.queue_event(
                uow,
                "progression.level_up",
                {"user_id": user_id, "old_level": result.old_level, "new_level": result.new_level},
            )
        elif result.leveled_down:
            self.queue_event(
                uow,
                "progression.level_down",
                {"user_id": user_id, "old_level": result.old_level, "new_level": result.new_level},
            )

        if result.ranked_up or result.ranked_down:
            name = "progression.rank_up" if result.ranked_up else "progression.rank_down"
            self.queue_event(
                uow,
                name,
                {
                    "user_id": user_id,
                    "old_rank": _rank_dict(result.old_rank),
                    "new_rank": _rank_dict(result.new_rank),
                },
            )

    # ------------------------------------------------------------------
    # Counters & activity streak
    # ------------------------------------------------------------------

    async def record_activity(
        self,
        uow: UnitOfWork,
        user_id: int,
        kind: str,
        day: Optional[date] = None,
    ) -> Character:
        """Bump the counter for `kind` and extend the daily activity streak."""
        if kind not in ACTIVITY_COUNTERS:
            raise ValidationError("kind", f"unknown activity kind {kind!r}")

        character = await self._load_locked(uow, user_id)
        self._sanitize(character)

        counter = ACTIVITY_COUNTERS[kind]
        if counter is not None:
            setattr(character, counter, getattr(character, counter) + 1)

        if kind in STREAK_KINDS:
            state = advance_streak(
                StreakState(
                    current=character.streak_days,
                    longest=character.longest_streak,
                    last_date=character.last_active_date,
                ),
                day or uow.today(),
            )
            character.streak_days = state.current
            character.longest_streak = state.longest
            character.last_active_date = state.last_date

        return character

    async def revert_activity(self, uow: UnitOfWork, user_id: int, kind: str) -> Character:
        """Decrement the counter for `kind`, never below zero. The streak is kept."""
        if kind not in ACTIVITY_COUNTERS:
            raise ValidationError("kind", f"unknown activity kind {kind!r}")

        character = await self._load_locked(uow, user_id)
        self._sanitize(character)

        counter = ACTIVITY_COUNTERS[kind]
        if counter is not None:
            setattr(character, counter, max(0, getattr(character, counter) - 1))
        return character
