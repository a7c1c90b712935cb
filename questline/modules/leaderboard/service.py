"""
Leaderboard Ranker

Purpose
-------
Read-side ranking for challenge leaderboards and the global character
leaderboard.

Design Notes
------------
- Standard competition ranking: rank = 1 + number of rows strictly ahead
  on the sort keys, so exact ties share a rank and the next distinct row
  skips ahead ("1, 1, 3").
- Page entries and "my rank" use the same comparison, so a user sees the
  same position in the list and in their own summary.
- Challenge keys: total_points, completed_tasks_count, current_progress
  (all DESC). Only active and completed participants are ranked.
- Global keys: level, current_xp (DESC). Weekly and monthly timeframes
  only include characters updated inside the window.
- `refresh_participant_ranks` is the only writer here; it caches ranks on
  the participant rows.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar, Union

from questline.core.database.base import ensure_utc, utc_now
from questline.database.models import ChallengeParticipant, Character, LeaderboardTimeframe
from questline.modules.challenges.repository import (
    RANKED_STATUSES,
    ChallengeParticipantRepository,
    GroupChallengeRepository,
)
from questline.modules.progression.repository import CharacterRepository, RankRepository
from questline.modules.shared.base_service import BaseService
from questline.modules.shared.exceptions import NotFoundError, ValidationError

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession

    from questline.core.database.unit_of_work import UnitOfWork
    from questline.core.event.bus import EventBus

T = TypeVar("T")

TIMEFRAME_WINDOWS: Dict[str, Optional[timedelta]] = {
    LeaderboardTimeframe.ALL.value: None,
    LeaderboardTimeframe.WEEKLY.value: timedelta(days=7),
    LeaderboardTimeframe.MONTHLY.value: timedelta(days=30),
}


def participant_sort_key(participant: ChallengeParticipant) -> Tuple[int, int, int]:
    return (
        participant.total_points,
        participant.completed_tasks_count,
        participant.current_progress,
    )


def character_sort_key(character: Character) -> Tuple[int, int]:
    return (character.level, character.current_xp)


def competition_ranks(rows: Sequence[T], key: Callable[[T], Any], first_rank: int, offset: int) -> List[int]:
    """
    Ranks for a sorted page of rows.

    `first_rank` is the rank of `rows[0]` (1 + rows strictly ahead of it);
    later rows share the previous rank on a tie, otherwise their rank is
    their absolute position.

    >>> competition_ranks([5, 5, 3], key=lambda v: v, first_rank=1, offset=0)
    [1, 1, 3]
    """
    ranks: List[int] = []
    previous: Any = None
    for index, row in enumerate(rows):
        current = key(row)
        if index == 0:
            ranks.append(first_rank)
        elif current == previous:
            ranks.append(ranks[-1])
        else:
            ranks.append(offset + index + 1)
        previous = current
    return ranks


@dataclass
class LeaderboardPage:
    entries: List[Dict[str, Any]]
    total: int
    limit: int
    offset: int
    my_rank: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entries": self.entries,
            "total": self.total,
            "limit": self.limit,
            "offset": self.offset,
            "my_rank": self.my_rank,
            **self.extra,
        }


class LeaderboardRanker(BaseService):
    def __init__(
        self,
        config_manager: Any,
        event_bus: Optional[EventBus],
        logger: Logger,
        *,
        challenges: Optional[GroupChallengeRepository] = None,
        participants: Optional[ChallengeParticipantRepository] = None,
        characters: Optional[CharacterRepository] = None,
        ranks: Optional[RankRepository] = None,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self.challenges = challenges or GroupChallengeRepository()
        self.participants = participants or ChallengeParticipantRepository()
        self.characters = characters or CharacterRepository()
        self.ranks = ranks or RankRepository()

    def _page_bounds(self, limit: Optional[int], offset: int) -> Tuple[int, int]:
        max_size = int(self.get_config("leaderboard.max_page_size", 100))
        if limit is None:
            limit = int(self.get_config("leaderboard.default_page_size", 50))
        if isinstance(limit, bool) or not isinstance(limit, int):
            raise ValidationError("limit", f"limit must be an integer, got {limit!r}")
        self.validate_range(limit, "limit", 1, max_size)
        self.validate_non_negative_int(offset, "offset")
        return limit, offset

    # ------------------------------------------------------------------
    # Challenge leaderboard
    # ------------------------------------------------------------------

    async def get_challenge_leaderboard(
        self,
        session: AsyncSession,
        challenge_id: int,
        limit: Optional[int] = None,
        offset: int = 0,
        user_id: Optional[int] = None,
    ) -> LeaderboardPage:
        limit, offset = self._page_bounds(limit, offset)

        challenge = await self.challenges.get(session, challenge_id)
        if challenge is None:
            raise NotFoundError("GroupChallenge", challenge_id)

        rows = await self.participants.list_ranked(session, challenge_id, limit=limit, offset=offset)
        total = await self.participants.count_ranked(session, challenge_id)

        entries: List[Dict[str, Any]] = []
        if rows:
            first_rank = await self._participant_rank(session, rows[0])
            ranks = competition_ranks(rows, participant_sort_key, first_rank, offset)
            entries = [self._participant_entry(p, rank) for p, rank in zip(rows, ranks)]

        my_rank: Optional[int] = None
        if user_id is not None:
            mine = await self.participants.get_for_user(session, challenge_id, user_id)
            if mine is not None and mine.status in RANKED_STATUSES:
                my_rank = await self._participant_rank(session, mine)

        return LeaderboardPage(
            entries=entries,
            total=total,
            limit=limit,
            offset=offset,
            my_rank=my_rank,
            extra={
                "challenge": {
                    "id": challenge.id,
                    "title": challenge.title,
                    "goal_type": challenge.goal_type,
                    "goal_target": challenge.goal_target,
                    "status": challenge.status,
                }
            },
        )

    async def get_participant_rank(
        self, session: AsyncSession, challenge_id: int, user_id: int
    ) -> Optional[int]:
        """Rank of `user_id` in the challenge, or None if they are not ranked."""
        participant = await self.participants.get_for_user(session, challenge_id, user_id)
        if participant is None or participant.status not in RANKED_STATUSES:
            return None
        return await self._participant_rank(session, participant)

    async def _participant_rank(self, session: AsyncSession, participant: ChallengeParticipant) -> int:
        ahead = await self.participants.count_ahead(
            session,
            participant.challenge_id,
            participant.total_points,
            participant.completed_tasks_count,
            participant.current_progress,
        )
        return ahead + 1

    @staticmethod
    def _participant_entry(participant: ChallengeParticipant, rank: int) -> Dict[str, Any]:
        return {
            "rank": rank,
            "user_id": participant.user_id,
            "participant_id": participant.id,
            "total_points": participant.total_points,
            "completed_tasks_count": participant.completed_tasks_count,
            "current_progress": participant.current_progress,
            "total_xp_earned": participant.total_xp_earned,
            "streak_days": participant.streak_days,
            "status": participant.status,
        }

    async def refresh_participant_ranks(self, uow: UnitOfWork, challenge_id: int) -> int:
        """Write cached ranks for every ranked participant; returns how many changed."""
        rows = await self.participants.list_ranked(uow.session, challenge_id)
        ranks = competition_ranks(rows, participant_sort_key, 1, 0)

        changed = 0
        for participant, rank in zip(rows, ranks):
            if participant.rank != rank:
                participant.rank = rank
                changed += 1
        await self.participants.flush(uow.session)

        self.log_operation("refresh_participant_ranks", challenge_id=challenge_id, changed=changed)
        return changed

    # ------------------------------------------------------------------
    # Global leaderboard
    # ------------------------------------------------------------------

    async def get_global_leaderboard(
        self,
        session: AsyncSession,
        timeframe: Union[LeaderboardTimeframe, str] = LeaderboardTimeframe.ALL,
        limit: Optional[int] = None,
        offset: int = 0,
        user_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> LeaderboardPage:
        limit, offset = self._page_bounds(limit, offset)
        frame = timeframe.value if isinstance(timeframe, LeaderboardTimeframe) else str(timeframe)
        if frame not in TIMEFRAME_WINDOWS:
            raise ValidationError(
                "timeframe", f"timeframe must be one of {sorted(TIMEFRAME_WINDOWS)}, got {frame!r}"
            )
        window = TIMEFRAME_WINDOWS[frame]
        since = (now or utc_now()) - window if window is not None else None

        rows = await self.characters.list_leaderboard(session, since=since, limit=limit, offset=offset)
        total = await self.characters.count_leaderboard(session, since=since)
        tiers = {rank.id: rank for rank in await self.ranks.list_ordered(session)}

        entries: List[Dict[str, Any]] = []
        if rows:
            first = rows[0]
            first_rank = (
                await self.characters.count_ahead(session, first.level, first.current_xp, since=since)
                + 1
            )
            positions = competition_ranks(rows, character_sort_key, first_rank, offset)
            for character, position in zip(rows, positions):
                tier = tiers.get(character.rank_id) if character.rank_id is not None else None
                entries.append(
                    {
                        "rank": position,
                        "user_id": character.user_id,
                        "level": character.level,
                        "current_xp": character.current_xp,
                        "total_xp": character.total_xp,
                        "rank_name": tier.name if tier else None,
                        "rank_color": tier.color if tier else None,
                    }
                )

        my_rank: Optional[int] = None
        if user_id is not None:
            mine = await self.characters.get_by_user(session, user_id)
            in_window = mine is not None and (
                since is None or ensure_utc(mine.updated_at) >= since  # type: ignore[operator]
            )
            if mine is not None and in_window:
                my_rank = (
                    await self.characters.count_ahead(session, mine.level, mine.current_xp, since=since)
                    + 1
                )

        return LeaderboardPage(
            entries=entries,
            total=total,
            limit=limit,
            offset=offset,
            my_rank=my_rank,
            extra={"timeframe": frame},
        )

