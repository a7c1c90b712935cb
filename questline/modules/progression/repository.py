"""Data access for characters, ranks and the activity log."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import and_, or_, select

from questline.core.logging.logger import get_logger
from questline.database.models import ActivityLog, Character, Rank
from questline.modules.shared.base_repository import BaseRepository

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


class CharacterRepository(BaseRepository[Character]):
    def __init__(self) -> None:
        super().__init__(Character, logger)

    async def get_by_user(
        self, session: AsyncSession, user_id: int, *, for_update: bool = False
    ) -> Optional[Character]:
        return await self.find_one_where(
            session, Character.user_id == user_id, for_update=for_update
        )

    # ------------------------------------------------------------------
    # Global leaderboard queries
    # ------------------------------------------------------------------

    @staticmethod
    def _window(since: Optional[datetime]) -> list:
        return [Character.updated_at >= since] if since is not None else []

    async def list_leaderboard(
        self,
        session: AsyncSession,
        *,
        since: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Character]:
        return await self.find_many_where(
            session,
            *self._window(since),
            order_by=[Character.level.desc(), Character.current_xp.desc(), Character.id.asc()],
            limit=limit,
            offset=offset,
        )

    async def count_leaderboard(self, session: AsyncSession, *, since: Optional[datetime] = None) -> int:
        return await self.count(session, *self._window(since))

    async def count_ahead(
        self,
        session: AsyncSession,
        level: int,
        current_xp: int,
        *,
        since: Optional[datetime] = None,
    ) -> int:
        """Characters strictly ahead on (level, current_xp)."""
        ahead = or_(
            Character.level > level,
            and_(Character.level == level, Character.current_xp > current_xp),
        )
        return await self.count(session, *self._window(since), ahead)


class RankRepository(BaseRepository[Rank]):
    def __init__(self) -> None:
        super().__init__(Rank, logger)

    async def list_ordered(self, session: AsyncSession) -> List[Rank]:
        return await self.find_many_where(session, order_by=[Rank.min_level.asc()])

    async def resolve_for_level(self, session: AsyncSession, level: int) -> Optional[Rank]:
        """Highest rank whose `min_level` does not exceed `level`."""
        stmt = (
            select(Rank)
            .where(Rank.min_level <= level)
            .order_by(Rank.min_level.desc())
            .limit(1)
        )
        result = await session.execute(stmt)
        rank = result.scalar_one_or_none()
        self._trace("resolve_for_level", level=level, rank_id=rank.id if rank else None)
        return rank


class ActivityLogRepository(BaseRepository[ActivityLog]):
    def __init__(self) -> None:
        super().__init__(ActivityLog, logger)

    async def list_for_user(
        self, session: AsyncSession, user_id: int, limit: int = 50
    ) -> List[ActivityLog]:
        return await self.find_many_where(
            session,
            ActivityLog.user_id == user_id,
            order_by=[ActivityLog.created_at.desc(), ActivityLog.id.desc()],
            limit=limit,
        )
