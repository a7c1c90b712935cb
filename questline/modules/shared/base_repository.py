"""
Generic async repository over one SQLAlchemy model.

Each entity gets a subclass (`HabitRepository`, `ChallengeParticipantRepository`,
...) whose methods hold every query the engine runs against that table.

- `for_update=True` adds `SELECT ... FOR UPDATE`. PostgreSQL honours it;
  SQLite accepts and ignores it.
- Models declare no relationships, so nothing lazy-loads inside async
  code. Related rows are fetched with explicit queries.
- Repositories never commit; the caller's `UnitOfWork` owns the transaction.

    class HabitRepository(BaseRepository[Habit]):
        async def get_owned(self, session, habit_id, user_id):
            return await self.find_one_where(
                session, Habit.id == habit_id, Habit.user_id == user_id
            )
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Generic, List, Optional, Sequence, Type, TypeVar

from sqlalchemy import Select, func, select

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy import ColumnElement
    from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")


class BaseRepository(Generic[T]):
    def __init__(self, model_class: Type[T], logger: Logger) -> None:
        self.model_class = model_class
        self.log = logger

    def _trace(self, operation: str, **context: Any) -> None:
        self.log.debug(
            "%s.%s", self.model_class.__name__, operation,
            extra={"model": self.model_class.__name__, **context},
        )

    def _select(
        self,
        conditions: Sequence[ColumnElement[bool]],
        *,
        for_update: bool = False,
        order_by: Optional[Sequence[Any]] = None,
    ) -> Select[Any]:
        stmt = select(self.model_class).where(*conditions)
        if order_by:
            stmt = stmt.order_by(*order_by)
        if for_update:
            stmt = stmt.with_for_update()
        return stmt

    async def get(
        self,
        session: AsyncSession,
        id_value: Any,
        *,
        for_update: bool = False,
    ) -> Optional[T]:
        """Row by primary key, or None."""
        stmt = self._select([self.model_class.id == id_value], for_update=for_update)  # type: ignore[attr-defined]
        instance = (await session.execute(stmt)).scalar_one_or_none()
        self._trace("get", id=id_value, found=instance is not None, locked=for_update)
        return instance

    async def find_one_where(
        self,
        session: AsyncSession,
        *conditions: ColumnElement[bool],
        for_update: bool = False,
        order_by: Optional[Sequence[Any]] = None,
    ) -> Optional[T]:
        """
        First row matching every condition.

        Without `order_by`, several matches raise `MultipleResultsFound`.
        """
        stmt = self._select(conditions, for_update=for_update, order_by=order_by)
        if order_by:
            stmt = stmt.limit(1)
        instance = (await session.execute(stmt)).scalar_one_or_none()
        self._trace("find_one_where", found=instance is not None, locked=for_update)
        return instance

    async def find_many_where(
        self,
        session: AsyncSession,
        *conditions: ColumnElement[bool],
        for_update: bool = False,
        order_by: Optional[Sequence[Any]] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[T]:
        stmt = self._select(conditions, for_update=for_update, order_by=order_by)
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset:
            stmt = stmt.offset(offset)
        rows = list((await session.execute(stmt)).scalars().all())
        self._trace("find_many_where", found_count=len(rows), limit=limit, offset=offset)
        return rows

    async def count(self, session: AsyncSession, *conditions: ColumnElement[bool]) -> int:
        stmt = select(func.count()).select_from(self.model_class).where(*conditions)
        total = int((await session.execute(stmt)).scalar_one())
        self._trace("count", count=total)
        return total

    def add(self, session: AsyncSession, instance: T) -> T:
        session.add(instance)
        return instance

    async def delete(self, session: AsyncSession, instance: T) -> None:
        await session.delete(instance)
        self._trace("delete")

    async def flush(self, session: AsyncSession) -> None:
        await session.flush()

    async def refresh(self, session: AsyncSession, instance: T) -> T:
        """Reload column values from the database, discarding stale state."""
        await session.refresh(instance)
        return instance
