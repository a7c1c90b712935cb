"""
Unit of Work for Questline write operations.

Purpose
-------
Bundle everything one logical operation shares: the transactional
`AsyncSession`, the injected `Clock`, and the domain events produced along
the way. Every core write call takes a `UnitOfWork` as its first argument,
so scoring, streak updates, progress updates and ledger writes for one
completion land in the same transaction.

Design Notes
------------
- Events are queued with `record_event()` and published only after the
  owning transaction commits. On rollback they are discarded.
- Publishing failures are logged and never propagate: the transaction is
  already committed and must not appear failed to the caller.
- `unit_of_work()` is the standalone helper (any session factory);
  `DatabaseService.get_unit_of_work()` is the application-wide variant.

Usage
-----
>>> async with unit_of_work(session_factory, event_bus, clock) as uow:
...     await habit_service.complete_habit(uow, user_id, habit_id)
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import TYPE_CHECKING, Any, AsyncGenerator, Dict, List, Optional, Tuple

from questline.core.clock import Clock, SystemClock
from questline.core.logging.logger import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from questline.core.event.bus import EventBus

logger = get_logger(__name__)

PendingEvent = Tuple[str, Dict[str, Any]]


class UnitOfWork:
    """Transactional context shared by every step of one logical operation."""

    def __init__(self, session: AsyncSession, clock: Optional[Clock] = None) -> None:
        self.session = session
        self.clock: Clock = clock or SystemClock()
        self._events: List[PendingEvent] = []

    def now(self) -> datetime:
        return self.clock.now()

    def today(self) -> date:
        return self.clock.now().date()

    # ------------------------------------------------------------------
    # Event buffering
    # ------------------------------------------------------------------

    def record_event(self, event_name: str, payload: Dict[str, Any]) -> None:
        self._events.append((event_name, dict(payload)))

    @property
    def pending_events(self) -> List[PendingEvent]:
        return list(self._events)

    def events_named(self, event_name: str) -> List[Dict[str, Any]]:
        return [payload for name, payload in self._events if name == event_name]

    def discard_events(self) -> None:
        if self._events:
            logger.debug(
                "Discarding queued events after rollback",
                extra={"event_count": len(self._events)},
            )
        self._events.clear()

    async def publish_events(self, event_bus: Optional[EventBus]) -> int:
        """
        Publish queued events in order, then clear the queue.

        Returns the number of events handed to the bus.
        """
        events, self._events = self._events, []
        if event_bus is None or not events:
            return 0

        published = 0
        for event_name, payload in events:
            try:
                await event_bus.publish(event_name, payload)
                published += 1
            except Exception as exc:
                logger.error(
                    "Post-commit event publish failed",
                    extra={
                        "event_name": event_name,
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                    },
                    exc_info=True,
                )
        return published


@asynccontextmanager
async def unit_of_work(
    session_factory: async_sessionmaker[AsyncSession],
    event_bus: Optional[EventBus] = None,
    clock: Optional[Clock] = None,
) -> AsyncGenerator[UnitOfWork, None]:
    """
    Open a session, run the block inside one transaction, commit, then publish.

    Any exception rolls back every mutation, discards queued events and
    re-raises.
    """
    async with session_factory() as session:
        uow = UnitOfWork(session, clock)
        try:
            yield uow
            await session.commit()
        except Exception:
            await session.rollback()
            uow.discard_events()
            raise

    await uow.publish_events(event_bus)
