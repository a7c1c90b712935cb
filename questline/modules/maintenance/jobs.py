"""
Recurring maintenance jobs run by the worker.

- `ChallengeFinalizationJob`: activates challenges whose start date passed
  and completes challenges whose end date passed.
- `HabitStreakReminderJob`: warns about habit streaks that break unless the
  habit is completed today.
- `TaskDeadlineReminderJob`: warns about open tasks due inside the
  configured window.

Each tick runs in its own unit of work, so reminder events are published
only after the read transaction closes cleanly. Candidates are read in
id-ordered pages of the configured batch size until none remain, so one
tick covers every due reminder. Reminders are deduplicated
in memory: once per (habit, day) and once per (task, due date).
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import (
    TYPE_CHECKING,
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Set,
    Tuple,
)

from questline.core.clock import Clock, SystemClock
from questline.core.config.config import Config
from questline.core.database.base import ensure_utc
from questline.core.database.unit_of_work import unit_of_work
from questline.core.logging.logger import get_logger
from questline.core.scheduler import RecurringJob, RecurringJobConfig
from questline.modules.challenges.lifecycle import ChallengeLifecycleFinalizer
from questline.modules.habits.repository import HabitRepository
from questline.modules.tasks.repository import TaskRepository

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from questline.core.event.bus import EventBus

logger = get_logger(__name__)


class _MaintenanceJob(RecurringJob):
    """Shared wiring: session factory, event bus, clock and batch size."""

    def __init__(
        self,
        config: RecurringJobConfig,
        session_factory: async_sessionmaker[AsyncSession],
        event_bus: Optional[EventBus],
        *,
        clock: Optional[Clock] = None,
        config_manager: Any = None,
        batch_size_key: str = "jobs.reminder_batch_size",
        default_batch_size: int = 500,
    ) -> None:
        super().__init__(config)
        self.session_factory = session_factory
        self.event_bus = event_bus
        self.clock: Clock = clock or SystemClock()
        self.batch_size = default_batch_size
        if config_manager is not None:
            self.batch_size = int(config_manager.get(batch_size_key, default_batch_size))

    def _uow(self):
        return unit_of_work(self.session_factory, self.event_bus, self.clock)

    async def _pages(
        self, fetch: Callable[[int], Awaitable[List[Any]]]
    ) -> AsyncIterator[List[Any]]:
        """Yield id-ordered pages of `fetch(after_id)` until a short page."""
        after_id = 0
        while True:
            page = await fetch(after_id)
            if not page:
                return
            yield page
            if len(page) < self.batch_size:
                return
            after_id = page[-1].id


class ChallengeFinalizationJob(_MaintenanceJob):
    name = "challenge_finalization"

    def __init__(
        self,
        finalizer: ChallengeLifecycleFinalizer,
        session_factory: async_sessionmaker[AsyncSession],
        event_bus: Optional[EventBus],
        *,
        clock: Optional[Clock] = None,
        config_manager: Any = None,
        config: Optional[RecurringJobConfig] = None,
    ) -> None:
        super().__init__(
            config or RecurringJobConfig.from_config("JOB_FINALIZE_INTERVAL_SECONDS", 300),
            session_factory,
            event_bus,
            clock=clock,
            config_manager=config_manager,
            batch_size_key="jobs.finalize_batch_size",
            default_batch_size=200,
        )
        self.finalizer = finalizer

    async def tick(self) -> Dict[str, Any]:
        async with self._uow() as uow:
            activated = await self.finalizer.activate_started_challenges(uow, limit=self.batch_size)
            finalized = await self.finalizer.finalize_due_challenges(uow, limit=self.batch_size)

        if activated or finalized:
            logger.info(
                "Challenge lifecycle pass",
                extra={"activated": activated, "finalized": finalized},
            )
        return {"activated": len(activated), "finalized": len(finalized)}


class HabitStreakReminderJob(_MaintenanceJob):
    name = "habit_streak_reminder"

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        event_bus: Optional[EventBus],
        *,
        clock: Optional[Clock] = None,
        config_manager: Any = None,
        config: Optional[RecurringJobConfig] = None,
        habits: Optional[HabitRepository] = None,
    ) -> None:
        super().__init__(
            config or RecurringJobConfig.from_config("JOB_HABIT_REMINDER_INTERVAL_SECONDS", 3600),
            session_factory,
            event_bus,
            clock=clock,
            config_manager=config_manager,
        )
        self.habits = habits or HabitRepository()
        self._sent: Set[Tuple[int, date]] = set()

    async def tick(self) -> Dict[str, Any]:
        today = self.clock.now().date()
        yesterday = today - timedelta(days=1)
        self._sent = {key for key in self._sent if key[1] == today}

        candidates = 0
        queued: List[Tuple[int, date]] = []
        async with self._uow() as uow:
            async for page in self._pages(
                lambda after_id: self.habits.list_streaks_at_risk(
                    uow.session, yesterday, limit=self.batch_size, after_id=after_id
                )
            ):
                candidates += len(page)
                for habit in page:
                    key = (habit.id, today)
                    if key in self._sent:
                        continue
                    uow.record_event(
                        "habit.streak_expiring",
                        {
                            "user_id": habit.user_id,
                            "habit_id": habit.id,
                            "habit_title": habit.title,
                            "streak": habit.current_streak,
                        },
                    )
                    queued.append(key)

        self._sent.update(queued)
        return {"candidates": candidates, "reminded": len(queued)}


class TaskDeadlineReminderJob(_MaintenanceJob):
    name = "task_deadline_reminder"

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        event_bus: Optional[EventBus],
        *,
        clock: Optional[Clock] = None,
        config_manager: Any = None,
        config: Optional[RecurringJobConfig] = None,
        tasks: Optional[TaskRepository] = None,
        window_hours: Optional[int] = None,
    ) -> None:
        super().__init__(
            config or RecurringJobConfig.from_config("JOB_TASK_REMINDER_INTERVAL_SECONDS", 900),
            session_factory,
            event_bus,
            clock=clock,
            config_manager=config_manager,
        )
        self.tasks = tasks or TaskRepository()
        self.window = timedelta(hours=window_hours or Config.TASK_DEADLINE_WINDOW_HOURS)
        self._sent: Set[Tuple[int, datetime]] = set()

    async def tick(self) -> Dict[str, Any]:
        now = self.clock.now()
        self._sent = {key for key in self._sent if key[1] >= now}

        candidates = 0
        queued: List[Tuple[int, datetime]] = []
        async with self._uow() as uow:
            async for page in self._pages(
                lambda after_id: self.tasks.list_open_due_between(
                    uow.session, now, now + self.window, limit=self.batch_size, after_id=after_id
                )
            ):
                candidates += len(page)
                for task in page:
                    due = ensure_utc(task.due_date)
                    key = (task.id, due)
                    if key in self._sent:
                        continue
                    uow.record_event(
                        "task.deadline_nearing",
                        {
                            "user_id": task.user_id,
                            "task_id": task.id,
                            "task_title": task.title,
                            "due_date": due.isoformat(),  # type: ignore[union-attr]
                            "hours_until_due": int((due - now).total_seconds() // 3600),  # type: ignore[operator]
                        },
                    )
                    queued.append(key)  # type: ignore[arg-type]

        self._sent.update(queued)
        return {"candidates": candidates, "reminded": len(queued)}
