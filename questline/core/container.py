"""
Service Container
=================

Purpose
-------
Centralized dependency injection container for the engine's services.
Builds one instance of every service from a shared ConfigManager, EventBus
and Clock, wiring collaborators (scorer, ledger, finalizer, proof judge)
into the services that need them.

Responsibilities
----------------
- Initialize all domain services with required dependencies
- Own the proof judge client lifecycle (open on initialize, close on shutdown)
- Build the recurring maintenance jobs for the worker
- Provide typed access to services

Non-Responsibilities
--------------------
- Database lifecycle (DatabaseService)
- Logging setup and signal handling (worker)
- Opening units of work (callers do that per request)

Architecture Notes
------------------
- All domain services follow the constructor pattern
  `(config_manager, event_bus, logger, **collaborators)`.
- Accessing a service before `initialize()` raises RuntimeError.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from questline.core.clock import Clock, SystemClock
from questline.core.logging.logger import get_logger
from questline.modules.challenges import (
    ChallengeLifecycleFinalizer,
    ChallengeParticipationService,
    ChallengeProgressService,
    GeminiProofJudge,
    ProofJudge,
)
from questline.modules.habits import HabitService
from questline.modules.leaderboard import LeaderboardRanker
from questline.modules.maintenance import (
    ChallengeFinalizationJob,
    HabitStreakReminderJob,
    TaskDeadlineReminderJob,
)
from questline.modules.progression import CompletionScorer, ProgressionLedger
from questline.modules.tasks import TaskService

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from questline.core.event.bus import EventBus
    from questline.core.scheduler import RecurringJob

logger = get_logger(__name__)

SERVICE_COUNT = 8


class ServiceContainer:
    """
    Dependency injection container for all domain services.

    Usage:
        container = ServiceContainer(ConfigManager, event_bus, logger, clock=SystemClock())
        await container.initialize()

        async with DatabaseService.get_unit_of_work(event_bus, container.clock) as uow:
            await container.habits.complete_habit(uow, user_id, habit_id)
    """

    def __init__(
        self,
        config_manager: Any,
        event_bus: Optional[EventBus],
        logger: Logger,
        *,
        clock: Optional[Clock] = None,
        proof_judge: Optional[ProofJudge] = None,
    ) -> None:
        self._config_manager = config_manager
        self._event_bus = event_bus
        self._logger = logger
        self.clock: Clock = clock or SystemClock()

        self._proof_judge: Optional[ProofJudge] = proof_judge
        self._owns_judge = proof_judge is None

        self._scorer: Optional[CompletionScorer] = None
        self._ledger: Optional[ProgressionLedger] = None
        self._habits: Optional[HabitService] = None
        self._tasks: Optional[TaskService] = None
        self._finalizer: Optional[ChallengeLifecycleFinalizer] = None
        self._challenge_progress: Optional[ChallengeProgressService] = None
        self._participation: Optional[ChallengeParticipationService] = None
        self._leaderboard: Optional[LeaderboardRanker] = None

        self._initialized = False

        self._service_init_times: Dict[str, float] = {}
        self._init_start: Optional[float] = None
        self._init_end: Optional[float] = None

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def initialize(self) -> None:
        """Build every service. Call after ConfigManager and EventBus are ready."""
        if self._initialized:
            self._logger.warning("ServiceContainer already initialized")
            return

        self._init_start = time.perf_counter()
        self._logger.info("Service container initialization starting...")

        try:
            start = time.perf_counter()
            self._scorer = CompletionScorer(self._config_manager)
            self._service_init_times["scorer"] = time.perf_counter() - start

            self._ledger = self._create_service("ledger", ProgressionLedger)
            self._habits = self._create_service(
                "habits", HabitService, scorer=self._scorer, ledger=self._ledger
            )
            self._tasks = self._create_service(
                "tasks", TaskService, scorer=self._scorer, ledger=self._ledger
            )
            self._finalizer = self._create_service("finalizer", ChallengeLifecycleFinalizer)

            if self._proof_judge is None:
                judge = GeminiProofJudge.from_config()
                await judge.initialize()
                self._proof_judge = judge

            self._challenge_progress = self._create_service(
                "challenge_progress",
                ChallengeProgressService,
                ledger=self._ledger,
                finalizer=self._finalizer,
                judge=self._proof_judge,
            )
            self._participation = self._create_service(
                "participation",
                ChallengeParticipationService,
                ledger=self._ledger,
                finalizer=self._finalizer,
            )
            self._leaderboard = self._create_service("leaderboard", LeaderboardRanker)

            self._init_end = time.perf_counter()
            self._initialized = True

            extra_data: Dict[str, Any] = {
                "total_time_seconds": round(self._init_end - self._init_start, 3),
                "service_count": len(self._service_init_times),
            }
            if self._service_init_times:
                slowest = max(self._service_init_times, key=self._service_init_times.__getitem__)
                extra_data["slowest_service"] = slowest
                extra_data["slowest_duration"] = round(self._service_init_times[slowest], 3)

            self._logger.info("Service container initialized successfully", extra=extra_data)

        except Exception as e:
            self._logger.critical(
                "Service container initialization failed",
                exc_info=True,
                extra={"error": str(e)},
            )
            raise

    def _create_service(self, name: str, cls: type, **collaborators: Any) -> Any:
        """Construct a service with the shared dependencies and record timing."""
        start = time.perf_counter()
        try:
            instance = cls(
                config_manager=self._config_manager,
                event_bus=self._event_bus,
                logger=get_logger(f"{cls.__module__}.{cls.__name__}"),
                **collaborators,
            )
        except Exception:
            self._logger.error(f"Failed to initialize {name}", exc_info=True)
            raise

        duration = time.perf_counter() - start
        self._service_init_times[name] = duration
        self._logger.debug(f"Initialized {name} in {duration:.3f}s")
        return instance

    async def shutdown(self) -> None:
        if not self._initialized:
            return

        self._logger.info("Shutting down service container...")
        if self._owns_judge and isinstance(self._proof_judge, GeminiProofJudge):
            await self._proof_judge.shutdown()
            self._proof_judge = None
        self._initialized = False
        self._logger.info("Service container shut down")

    async def health_check(self) -> Dict[str, bool | float | int | None]:
        return {
            "initialized": self._initialized,
            "service_count": len(self._service_init_times),
            "total_init_time_seconds": (
                round(self._init_end - self._init_start, 3)
                if self._init_start and self._init_end
                else None
            ),
            "all_services_available": self._initialized
            and len(self._service_init_times) == SERVICE_COUNT,
        }

    # ========================================================================
    # Jobs
    # ========================================================================

    def build_jobs(self, session_factory: async_sessionmaker[AsyncSession]) -> List[RecurringJob]:
        """Recurring maintenance jobs sharing this container's bus and clock."""
        return [
            ChallengeFinalizationJob(
                self.finalizer,
                session_factory,
                self._event_bus,
                clock=self.clock,
                config_manager=self._config_manager,
            ),
            HabitStreakReminderJob(
                session_factory,
                self._event_bus,
                clock=self.clock,
                config_manager=self._config_manager,
            ),
            TaskDeadlineReminderJob(
                session_factory,
                self._event_bus,
                clock=self.clock,
                config_manager=self._config_manager,
            ),
        ]

    # ========================================================================
    # Services
    # ========================================================================

    def _require(self, service: Optional[Any]) -> Any:
        if not self._initialized or service is None:
            raise RuntimeError("ServiceContainer not initialized. Call initialize() first.")
        return service

    @property
    def scorer(self) -> CompletionScorer:
        return self._require(self._scorer)

    @property
    def ledger(self) -> ProgressionLedger:
        return self._require(self._ledger)

    @property
    def habits(self) -> HabitService:
        return self._require(self._habits)

    @property
    def tasks(self) -> TaskService:
        return self._require(self._tasks)

    @property
    def finalizer(self) -> ChallengeLifecycleFinalizer:
        return self._require(self._finalizer)

    @property
    def challenge_progress(self) -> ChallengeProgressService:
        return self._require(self._challenge_progress)

    @property
    def participation(self) -> ChallengeParticipationService:
        return self._require(self._participation)

    @property
    def leaderboard(self) -> LeaderboardRanker:
        return self._require(self._leaderboard)
