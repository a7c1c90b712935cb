"""
Process-wide async engine for the progression engine.

`DatabaseService` owns one `AsyncEngine` and its session factory. Callers
reach the database through three context managers:

- `get_session()` for reads (leaderboards, reminder scans); never commits.
- `get_transaction()` commits on a clean exit and rolls back on any error.
- `get_unit_of_work()` wraps a transaction in a `UnitOfWork` so queued
  domain events are published after the commit, or dropped on rollback.

Service code never calls `session.commit()` itself. Row locks are taken by
repositories (`for_update=True`) or through `get_locked_entity()`.

PostgreSQL sessions get a `SET LOCAL statement_timeout`; tests run with
`NullPool` so no connection outlives its event loop.

    async with DatabaseService.get_unit_of_work(event_bus) as uow:
        await ledger.award(uow, user_id, 50, source="bonus")
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, AsyncGenerator, Dict, Optional, Type, TypeVar

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import AsyncAdaptedQueuePool, NullPool, Pool

from questline.core.config.config import Config
from questline.core.database.base import Base
from questline.core.database.unit_of_work import UnitOfWork
from questline.core.exceptions import ErrorSeverity, QuestlineInfrastructureException
from questline.core.logging.logger import get_logger

if TYPE_CHECKING:
    from questline.core.clock import Clock
    from questline.core.event.bus import EventBus

logger = get_logger(__name__)

T = TypeVar("T")


class DatabaseInitializationError(QuestlineInfrastructureException):
    """The engine could not be created from the current settings."""

    DEFAULT_SEVERITY = ErrorSeverity.CRITICAL


class DatabaseNotInitializedError(QuestlineInfrastructureException):
    """A session was requested before `DatabaseService.initialize()`."""


@dataclass(frozen=True)
class EngineSettings:
    """Settings captured once at `initialize()` time."""

    url: str
    echo: bool
    pooled: bool
    pool_size: int
    max_overflow: int
    pool_recycle: int
    pool_timeout: int
    statement_timeout_ms: int

    @classmethod
    def from_config(cls) -> "EngineSettings":
        url = Config.DATABASE_URL
        if not isinstance(url, str) or not url:
            raise DatabaseInitializationError("DATABASE_URL must be a non-empty string")
        return cls(
            url=url,
            echo=Config.DATABASE_ECHO,
            pooled=not Config.is_testing(),
            pool_size=Config.DATABASE_POOL_SIZE,
            max_overflow=Config.DATABASE_MAX_OVERFLOW,
            pool_recycle=Config.DATABASE_POOL_RECYCLE,
            pool_timeout=Config.DATABASE_POOL_TIMEOUT,
            statement_timeout_ms=Config.DATABASE_STATEMENT_TIMEOUT_MS,
        )

    @property
    def dialect(self) -> str:
        return self.url.split(":", 1)[0].split("+", 1)[0]

    @property
    def is_postgres(self) -> bool:
        return self.dialect == "postgresql"

    @property
    def pool_class(self) -> Type[Pool]:
        return AsyncAdaptedQueuePool if self.pooled else NullPool

    def engine_kwargs(self) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"echo": self.echo, "poolclass": self.pool_class}
        if self.pooled:
            kwargs.update(
                pool_size=self.pool_size,
                max_overflow=self.max_overflow,
                pool_recycle=self.pool_recycle,
                pool_timeout=self.pool_timeout,
                pool_pre_ping=True,
            )
        return kwargs


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000.0, 2)


class DatabaseService:
    """Class-level holder for the engine; never instantiated."""

    _engine: Optional[AsyncEngine] = None
    _session_factory: Optional[async_sessionmaker[AsyncSession]] = None
    _settings: Optional[EngineSettings] = None
    _init_lock: asyncio.Lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @classmethod
    async def initialize(cls) -> None:
        """Create the engine. A second call is a no-op."""
        async with cls._init_lock:
            if cls._engine is not None:
                return

            try:
                settings = EngineSettings.from_config()
                engine = create_async_engine(settings.url, **settings.engine_kwargs())
            except Exception as exc:
                logger.critical(
                    "Database engine could not be created",
                    extra={"error_type": type(exc).__name__, "error": str(exc)},
                )
                if isinstance(exc, DatabaseInitializationError):
                    raise
                raise DatabaseInitializationError(f"Database initialization failed: {exc}") from exc

            cls._settings = settings
            cls._engine = engine
            cls._session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            logger.info(
                "Database engine ready",
                extra={"dialect": settings.dialect, "pool": settings.pool_class.__name__},
            )

    @classmethod
    async def shutdown(cls) -> None:
        async with cls._init_lock:
            engine, cls._engine = cls._engine, None
            cls._session_factory = None
            cls._settings = None
            if engine is not None:
                await engine.dispose()
                logger.info("Database engine disposed")

    @classmethod
    async def create_all(cls) -> None:
        """Create any missing tables for the engine's models."""
        engine = cls._require_engine()

        import questline.database.models  # noqa: F401  registers the tables

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Schema ensured", extra={"table_count": len(Base.metadata.tables)})

    @classmethod
    async def health_check(cls) -> bool:
        if cls._engine is None:
            return False

        start = time.perf_counter()
        try:
            async with cls._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (OperationalError, DBAPIError, OSError) as exc:
            logger.warning(
                "Database health check failed",
                extra={"error_type": type(exc).__name__, "error": str(exc)},
            )
            return False

        logger.debug("Database health check ok", extra={"duration_ms": _elapsed_ms(start)})
        return True

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    @classmethod
    def _require_engine(cls) -> AsyncEngine:
        if cls._engine is None or cls._session_factory is None:
            raise DatabaseNotInitializedError(
                "DatabaseService.initialize() must run before the database is used"
            )
        return cls._engine

    @classmethod
    def get_session_factory(cls) -> async_sessionmaker[AsyncSession]:
        cls._require_engine()
        assert cls._session_factory is not None
        return cls._session_factory

    @classmethod
    async def _prepare(cls, session: AsyncSession) -> None:
        settings = cls._settings
        if settings is not None and settings.is_postgres:
            await session.execute(text(f"SET LOCAL statement_timeout = {int(settings.statement_timeout_ms)}"))

    @classmethod
    @asynccontextmanager
    async def get_session(cls) -> AsyncGenerator[AsyncSession, None]:
        """Read-only session; anything left uncommitted is rolled back on close."""
        factory = cls.get_session_factory()
        async with factory() as session:
            await cls._prepare(session)
            yield session

    @classmethod
    @asynccontextmanager
    async def get_transaction(cls) -> AsyncGenerator[AsyncSession, None]:
        factory = cls.get_session_factory()
        start = time.perf_counter()
        async with factory() as session:
            try:
                await cls._prepare(session)
                yield session
                await session.commit()
            except (OperationalError, DBAPIError) as exc:
                await session.rollback()
                logger.error(
                    "Database error; transaction rolled back",
                    extra={"error_type": type(exc).__name__, "duration_ms": _elapsed_ms(start)},
                    exc_info=True,
                )
                raise
            except BaseException:
                await session.rollback()
                raise

    @classmethod
    @asynccontextmanager
    async def get_unit_of_work(
        cls,
        event_bus: Optional[EventBus] = None,
        clock: Optional[Clock] = None,
    ) -> AsyncGenerator[UnitOfWork, None]:
        """Transaction with a clock and events that publish after commit."""
        uow: Optional[UnitOfWork] = None
        try:
            async with cls.get_transaction() as session:
                uow = UnitOfWork(session, clock)
                yield uow
        except BaseException:
            if uow is not None:
                uow.discard_events()
            raise

        await uow.publish_events(event_bus)

    @classmethod
    async def get_locked_entity(
        cls,
        session: AsyncSession,
        model: Type[T],
        primary_key: Any,
    ) -> Optional[T]:
        """`session.get` with SELECT ... FOR UPDATE (ignored by SQLite)."""
        return await session.get(model, primary_key, with_for_update=True)
