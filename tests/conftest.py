"""
Pytest Configuration and Fixtures for the Questline Test Suite
==============================================================

Purpose
-------
Centralized test fixtures and configuration for the progression engine.
Provides reusable fixtures for the database, the clock, the event bus,
configuration and every domain service.

Responsibilities
----------------
- Test environment variables (before any questline import reads Config)
- In-memory aiosqlite engine with the full schema per test
- Units of work driven by a FixedClock and a mocked EventBus
- Domain service construction with real collaborators
- Mocks for unit tests

Non-Responsibilities
--------------------
- Test implementation (delegated to test files)
- Test data builders (tests/fixtures/factories.py)
- PostgreSQL containers (tests/integration/test_postgres_locking.py)

Architecture Notes
------------------
- Unit tests use mocks and pure functions (fast, isolated)
- Integration tests run services against SQLite; every test gets a fresh
  in-memory database
- Events are captured on `mock_event_bus.publish`, which the unit of work
  awaits only after commit
"""

from __future__ import annotations

import os

os.environ["ENVIRONMENT"] = "testing"
os.environ["LOG_LEVEL"] = "DEBUG"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"

from datetime import datetime, timezone
from typing import AsyncGenerator, Callable

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import questline.database.models  # noqa: F401
from questline.core.clock import FixedClock
from questline.core.config.config import Config
from questline.core.config.manager import ConfigManager
from questline.core.database.base import Base
from questline.core.database.unit_of_work import unit_of_work
from questline.core.logging.logger import get_logger
from questline.modules.challenges import (
    ChallengeLifecycleFinalizer,
    ChallengeParticipationService,
    ChallengeProgressService,
)
from questline.modules.habits import HabitService
from questline.modules.leaderboard import LeaderboardRanker
from questline.modules.progression import CompletionScorer, ProgressionLedger
from questline.modules.tasks import TaskService

logger = get_logger(__name__)

# Monday, so weekday-based assertions stay readable.
TEST_NOW = datetime(2025, 1, 6, 12, 0, tzinfo=timezone.utc)


# ============================================================================
# PYTEST CONFIGURATION
# ============================================================================


def pytest_configure(config):
    """Configure pytest environment."""
    os.environ["ENVIRONMENT"] = "testing"
    os.environ["LOG_LEVEL"] = "DEBUG"
    Config.reset()
    Config.validate()


# ============================================================================
# CONFIGURATION & TIME
# ============================================================================


@pytest.fixture
def config_manager():
    """
    Real ConfigManager loaded from the packaged YAML defaults.

    Overrides applied by a test are cleared afterwards.
    """
    ConfigManager.reset()
    ConfigManager.initialize()
    yield ConfigManager
    ConfigManager.reset()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(TEST_NOW)


# ============================================================================
# DATABASE FIXTURES (Integration Tests)
# ============================================================================


@pytest_asyncio.fixture
async def database_engine() -> AsyncGenerator[AsyncEngine, None]:
    """
    In-memory SQLite engine with the full schema.

    Scope: function (fresh database per test)
    StaticPool keeps the single in-memory connection alive across sessions.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(database_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(database_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Plain session for read-side calls (leaderboards)."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def uow_factory(session_factory, mock_event_bus, clock) -> Callable:
    """
    Open a unit of work bound to the test database, clock and mocked bus.

    Usage:
        async with uow_factory() as uow:
            await ledger.award(uow, 1, 30)
    """

    def _open():
        return unit_of_work(session_factory, mock_event_bus, clock)

    return _open


# ============================================================================
# MOCK FIXTURES (Unit Tests)
# ============================================================================


@pytest.fixture
def mock_event_bus(mocker):
    """
    Mock EventBus capturing post-commit publishes.

    Scope: function
    Uses: every test that opens a unit of work
    """
    mock_bus = mocker.MagicMock()
    mock_bus.publish = mocker.AsyncMock(return_value=[])
    mock_bus.subscribe = mocker.MagicMock()
    mock_bus.drain = mocker.AsyncMock()
    return mock_bus


@pytest.fixture
def mock_config_manager(mocker):
    """
    Mock ConfigManager returning each caller's default.

    Scope: function
    Uses: unit tests that must not depend on YAML values
    """
    mock_config = mocker.MagicMock()
    mock_config.get = mocker.MagicMock(side_effect=lambda key, default=None: default)
    return mock_config


# ============================================================================
# SERVICE FIXTURES
# ============================================================================


def _service_logger(name: str):
    return get_logger(f"tests.{name}")


@pytest.fixture
def scorer(config_manager) -> CompletionScorer:
    return CompletionScorer(config_manager)


@pytest.fixture
def ledger(config_manager) -> ProgressionLedger:
    return ProgressionLedger(config_manager, None, _service_logger("ledger"))


@pytest.fixture
def habit_service(config_manager, scorer, ledger) -> HabitService:
    return HabitService(config_manager, None, _service_logger("habits"), scorer=scorer, ledger=ledger)


@pytest.fixture
def task_service(config_manager, scorer, ledger) -> TaskService:
    return TaskService(config_manager, None, _service_logger("tasks"), scorer=scorer, ledger=ledger)


@pytest.fixture
def finalizer(config_manager) -> ChallengeLifecycleFinalizer:
    return ChallengeLifecycleFinalizer(config_manager, None, _service_logger("finalizer"))


@pytest.fixture
def progress_service(config_manager, ledger, finalizer) -> ChallengeProgressService:
    return ChallengeProgressService(
        config_manager,
        None,
        _service_logger("challenge_progress"),
        ledger=ledger,
        finalizer=finalizer,
    )


@pytest.fixture
def participation_service(config_manager, ledger, finalizer) -> ChallengeParticipationService:
    return ChallengeParticipationService(
        config_manager,
        None,
        _service_logger("participation"),
        ledger=ledger,
        finalizer=finalizer,
    )


@pytest.fixture
def leaderboard(config_manager) -> LeaderboardRanker:
    return LeaderboardRanker(config_manager, None, _service_logger("leaderboard"))
