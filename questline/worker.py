"""
Questline worker process.

Boots the engine (settings, database, balance config, event bus, services)
and runs the recurring maintenance jobs until SIGINT or SIGTERM:

- challenge activation and finalization
- habit streak reminders
- task deadline reminders

Outside production the schema is created on startup.

Run with ``python -m questline.worker`` or the ``questline-worker`` script.
"""

from __future__ import annotations

import asyncio
import inspect
import signal
import sys
from typing import Any, Callable, Optional

from questline.core.clock import SystemClock
from questline.core.config.config import Config
from questline.core.config.manager import ConfigManager
from questline.core.container import ServiceContainer
from questline.core.database.service import DatabaseService
from questline.core.event.bus import EventBus
from questline.core.logging.logger import get_logger, setup_logging, shutdown_logging
from questline.core.scheduler import JobRunner

logger = get_logger(__name__)


async def _startup_step(name: str, action: Callable[[], Any]) -> None:
    try:
        result = action()
        if inspect.isawaitable(result):
            await result
    except Exception:
        logger.critical("Startup failed at step: %s", name, exc_info=True)
        raise
    logger.info("Startup: %s", name)


async def _cleanup_step(name: str, action: Callable[[], Any]) -> None:
    try:
        await action()
    except Exception:
        # keep releasing the remaining resources
        logger.error("Shutdown step failed: %s", name, exc_info=True)


async def _startup() -> tuple[ServiceContainer, EventBus]:
    await _startup_step("settings validated", Config.validate)
    await _startup_step("database engine ready", DatabaseService.initialize)
    if not Config.is_production():
        await _startup_step("schema ensured", DatabaseService.create_all)
    await _startup_step("balance config loaded", ConfigManager.initialize)

    event_bus = EventBus(ConfigManager)
    container = ServiceContainer(
        ConfigManager,
        event_bus,
        get_logger("questline.core.container"),
        clock=SystemClock(),
    )
    await _startup_step("services wired", container.initialize)

    logger.info("Worker ready", extra=Config.get_config_summary())
    return container, event_bus


async def _shutdown(container: Optional[ServiceContainer], event_bus: Optional[EventBus]) -> None:
    if event_bus is not None:
        await _cleanup_step("drain event bus", event_bus.drain)
    if container is not None:
        await _cleanup_step("stop services", container.shutdown)
    await _cleanup_step("dispose database engine", DatabaseService.shutdown)
    logger.info("Worker stopped")


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops have no signal support; Ctrl+C still raises KeyboardInterrupt
            pass


async def main() -> None:
    container: Optional[ServiceContainer] = None
    event_bus: Optional[EventBus] = None
    stop_event = asyncio.Event()
    _install_signal_handlers(stop_event)

    try:
        container, event_bus = await _startup()
        runner = JobRunner(container.build_jobs(DatabaseService.get_session_factory()))
        logger.info("Running recurring jobs", extra={"jobs": [job.name for job in runner.jobs]})
        await runner.run(stop_event)
    finally:
        await _shutdown(container, event_bus)


def run() -> None:
    setup_logging()
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Worker interrupted")
    except Exception:
        logger.critical("Worker crashed", exc_info=True)
        sys.exit(1)
    finally:
        shutdown_logging()


if __name__ == "__main__":
    run()
