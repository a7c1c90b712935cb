"""
Recurring background jobs.

Purpose
-------
Run periodic maintenance work (challenge finalization, streak and deadline
reminders) on a fixed interval inside the worker process, with graceful
shutdown through an `asyncio.Event`.

Design Notes
------------
- Nothing runs automatically; the worker creates a `JobRunner`, registers
  jobs and awaits `run(stop_event)`.
- `tick()` performs exactly one pass and is what tests call directly.
- A failing tick is logged and the loop keeps going; a failure in one job
  never stops the others.

Usage
-----
>>> stop_event = asyncio.Event()
>>> runner = JobRunner([ChallengeFinalizationJob(...)])
>>> task = asyncio.create_task(runner.run(stop_event))
>>> # ... later ...
>>> stop_event.set()
>>> await task
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

from questline.core.config.config import Config
from questline.core.logging.logger import LogContext, get_logger

logger = get_logger(__name__)


@dataclass
class RecurringJobConfig:
    """
    Interval settings for one recurring job.

    Attributes
    ----------
    interval_seconds : float
        Time between the end of one tick and the start of the next.
    run_on_start : bool
        Whether the first tick runs immediately or after one interval.
    """

    interval_seconds: float
    run_on_start: bool = True

    @classmethod
    def from_config(cls, key: str, default_seconds: float) -> RecurringJobConfig:
        """Build from a `Config` attribute such as `JOB_FINALIZE_INTERVAL_SECONDS`."""
        interval = float(getattr(Config, key, default_seconds) or default_seconds)
        if interval <= 0:
            logger.warning(
                "Non-positive job interval in config, using default",
                extra={"config_key": key, "value": interval, "default": default_seconds},
            )
            interval = float(default_seconds)
        return cls(interval_seconds=interval)


class RecurringJob:
    """
    Base class for periodic jobs.

    Subclasses set `name` and implement `tick()`, returning a small summary
    dict that is logged at DEBUG level.
    """

    name: str = "recurring_job"

    def __init__(self, config: RecurringJobConfig) -> None:
        self._config = config
        self.runs: int = 0
        self.failures: int = 0
        self.last_result: Optional[dict[str, Any]] = None

    @property
    def interval_seconds(self) -> float:
        return self._config.interval_seconds

    async def tick(self) -> dict[str, Any]:
        raise NotImplementedError

    async def run_once(self) -> Optional[dict[str, Any]]:
        """Run one tick, logging instead of raising on failure."""
        start = time.perf_counter()
        async with LogContext(operation=self.name, component="scheduler"):
            try:
                result = await self.tick()
            except Exception as exc:
                self.failures += 1
                logger.error(
                    "Recurring job tick failed",
                    extra={
                        "job": self.name,
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                    },
                    exc_info=True,
                )
                return None

        self.runs += 1
        self.last_result = result
        logger.debug(
            "Recurring job tick",
            extra={
                "job": self.name,
                "duration_ms": round((time.perf_counter() - start) * 1000, 2),
                **result,
            },
        )
        return result

    async def run_forever(self, *, stop_event: asyncio.Event) -> None:
        """Tick every `interval_seconds` until `stop_event` is set."""
        logger.info(
            "Recurring job started",
            extra={"job": self.name, "interval_seconds": self.interval_seconds},
        )

        try:
            first = True
            while not stop_event.is_set():
                if not first or self._config.run_on_start:
                    await self.run_once()
                first = False

                try:
                    await asyncio.wait_for(
                        stop_event.wait(), timeout=self.interval_seconds
                    )
                except asyncio.TimeoutError:
                    continue
        finally:
            logger.info("Recurring job stopped", extra={"job": self.name})


class JobRunner:
    """Runs a set of recurring jobs concurrently until told to stop."""

    def __init__(self, jobs: Optional[Sequence[RecurringJob]] = None) -> None:
        self._jobs: List[RecurringJob] = list(jobs or [])

    def register(self, job: RecurringJob) -> None:
        self._jobs.append(job)

    @property
    def jobs(self) -> List[RecurringJob]:
        return list(self._jobs)

    async def run(self, stop_event: asyncio.Event) -> None:
        if not self._jobs:
            logger.warning("JobRunner started with no jobs")
            return

        await asyncio.gather(
            *(job.run_forever(stop_event=stop_event) for job in self._jobs)
        )

    async def run_all_once(self) -> dict[str, Optional[dict[str, Any]]]:
        """One tick of every job, in registration order."""
        return {job.name: await job.run_once() for job in self._jobs}
