"""
EventScheduler: tiered execution of event listeners.

- CRITICAL / HIGH: sequential, awaited, `asyncio.wait_for` timeout
- NORMAL: concurrent via `asyncio.gather`, awaited
- LOW: background tasks, tracked in a set until done

Every listener runs inside its own try/except; a failing or slow
listener is logged and never blocks the rest of the dispatch.
"""

from __future__ import annotations

import asyncio
import contextvars
import functools
import inspect
from logging import Logger
from typing import Any, Optional

from questline.core.event.types import EventListener, EventPayload, ListenerPriority


class EventScheduler:
    """Executes listeners according to their priority tier."""

    def __init__(self) -> None:
        self._background_tasks: set[asyncio.Task[Any]] = set()
        self.error_count = 0
        self.timeout_count = 0

    @property
    def pending_background_tasks(self) -> int:
        return len(self._background_tasks)

    async def drain(self) -> None:
        """Wait for outstanding LOW-tier tasks (shutdown and tests)."""
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    async def execute(
        self,
        *,
        event_name: str,
        payload: EventPayload,
        listeners: list[EventListener],
        logger: Logger,
        critical_timeout: Optional[float],
        high_timeout: Optional[float],
    ) -> list[Any]:
        """
        Run `listeners` (already sorted) for one event.

        Returns results from CRITICAL/HIGH/NORMAL listeners; LOW-tier
        results are not collected.
        """
        by_tier: dict[ListenerPriority, list[EventListener]] = {
            tier: [] for tier in ListenerPriority
        }
        for listener in listeners:
            by_tier[listener.priority].append(listener)

        results: list[Any] = []

        for tier, timeout in (
            (ListenerPriority.CRITICAL, critical_timeout),
            (ListenerPriority.HIGH, high_timeout),
        ):
            for listener in by_tier[tier]:
                results.append(
                    await self._run_with_timeout(
                        listener, event_name, payload, logger, timeout
                    )
                )

        normal = by_tier[ListenerPriority.NORMAL]
        if normal:
            results.extend(
                await asyncio.gather(
                    *[
                        self._run_listener(lst, event_name, payload, logger)
                        for lst in normal
                    ]
                )
            )

        loop = asyncio.get_running_loop()
        for listener in by_tier[ListenerPriority.LOW]:
            task = loop.create_task(
                self._run_listener(listener, event_name, payload, logger),
                name=f"eventbus-low-{event_name}-{listener.identifier}",
            )
            self._background_tasks.add(task)
            task.add_done_callback(self._background_tasks.discard)

        return results

    async def _run_with_timeout(
        self,
        listener: EventListener,
        event_name: str,
        payload: EventPayload,
        logger: Logger,
        timeout: Optional[float],
    ) -> Any:
        if timeout is None:
            return await self._run_listener(listener, event_name, payload, logger)

        try:
            return await asyncio.wait_for(
                self._run_listener(listener, event_name, payload, logger),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            self.timeout_count += 1
            logger.error(
                "EventBus listener timed out",
                extra={
                    "event_name": event_name,
                    "listener_id": listener.identifier,
                    "priority": listener.priority.name,
                    "timeout_seconds": timeout,
                },
            )
            return None

    async def _run_listener(
        self,
        listener: EventListener,
        event_name: str,
        payload: EventPayload,
        logger: Logger,
    ) -> Any:
        try:
            if inspect.iscoroutinefunction(listener.callback):
                return await listener.callback(payload)

            # Sync callbacks run in the default executor with the caller's
            # log context copied across.
            loop = asyncio.get_running_loop()
            ctx = contextvars.copy_context()
            return await loop.run_in_executor(
                None, functools.partial(ctx.run, listener.callback, payload)
            )
        except Exception as exc:
            self.error_count += 1
            logger.error(
                "EventBus listener error",
                extra={
                    "event_name": event_name,
                    "listener_id": listener.identifier,
                    "priority": listener.priority.name,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
                exc_info=True,
            )
            return None
