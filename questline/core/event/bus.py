"""
EventBus: async publish/subscribe for Questline domain events.

Services never publish directly. They queue events on the `UnitOfWork`,
which hands them to the bus only after the owning transaction commits
(`progression.level_up`, `challenge.participant_completed`, ...).
Listeners (notifications, leaderboard caches, audit sinks) subscribe by
exact name or `*` wildcard pattern.

Listener timeouts are read from ConfigManager
(`core.event.critical_timeout_seconds`, `core.event.high_timeout_seconds`)
unless overridden in the constructor.

Examples
--------
>>> bus = EventBus()
>>> bus.subscribe("progression.level_up", on_level_up)
>>> await bus.publish("progression.level_up", {"user_id": 7, "new_level": 3})
"""

from __future__ import annotations

import inspect
from typing import Any, Optional

from questline.core.event.registry import ListenerRegistry
from questline.core.event.scheduler import EventScheduler
from questline.core.event.types import (
    CallbackType,
    EventListener,
    EventPayload,
    ListenerPriority,
)
from questline.core.logging.logger import LogContext, get_logger

logger = get_logger(__name__)


class EventBus:
    """
    Instance-based event bus with tiered listener execution.

    Designed for single-threaded asyncio usage: all methods must be called
    from the same event loop.
    """

    def __init__(
        self,
        config_manager: Optional[Any] = None,
        *,
        registry: Optional[ListenerRegistry] = None,
        scheduler: Optional[EventScheduler] = None,
        critical_timeout_seconds: Optional[float] = None,
        high_timeout_seconds: Optional[float] = None,
    ) -> None:
        self._config_manager = config_manager
        self._registry = registry or ListenerRegistry()
        self._scheduler = scheduler or EventScheduler()
        self._published_count = 0

        self._critical_timeout = self._load_timeout(
            "core.event.critical_timeout_seconds", critical_timeout_seconds, 5.0
        )
        self._high_timeout = self._load_timeout(
            "core.event.high_timeout_seconds", high_timeout_seconds, 5.0
        )

        logger.info(
            "EventBus initialized",
            extra={
                "critical_timeout_seconds": self._critical_timeout,
                "high_timeout_seconds": self._high_timeout,
            },
        )

    def _load_timeout(self, key: str, override: Optional[float], default: float) -> float:
        """Resolve a timeout: constructor override, then config, then default."""
        if override is not None:
            return float(override)
        if self._config_manager is None:
            return float(default)

        value = self._config_manager.get(key, default)
        try:
            return float(value)
        except (TypeError, ValueError):
            logger.warning(
                "Invalid EventBus timeout in config, using default",
                extra={"config_key": key, "value": value, "default": default},
            )
            return float(default)

    # ------------------------------------------------------------------ #
    # Subscription
    # ------------------------------------------------------------------ #

    @staticmethod
    def _validate_callback_signature(callback: CallbackType) -> None:
        if not callable(callback):
            raise TypeError(f"EventBus callback must be callable, got {callback!r}")
        try:
            params = inspect.signature(callback).parameters
        except (TypeError, ValueError):
            return
        if len(params) != 1:
            raise TypeError(
                "EventBus callbacks must accept exactly one argument (the payload); "
                f"{getattr(callback, '__qualname__', callback)!r} takes {len(params)}"
            )

    def subscribe(
        self,
        event_name: str,
        callback: CallbackType,
        *,
        priority: ListenerPriority = ListenerPriority.NORMAL,
        identifier: Optional[str] = None,
        once: bool = False,
        allow_duplicates: bool = False,
    ) -> str:
        """
        Register `callback` for `event_name` (exact or `*` pattern).

        Returns the listener identifier, usable with `unsubscribe()`.
        Re-subscribing the same identifier is a no-op unless
        `allow_duplicates` is set.
        """
        if not event_name:
            raise ValueError("event_name must be a non-empty string")
        self._validate_callback_signature(callback)

        listener = EventListener.from_callback(
            event_name, callback, priority, identifier, once
        )
        added = self._registry.add_listener(
            event_name, listener, allow_duplicates=allow_duplicates
        )
        if not added:
            logger.debug(
                "Duplicate EventBus subscription ignored",
                extra={"event_name": event_name, "listener_id": listener.identifier},
            )
        return listener.identifier

    def unsubscribe(self, event_name: str, identifier: str) -> bool:
        return self._registry.remove_listener(event_name, identifier)

    def clear(self) -> int:
        removed = self._registry.clear_all()
        logger.info("EventBus listeners cleared", extra={"removed": removed})
        return removed

    # ------------------------------------------------------------------ #
    # Publishing
    # ------------------------------------------------------------------ #

    async def publish(self, event_name: str, payload: Optional[EventPayload] = None) -> list[Any]:
        """Deliver `payload` to every matching listener."""
        payload = dict(payload or {})
        listeners = self._registry.extract_listeners_for_event(event_name)
        self._published_count += 1

        if not listeners:
            return []

        async with LogContext(
            user_id=payload.get("user_id"),
            challenge_id=payload.get("challenge_id"),
            event_name=event_name,
        ):
            return await self._scheduler.execute(
                event_name=event_name,
                payload=payload,
                listeners=listeners,
                logger=logger,
                critical_timeout=self._critical_timeout,
                high_timeout=self._high_timeout,
            )

    async def drain(self) -> None:
        """Wait for fire-and-forget LOW-tier listeners to finish."""
        await self._scheduler.drain()

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    def get_listener_count(self, event_name: Optional[str] = None) -> int:
        if event_name is None:
            return self._registry.get_total_listener_count()
        return self._registry.get_listener_count_for_event(event_name)

    def get_event_keys(self) -> list[str]:
        return self._registry.get_all_event_keys()

    def get_stats(self) -> dict[str, int]:
        return {
            "published": self._published_count,
            "listeners": self._registry.get_total_listener_count(),
            "listener_errors": self._scheduler.error_count,
            "listener_timeouts": self._scheduler.timeout_count,
            "background_pending": self._scheduler.pending_background_tasks,
        }
