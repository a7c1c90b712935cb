"""
Listener records and priority tiers for the event bus.

Tiers run in ascending order of value:

    CRITICAL  0    one at a time, awaited, with a timeout
    HIGH      10   one at a time, awaited, with a timeout
    NORMAL    50   together under asyncio.gather, awaited
    LOW       100  scheduled as background tasks, not awaited

Progression events are published only after their transaction commits, so
no tier can roll back an award. Notification fan-out (level-up messages,
leaderboard refreshes) belongs in NORMAL; audit sinks belong in LOW.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

EventPayload = dict[str, Any]

CallbackType = Union[
    Callable[[EventPayload], Any],
    Callable[[EventPayload], Awaitable[Any]],
]


class ListenerPriority(Enum):
    CRITICAL = 0
    HIGH = 10
    NORMAL = 50
    LOW = 100


def describe_callback(callback: CallbackType) -> str:
    name = getattr(callback, "__qualname__", None) or getattr(callback, "__name__", repr(callback))
    return f"{getattr(callback, '__module__', '?')}.{name}"


@dataclass(slots=True, frozen=True)
class EventListener:
    """One subscription. `once` listeners are removed before they first run."""

    callback: CallbackType
    priority: ListenerPriority
    identifier: str
    once: bool = False

    @classmethod
    def from_callback(
        cls,
        event_name: str,
        callback: CallbackType,
        priority: ListenerPriority,
        identifier: Optional[str],
        once: bool,
    ) -> EventListener:
        return cls(
            callback=callback,
            priority=priority,
            identifier=identifier or f"{describe_callback(callback)}@{event_name}",
            once=once,
        )
