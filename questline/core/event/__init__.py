"""Async publish/subscribe for post-commit domain events."""

from questline.core.event.bus import EventBus
from questline.core.event.registry import ListenerRegistry, matches
from questline.core.event.scheduler import EventScheduler
from questline.core.event.types import (
    CallbackType,
    EventListener,
    EventPayload,
    ListenerPriority,
)

__all__ = [
    "EventBus",
    "EventScheduler",
    "ListenerRegistry",
    "matches",
    "CallbackType",
    "EventListener",
    "EventPayload",
    "ListenerPriority",
]
