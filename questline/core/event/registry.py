"""
Listener storage and wildcard routing.

Exact subscriptions (`progression.level_up`) are kept in a dict keyed by
event name; wildcard subscriptions (`progression.*`, `*.completed`, `*`)
are kept in a flat list and matched on every publish. Both collections
stay sorted by (priority, identifier) so dispatch order is deterministic.

Designed for single-threaded asyncio use: all mutations happen between
awaits on one event loop, so no locking is needed.
"""

from __future__ import annotations

from questline.core.event.types import EventListener


def matches(event_name: str, pattern: str) -> bool:
    """
    Check whether `event_name` matches a `*` wildcard pattern.

    >>> matches("progression.level_up", "progression.*")
    True
    >>> matches("challenge.task_completed", "*.task_completed")
    True
    >>> matches("habit.completed", "task.*")
    False
    """
    if pattern == "*":
        return True
    if "*" not in pattern:
        return event_name == pattern

    while "**" in pattern:
        pattern = pattern.replace("**", "*")

    parts = pattern.split("*")
    if parts[0] and not event_name.startswith(parts[0]):
        return False
    if parts[-1] and not event_name.endswith(parts[-1]):
        return False

    # Middle fragments must appear in order after the prefix.
    idx = len(parts[0])
    for fragment in parts[1:-1]:
        if not fragment:
            continue
        found = event_name.find(fragment, idx)
        if found == -1:
            return False
        idx = found + len(fragment)

    # The suffix must not overlap the matched prefix/middle.
    return len(event_name) - len(parts[-1]) >= idx


def _sort_key(listener: EventListener) -> tuple[int, str]:
    return (listener.priority.value, listener.identifier)


class ListenerRegistry:
    """Registry for exact and wildcard event listeners."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[EventListener]] = {}
        self._wildcard_listeners: list[tuple[str, EventListener]] = []

    def add_listener(
        self,
        event_name: str,
        listener: EventListener,
        *,
        allow_duplicates: bool,
    ) -> bool:
        """Register a listener; returns False when prevented as a duplicate."""
        if "*" in event_name:
            if not allow_duplicates and any(
                existing.identifier == listener.identifier
                for pattern, existing in self._wildcard_listeners
                if pattern == event_name
            ):
                return False
            self._wildcard_listeners.append((event_name, listener))
            self._wildcard_listeners.sort(key=lambda pair: _sort_key(pair[1]))
            return True

        listeners = self._listeners.setdefault(event_name, [])
        if not allow_duplicates and any(
            existing.identifier == listener.identifier for existing in listeners
        ):
            return False
        listeners.append(listener)
        listeners.sort(key=_sort_key)
        return True

    def remove_listener(self, event_name: str, identifier: str) -> bool:
        removed = False

        if event_name in self._listeners:
            before = len(self._listeners[event_name])
            remaining = [
                lst for lst in self._listeners[event_name] if lst.identifier != identifier
            ]
            removed = len(remaining) < before
            if remaining:
                self._listeners[event_name] = remaining
            else:
                del self._listeners[event_name]

        before_wc = len(self._wildcard_listeners)
        self._wildcard_listeners = [
            (pattern, lst)
            for pattern, lst in self._wildcard_listeners
            if not (pattern == event_name and lst.identifier == identifier)
        ]
        return removed or len(self._wildcard_listeners) < before_wc

    def clear_all(self) -> int:
        total = self.get_total_listener_count()
        self._listeners.clear()
        self._wildcard_listeners.clear()
        return total

    def extract_listeners_for_event(self, event_name: str) -> list[EventListener]:
        """
        Collect every listener for `event_name` and prune `once` listeners
        in the same step, so concurrent publishes cannot run a one-shot
        listener twice.
        """
        result: list[EventListener] = []

        exact = self._listeners.get(event_name, [])
        kept = [lst for lst in exact if not lst.once]
        result.extend(exact)
        if kept:
            self._listeners[event_name] = kept
        else:
            self._listeners.pop(event_name, None)

        kept_wildcards: list[tuple[str, EventListener]] = []
        for pattern, listener in self._wildcard_listeners:
            if matches(event_name, pattern):
                result.append(listener)
                if listener.once:
                    continue
            kept_wildcards.append((pattern, listener))
        self._wildcard_listeners = kept_wildcards

        result.sort(key=_sort_key)
        return result

    def get_listener_count_for_event(self, event_name: str) -> int:
        count = len(self._listeners.get(event_name, []))
        count += sum(
            1 for pattern, _ in self._wildcard_listeners if matches(event_name, pattern)
        )
        return count

    def get_total_listener_count(self) -> int:
        total = sum(len(listeners) for listeners in self._listeners.values())
        return total + len(self._wildcard_listeners)

    def get_all_event_keys(self) -> list[str]:
        keys = list(self._listeners.keys())
        keys.extend(pattern for pattern, _ in self._wildcard_listeners)
        return sorted(set(keys))
