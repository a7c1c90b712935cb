"""
Base Service Foundation

Purpose
-------
Foundation class for the engine's domain services (ledger, habit, task,
challenge and leaderboard services). Services implement the progression
rules, raise domain exceptions and queue domain events on the caller's
`UnitOfWork`.

Design Notes
------------
This base class provides:
- Structured logging with operation context
- Safe config access (`get_config`)
- Event queuing (`queue_event`), published by the UnitOfWork after commit
- Small validation helpers that raise `ValidationError`

What this class does NOT do:
- Open or commit transactions (UnitOfWork / DatabaseService own that)
- Publish events directly; a rolled-back operation must publish nothing

Usage
-----
    class HabitService(BaseService):
        async def complete_habit(self, uow, user_id, habit_id):
            ...
            self.queue_event(uow, "habit.completed", {...})
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Optional

from questline.core.exceptions import ConfigurationError
from questline.modules.shared.exceptions import ValidationError

if TYPE_CHECKING:
    from logging import Logger

    from questline.core.database.unit_of_work import UnitOfWork
    from questline.core.event.bus import EventBus


class BaseService:
    """
    Base class for all domain services.

    Args:
        config_manager: Balance configuration (ConfigManager class or instance)
        event_bus: Event bus, kept for services that subscribe to events
        logger: Structured logger instance
    """

    def __init__(
        self,
        config_manager: Any,
        event_bus: Optional[EventBus],
        logger: Logger,
    ) -> None:
        self._config = config_manager
        self._events = event_bus
        self.log = logger

    def get_config(
        self, key: str, default: Optional[Any] = None, required: bool = False
    ) -> Any:
        """
        Safely retrieve a configuration value.

        Raises:
            ConfigurationError: If required=True and key is missing
        """
        value = self._config.get(key, default)
        if required and value is None:
            raise ConfigurationError(key, f"Required configuration key '{key}' is missing")
        return value

    def queue_event(self, uow: UnitOfWork, event_type: str, data: Dict[str, Any]) -> None:
        """Queue a domain event; it is published only if the unit of work commits."""
        uow.record_event(event_type, data)

    def log_operation(self, operation: str, **context: Any) -> None:
        self.log.info(
            f"Service operation: {operation}",
            extra={"operation": operation, **context},
        )

    def log_error(self, operation: str, error: Exception, **context: Any) -> None:
        self.log.error(
            f"Service error during {operation}: {str(error)}",
            extra={
                "operation": operation,
                "error_type": type(error).__name__,
                "error_message": str(error),
                **context,
            },
        )

    def validate_positive_int(self, value: Any, name: str) -> None:
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ValidationError(name, f"{name} must be a positive integer, got {value!r}")

    def validate_non_negative_int(self, value: Any, name: str) -> None:
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValidationError(
                name, f"{name} must be a non-negative integer, got {value!r}"
            )

    def validate_range(self, value: int, name: str, min_val: int, max_val: int) -> None:
        if not (min_val <= value <= max_val):
            raise ValidationError(
                name,
                f"{name} must be between {min_val} and {max_val}, got {value}",
            )
