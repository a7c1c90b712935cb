"""
Infrastructure exceptions for Questline.

Engineering-level failures (bad configuration, an unusable environment)
that need an operator rather than a user-facing message. Progression rule
failures live in `questline.modules.shared.exceptions`. Both hierarchies
derive from `QuestlineError`, which carries `message`, `details`,
`severity`, `is_retryable` and `error_code`.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorSeverity(Enum):
    """Error severity levels for logging and alerting."""

    DEBUG = "debug"  # Expected, not concerning
    INFO = "info"  # Normal operation (e.g., validation failures)
    WARNING = "warning"  # Handled, possibly retryable
    ERROR = "error"  # Needs attention
    CRITICAL = "critical"  # Engine cannot run correctly


class QuestlineError(Exception):
    """
    Structured base shared by the domain and infrastructure hierarchies.

    Args:
        message: Human-readable error message
        details: Additional structured data about the error
        severity: Error severity level for logging handlers
        is_retryable: Whether the operation can be retried
        error_code: Optional code for programmatic handling
    """

    DEFAULT_SEVERITY: ErrorSeverity = ErrorSeverity.ERROR
    DEFAULT_RETRYABLE: bool = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[ErrorSeverity] = None,
        is_retryable: Optional[bool] = None,
        error_code: Optional[str] = None,
    ) -> None:
        self.message = message
        self.details: Dict[str, Any] = details or {}
        self.severity = severity or self.DEFAULT_SEVERITY
        self.is_retryable = self.DEFAULT_RETRYABLE if is_retryable is None else is_retryable
        self.error_code = error_code or self.__class__.__name__
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "severity": self.severity.value,
            "is_retryable": self.is_retryable,
        }

    def __str__(self) -> str:
        suffix = f" | Details: {self.details}" if self.details else ""
        return f"[{self.error_code}] {self.message}{suffix}"


class QuestlineInfrastructureException(QuestlineError):
    """An operator-facing failure: configuration or environment."""


class ConfigurationError(QuestlineInfrastructureException):
    """
    Raised at startup when a setting or balance value is unusable, e.g. a
    missing DATABASE_URL in production or a non-numeric scoring factor.

    Args:
        config_key: The setting or dot-path key at fault
        message: What is wrong with it
    """

    DEFAULT_SEVERITY = ErrorSeverity.CRITICAL

    def __init__(self, config_key: str, message: str) -> None:
        self.config_key = config_key
        super().__init__(
            f"Configuration error for {config_key}: {message}",
            details={"config_key": config_key, "message": message},
            error_code="CONFIG_ERROR",
        )
