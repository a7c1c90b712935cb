"""
Errors raised by services when a progression rule rejects a request.

Every class derives from `QuestlineDomainException` and so from
`questline.core.exceptions.QuestlineError`: callers get a stable
`error_code`, structured `details`, a `severity` and an `is_retryable`
flag. An API layer maps them onto responses without parsing messages.

State conflicts additionally carry a short `rule` naming what blocked the
action (`already_completed`, `challenge_full`, `participant_not_active`).
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from questline.core.exceptions import ErrorSeverity, QuestlineError


def _code_fragment(value: str) -> str:
    return "".join(ch if ch.isalnum() else "_" for ch in value.upper())


class QuestlineDomainException(QuestlineError):
    """A request the progression rules refuse. Nothing was written."""

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.error_code!r}, details={self.details!r})"


class NotFoundError(QuestlineDomainException):
    """
    The entity does not exist or is not visible to the caller.

    Args:
        resource_type: Model name, e.g. "Habit" or "ChallengeTask"
        identifier: Key that was looked up, when there is one
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, resource_type: str, identifier: Optional[Any] = None) -> None:
        self.resource_type = resource_type
        self.identifier = identifier
        suffix = f": {identifier}" if identifier is not None else ""
        super().__init__(
            f"{resource_type} not found{suffix}",
            details={"resource_type": resource_type, "identifier": identifier},
            error_code=f"{_code_fragment(resource_type)}_NOT_FOUND",
        )


class ValidationError(QuestlineDomainException):
    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(
            f"Validation failed for {field}: {message}",
            details={"field": field, "message": message},
            error_code=f"VALIDATION_{_code_fragment(field)}",
        )


class InvalidOperationError(QuestlineDomainException):
    """The action cannot run as requested (e.g. reparenting a task under itself)."""

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(
        self,
        action: str,
        reason: str,
        *,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
    ) -> None:
        self.action = action
        self.reason = reason
        super().__init__(
            f"Cannot {action}: {reason}",
            details={"action": action, "reason": reason, **(details or {})},
            error_code=error_code or f"INVALID_{_code_fragment(action)}",
        )


class StateConflictError(InvalidOperationError):
    """
    The entity's current state forbids the action.

    Args:
        action: Operation name, e.g. "complete_habit"
        rule: Which rule blocked it, e.g. "already_completed"
        reason: Human-readable explanation
        details: Extra context merged into `details`
    """

    def __init__(
        self,
        action: str,
        rule: str,
        reason: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.rule = rule
        super().__init__(
            action,
            reason,
            details={"rule": rule, **(details or {})},
            error_code=f"CONFLICT_{_code_fragment(rule)}",
        )


class PermissionDeniedError(QuestlineDomainException):
    DEFAULT_SEVERITY = ErrorSeverity.WARNING

    def __init__(self, action: str, reason: str) -> None:
        self.action = action
        super().__init__(
            f"Not permitted to {action}: {reason}",
            details={"action": action, "reason": reason},
            error_code=f"FORBIDDEN_{_code_fragment(action)}",
        )


class InvariantViolationError(QuestlineDomainException):
    """
    An XP amount or balance value is negative, non-finite, fractional or
    over the per-event cap. Indicates a bug or bad configuration, not bad
    user input.
    """

    DEFAULT_SEVERITY = ErrorSeverity.CRITICAL

    def __init__(self, field: str, value: Any, reason: str) -> None:
        self.field = field
        self.value = value
        super().__init__(
            f"Invariant violated for {field}: {reason}",
            details={"field": field, "value": repr(value), "reason": reason},
            error_code=f"INVARIANT_{_code_fragment(field)}",
        )


class ExternalDependencyError(QuestlineDomainException):
    """The AI proof judge (or another collaborator) failed; safe to retry."""

    DEFAULT_SEVERITY = ErrorSeverity.WARNING
    DEFAULT_RETRYABLE = True

    def __init__(
        self,
        dependency: str,
        reason: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.dependency = dependency
        super().__init__(
            f"{dependency} failed: {reason}",
            details={"dependency": dependency, "reason": reason, **(details or {})},
            error_code=f"EXTERNAL_{_code_fragment(dependency)}",
        )


def is_transient_error(exc: Exception) -> bool:
    return isinstance(exc, QuestlineError) and exc.is_retryable


def get_error_severity(exc: Exception) -> ErrorSeverity:
    return exc.severity if isinstance(exc, QuestlineError) else ErrorSeverity.ERROR


def should_alert(exc: Exception) -> bool:
    """ERROR and CRITICAL page someone; the rest are logged only."""
    return get_error_severity(exc) in (ErrorSeverity.ERROR, ErrorSeverity.CRITICAL)
