"""Shared building blocks for Questline domain modules."""

from questline.modules.shared.base_repository import BaseRepository
from questline.modules.shared.base_service import BaseService
from questline.modules.shared.exceptions import (
    ExternalDependencyError,
    InvalidOperationError,
    InvariantViolationError,
    NotFoundError,
    PermissionDeniedError,
    QuestlineDomainException,
    StateConflictError,
    ValidationError,
)

__all__ = [
    "BaseRepository",
    "BaseService",
    "ExternalDependencyError",
    "InvalidOperationError",
    "InvariantViolationError",
    "NotFoundError",
    "PermissionDeniedError",
    "QuestlineDomainException",
    "StateConflictError",
    "ValidationError",
]
