"""
Persistence infrastructure: declarative base, engine/session lifecycle and
the unit of work shared by every write operation.
"""

from questline.core.database.base import (
    Base,
    IdMixin,
    TimestampMixin,
    ensure_utc,
    utc_date,
    utc_now,
)
from questline.core.database.service import (
    DatabaseInitializationError,
    DatabaseNotInitializedError,
    DatabaseService,
)
from questline.core.database.unit_of_work import UnitOfWork, unit_of_work

__all__ = [
    "Base",
    "IdMixin",
    "TimestampMixin",
    "ensure_utc",
    "utc_date",
    "utc_now",
    "DatabaseService",
    "DatabaseInitializationError",
    "DatabaseNotInitializedError",
    "UnitOfWork",
    "unit_of_work",
]
