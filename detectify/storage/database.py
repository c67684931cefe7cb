"""SQLite database operations for Detectify."""

from __future__ import annotations

from .db.base import DatabaseBase
from .db.results import DatabaseResultsMixin
from .enums import ChangeKind, ResultPhase


class Database(DatabaseResultsMixin, DatabaseBase):
    """Async SQLite database for classification results."""


__all__ = ["Database", "ChangeKind", "ResultPhase"]
