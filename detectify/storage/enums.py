"""Shared storage enums."""

from __future__ import annotations

from enum import Enum


class ResultPhase(str, Enum):
    """Lifecycle of a stored result row."""

    PENDING = "pending"  # Queued, not started
    PROCESSING = "processing"  # Detection in flight
    COMPLETED = "completed"  # Classification stored
    FAILED = "failed"  # Detection gave up


IN_FLIGHT_PHASES = frozenset({ResultPhase.PENDING.value, ResultPhase.PROCESSING.value})


class ChangeKind(str, Enum):
    """Kind of change broadcast for a result row."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
