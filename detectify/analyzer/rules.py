"""Rule-based building blocks for confidence scoring."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from .detector_models import MatchSummary


@dataclass
class ScoringContext:
    """Shared context passed to each scoring rule."""

    summary: MatchSummary


@dataclass
class RuleResult:
    """Outcome of a single scoring rule."""

    name: str
    score: float = 0.0
    reasons: list[str] = field(default_factory=list)
    metadata: dict = field(default_factory=dict)


class ScoringRule(Protocol):
    """Interface for scoring rules."""

    name: str

    def apply(self, calculator, context: ScoringContext) -> RuleResult:  # pragma: no cover - interface
        ...
