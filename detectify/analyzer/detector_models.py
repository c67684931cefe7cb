"""Detector data models."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from .patterns import PatternTier, PatternType
from ..constants import GENERIC_LABELS


class VerificationStatus(str, Enum):
    """How much a classification can be trusted."""

    VERIFIED = "verified"
    UNVERIFIED = "unverified"
    FAILED = "failed"
    UNKNOWN = "unknown"
    LIKELY = "likely"  # Heuristic fallback guess


class ConfidenceBucket(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    NONE = "none"


@dataclass(frozen=True)
class MatchEvidence:
    """One signature that matched a page."""

    type: PatternType
    label: str
    pattern: str
    matched_text: str
    tier: PatternTier = PatternTier.BASIC

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "label": self.label,
            "pattern": self.pattern,
            "matched_text": self.matched_text[:80],
            "tier": self.tier.value,
        }


@dataclass
class SmartDetection:
    """Text-level hints (chat invitations, typing indicators)."""

    is_likely: bool = False
    confidence: float = 0.0
    indicators: list[str] = field(default_factory=list)


@dataclass
class MatchSummary:
    """Aggregated matcher output for one page."""

    url: str
    evidence: list[MatchEvidence] = field(default_factory=list)
    vendor_hits: dict[str, int] = field(default_factory=dict)
    advanced_hits: dict[str, int] = field(default_factory=dict)
    vendors: list[str] = field(default_factory=list)
    category_hits: dict[str, int] = field(default_factory=dict)
    has_dynamic_loading: bool = False
    has_chat_elements: bool = False
    has_meta_tags: bool = False
    has_websockets: bool = False
    false_positive_hits: int = 0
    false_positive: bool = False
    denylisted: bool = False
    smart: SmartDetection = field(default_factory=SmartDetection)
    dropped_vendors: list[str] = field(default_factory=list)

    @property
    def specific_vendors(self) -> list[str]:
        return [v for v in self.vendors if v not in GENERIC_LABELS]

    def hits(self, category: str) -> int:
        return self.category_hits.get(category, 0)

    def signals(self) -> dict[str, bool]:
        return {
            "has_dynamic_loading": self.has_dynamic_loading,
            "has_chat_elements": self.has_chat_elements,
            "has_meta_tags": self.has_meta_tags,
            "has_websockets": self.has_websockets,
        }


@dataclass
class StageResult:
    """Outcome of one pipeline stage."""

    stage: str
    confidence: float = 0.0
    proceed: bool = False
    vendors: list[str] = field(default_factory=list)
    strong_signal: bool = False
    status: str = ""
    error: Optional[str] = None
    error_kind: Optional[str] = None
    retryable: bool = False
    summary: Optional[MatchSummary] = None

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "stage": self.stage,
            "confidence": round(self.confidence, 3),
            "proceed": self.proceed,
            "vendors": list(self.vendors),
            "strong_signal": self.strong_signal,
            "status": self.status,
        }
        if self.error:
            data["error"] = self.error
        if self.summary is not None:
            data["signals"] = self.summary.signals()
            data["false_positive_hits"] = self.summary.false_positive_hits
        return data


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ClassificationResult:
    """Final answer for one URL.

    ``has_chatbot`` is derived from ``chat_solutions`` so the two can never
    disagree.
    """

    url: str
    chat_solutions: list[str] = field(default_factory=list)
    confidence: float = 0.0
    verification_status: VerificationStatus = VerificationStatus.UNKNOWN
    status: str = ""
    error: Optional[str] = None
    error_kind: Optional[str] = None
    retryable: bool = False
    last_checked: datetime = field(default_factory=utcnow)
    diagnostics: dict = field(default_factory=dict)

    def __post_init__(self):
        self.confidence = min(1.0, max(0.0, float(self.confidence or 0.0)))
        self.verification_status = VerificationStatus(self.verification_status)

    @property
    def has_chatbot(self) -> bool:
        return bool(self.chat_solutions)

    @property
    def failed(self) -> bool:
        return self.error is not None

    @classmethod
    def error_result(
        cls,
        url: str,
        status: str,
        error: Optional[str] = None,
        *,
        error_kind: Optional[str] = None,
        retryable: bool = False,
        verification_status: VerificationStatus = VerificationStatus.FAILED,
    ) -> "ClassificationResult":
        return cls(
            url=url,
            status=status,
            error=error or status,
            error_kind=error_kind,
            retryable=retryable,
            verification_status=verification_status,
        )

    def to_record(self) -> dict:
        """Row shape used by storage and change events."""
        return {
            "url": self.url,
            "has_chatbot": self.has_chatbot,
            "chatbot_solutions": list(self.chat_solutions),
            "confidence": self.confidence,
            "verification_status": self.verification_status.value,
            "status": self.status,
            "error": self.error,
            "last_checked": self.last_checked.isoformat(),
        }

    def to_dict(self) -> dict:
        data = self.to_record()
        data["diagnostics"] = self.diagnostics
        return data

    @classmethod
    def from_record(cls, row: dict) -> "ClassificationResult":
        solutions = row.get("chatbot_solutions") or []
        if isinstance(solutions, str):
            try:
                solutions = json.loads(solutions)
            except ValueError:
                solutions = [solutions]
        if not row.get("has_chatbot", bool(solutions)):
            solutions = []

        last_checked = row.get("last_checked")
        if isinstance(last_checked, str) and last_checked:
            last_checked = datetime.fromisoformat(last_checked)
        if not isinstance(last_checked, datetime):
            last_checked = utcnow()
        if last_checked.tzinfo is None:
            last_checked = last_checked.replace(tzinfo=timezone.utc)

        try:
            verification = VerificationStatus(row.get("verification_status") or "unknown")
        except ValueError:
            verification = VerificationStatus.UNKNOWN

        return cls(
            url=row.get("url") or "",
            chat_solutions=list(solutions),
            confidence=row.get("confidence") or 0.0,
            verification_status=verification,
            status=row.get("status") or "",
            error=row.get("error"),
            last_checked=last_checked,
        )
