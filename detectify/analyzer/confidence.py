"""Confidence calculator: turns matcher output into a score and buckets."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from .detector_models import ConfidenceBucket, MatchSummary, VerificationStatus
from .detector_rules import (
    ConfigurationRule,
    FunctionalRule,
    InitializationRule,
    InteractiveRule,
    VendorRule,
)
from .patterns import (
    CATEGORY_FUNCTIONAL,
    CATEGORY_INTERACTIVE,
    PatternTier,
    PatternType,
)
from .rules import ScoringContext, ScoringRule

logger = logging.getLogger(__name__)


@dataclass
class ConfidenceScore:
    """Score plus the reasons that produced it."""

    confidence: float
    bucket: ConfidenceBucket
    reasons: list[str] = field(default_factory=list)
    components: dict[str, float] = field(default_factory=dict)
    points: Optional[int] = None


class ConfidenceCalculator:
    """Weighted evidence scoring with an evidence-point cross-check."""

    DEFAULT_SCORING = {
        "vendor_weight": 0.4,
        "functional_weight": 0.2,
        "initialization_weight": 0.15,
        "configuration_weight": 0.15,
        "interactive_weight": 0.1,
        "generic_penalty": 0.5,
        "bucket_high": 0.75,
        "bucket_medium": 0.5,
        "bucket_low": 0.15,
        "verification_failed_below": 0.3,
        "verification_verified_at": 0.75,
        "points_provider_dom": 3,
        "points_provider_script": 4,
        "points_interactive": 2,
        "points_functional": 3,
        "points_contact_form": -2,
        "points_contact_form_ceiling": 5,
        "points_high": 7,
        "points_medium": 4,
        "points_low": 2,
        "points_confidence_high": 0.9,
        "points_confidence_medium": 0.7,
        "points_confidence_low": 0.3,
    }

    def __init__(self, scoring_weights: dict | None = None):
        self.scoring = dict(self.DEFAULT_SCORING)
        if scoring_weights:
            self.scoring.update(scoring_weights)
        self._rules: list[ScoringRule] = [
            VendorRule(),
            FunctionalRule(),
            InitializationRule(),
            ConfigurationRule(),
            InteractiveRule(),
        ]

    def bucket_for(self, confidence: float) -> ConfidenceBucket:
        s = self.scoring
        if confidence >= s["bucket_high"]:
            return ConfidenceBucket.HIGH
        if confidence >= s["bucket_medium"]:
            return ConfidenceBucket.MEDIUM
        if confidence >= s["bucket_low"]:
            return ConfidenceBucket.LOW
        return ConfidenceBucket.NONE

    def score(self, summary: MatchSummary) -> ConfidenceScore:
        """Weighted sum of the scoring rules, clamped to [0, 1]."""
        context = ScoringContext(summary=summary)
        total = 0.0
        reasons: list[str] = []
        components: dict[str, float] = {}

        for rule in self._rules:
            try:
                result = rule.apply(self, context)
            except Exception as exc:  # pragma: no cover - defensive
                logger.warning(
                    "Scoring rule %s failed for %s: %s",
                    getattr(rule, "name", "unknown"),
                    summary.url,
                    exc,
                )
                continue
            components[result.name] = round(result.score, 4)
            total += result.score
            reasons.extend(result.reasons or [])

        confidence = round(min(1.0, max(0.0, total)), 4)
        return ConfidenceScore(
            confidence=confidence,
            bucket=self.bucket_for(confidence),
            reasons=reasons,
            components=components,
        )

    def evidence_points(self, summary: MatchSummary) -> tuple[int, ConfidenceBucket, list[str]]:
        """Simpler additive scorer over provider-specific evidence."""
        s = self.scoring
        points = 0
        reasons: list[str] = []
        advanced = [e for e in summary.evidence if e.tier == PatternTier.ADVANCED]

        if any(e.type == PatternType.DOM_ELEMENT for e in advanced):
            points += s["points_provider_dom"]
            reasons.append("Provider DOM element")
        if any(e.type == PatternType.SCRIPT_REFERENCE for e in advanced):
            points += s["points_provider_script"]
            reasons.append("Provider script")
        if summary.hits(CATEGORY_INTERACTIVE):
            points += s["points_interactive"]
            reasons.append("Visible chat element")
        if summary.hits(CATEGORY_FUNCTIONAL):
            points += s["points_functional"]
            reasons.append("Interactive chat markup")
        if summary.false_positive_hits and points < s["points_contact_form_ceiling"]:
            points += s["points_contact_form"]
            reasons.append("Contact form present")

        if summary.false_positive and points >= s["points_low"]:
            bucket = ConfidenceBucket.LOW
        elif points >= s["points_high"]:
            bucket = ConfidenceBucket.HIGH
        elif points >= s["points_medium"]:
            bucket = ConfidenceBucket.MEDIUM
        elif points >= s["points_low"]:
            bucket = ConfidenceBucket.LOW
        else:
            bucket = ConfidenceBucket.NONE
        return points, bucket, reasons

    def points_confidence(self, bucket: ConfidenceBucket) -> float:
        return {
            ConfidenceBucket.HIGH: self.scoring["points_confidence_high"],
            ConfidenceBucket.MEDIUM: self.scoring["points_confidence_medium"],
            ConfidenceBucket.LOW: self.scoring["points_confidence_low"],
        }.get(bucket, 0.0)

    def evaluate(self, summary: MatchSummary, advanced: bool = False) -> ConfidenceScore:
        """Stage confidence: weighted score, raised by the point scorer when enabled."""
        weighted = self.score(summary)
        if not advanced:
            return weighted

        points, points_bucket, point_reasons = self.evidence_points(summary)
        weighted.points = points
        points_conf = self.points_confidence(points_bucket)
        if points_conf > weighted.confidence:
            weighted.confidence = points_conf
            weighted.bucket = self.bucket_for(points_conf)
            weighted.reasons.extend(point_reasons)
        return weighted

    def verification_status(
        self,
        confidence: float,
        false_positive: bool = False,
        denylisted: bool = False,
    ) -> VerificationStatus:
        s = self.scoring
        if denylisted:
            return VerificationStatus.VERIFIED
        if false_positive or confidence < s["verification_failed_below"]:
            return VerificationStatus.FAILED
        if confidence >= s["verification_verified_at"]:
            return VerificationStatus.VERIFIED
        return VerificationStatus.UNVERIFIED
