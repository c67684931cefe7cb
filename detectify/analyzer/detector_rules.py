"""Confidence scoring rule implementations."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .patterns import (
    CATEGORY_CONFIGURATION,
    CATEGORY_FUNCTIONAL,
    CATEGORY_HIDDEN,
    CATEGORY_INITIALIZATION,
    CATEGORY_INTERACTIVE,
)
from .rules import RuleResult, ScoringContext

if TYPE_CHECKING:
    from .confidence import ConfidenceCalculator


def _hit_factor(hits: int) -> float:
    """1 hit -> 0.5, 2 hits -> 0.75, 3+ hits -> 1.0."""
    if hits <= 0:
        return 0.0
    return min(1.0, 0.25 + 0.25 * hits)


class VendorRule:
    name = "vendor"

    def apply(self, calculator: "ConfidenceCalculator", context: ScoringContext) -> RuleResult:
        s = calculator.scoring
        summary = context.summary
        weight = s["vendor_weight"]

        specific = summary.specific_vendors
        if specific:
            best = max(
                specific,
                key=lambda v: summary.vendor_hits.get(v, 0) + summary.advanced_hits.get(v, 0),
            )
            hits = summary.vendor_hits.get(best, 0) + summary.advanced_hits.get(best, 0)
            score = weight * _hit_factor(hits)
            return RuleResult(
                self.name,
                score=score,
                reasons=[f"Vendor signature: {best} ({hits} hits)"],
                metadata={"vendor": best, "vendor_hits": hits},
            )

        if summary.vendors:
            label = summary.vendors[0]
            hits = summary.vendor_hits.get(label, 0)
            score = weight * _hit_factor(hits) * s["generic_penalty"]
            return RuleResult(
                self.name,
                score=score,
                reasons=[f"Generic chat markup: {label} ({hits} hits)"],
                metadata={"vendor": label, "vendor_hits": hits, "generic_only": True},
            )

        return RuleResult(self.name)


class FunctionalRule:
    name = "functional"

    def apply(self, calculator: "ConfidenceCalculator", context: ScoringContext) -> RuleResult:
        s = calculator.scoring
        summary = context.summary
        weight = s["functional_weight"]
        hits = summary.hits(CATEGORY_FUNCTIONAL)

        score = weight * min(1.0, hits / 2)
        reasons = [f"Functional chat UI ({hits} elements)"] if hits else []
        if summary.smart.is_likely and score < weight / 2:
            score = weight / 2
            reasons.append("Chat invitation text: " + ", ".join(summary.smart.indicators))
        return RuleResult(self.name, score=score, reasons=reasons)


class InitializationRule:
    name = "initialization"

    def apply(self, calculator: "ConfidenceCalculator", context: ScoringContext) -> RuleResult:
        weight = calculator.scoring["initialization_weight"]
        summary = context.summary
        if summary.hits(CATEGORY_INITIALIZATION):
            return RuleResult(self.name, score=weight, reasons=["Chat initialization code"])
        if summary.has_dynamic_loading:
            return RuleResult(self.name, score=weight / 2, reasons=["Dynamic chat loading"])
        return RuleResult(self.name)


class ConfigurationRule:
    name = "configuration"

    def apply(self, calculator: "ConfidenceCalculator", context: ScoringContext) -> RuleResult:
        weight = calculator.scoring["configuration_weight"]
        summary = context.summary
        if summary.hits(CATEGORY_CONFIGURATION):
            return RuleResult(self.name, score=weight, reasons=["Chat configuration object"])
        if summary.has_meta_tags:
            return RuleResult(self.name, score=weight / 2, reasons=["Chat meta/config markers"])
        return RuleResult(self.name)


class InteractiveRule:
    name = "interactive"

    def apply(self, calculator: "ConfidenceCalculator", context: ScoringContext) -> RuleResult:
        weight = calculator.scoring["interactive_weight"]
        summary = context.summary
        signals = sum(
            [
                summary.hits(CATEGORY_INTERACTIVE) > 0,
                summary.hits(CATEGORY_HIDDEN) > 0,
                summary.has_chat_elements,
                summary.has_websockets,
            ]
        )
        if not signals:
            return RuleResult(self.name)
        return RuleResult(
            self.name,
            score=weight * min(1.0, signals / 2),
            reasons=[f"Chat UI elements ({signals} signals)"],
        )
