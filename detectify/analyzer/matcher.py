"""Pattern matcher: runs the signature library over fetched HTML."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Optional

from .detector_models import MatchEvidence, MatchSummary
from .metrics import metrics
from .pattern_store import PatternStore
from .patterns import (
    CATEGORY_DYNAMIC,
    CATEGORY_ELEMENTS,
    CATEGORY_FALSE_POSITIVE,
    CATEGORY_META,
    CATEGORY_WEBSOCKET,
    PatternLibrary,
    SIGNAL_CATEGORIES,
    PatternTier,
)
from .smart_detection import healthcare_without_chat_cta, perform_smart_detection
from ..utils.domains import extract_hostname

logger = logging.getLogger(__name__)

# Categories that count as independent corroboration for a generic label.
INDEPENDENT_CATEGORIES = (CATEGORY_META, CATEGORY_WEBSOCKET, CATEGORY_DYNAMIC)


@dataclass(frozen=True)
class MatchOptions:
    """Which detection passes are enabled."""

    advanced: bool = False
    deep_verification: bool = False
    functional: bool = False
    hidden: bool = False
    vendor_hints: tuple[str, ...] = ()

    def tiers(self) -> list[PatternTier]:
        tiers = [PatternTier.BASIC]
        if self.advanced:
            tiers.append(PatternTier.ADVANCED)
        if self.functional:
            tiers.append(PatternTier.FUNCTIONAL)
        if self.hidden:
            tiers.append(PatternTier.HIDDEN)
        return tiers


class PatternMatcher:
    """Matches pages against the current pattern library."""

    def __init__(self, store: Optional[PatternStore] = None):
        self.store = store or PatternStore()

    @property
    def library(self) -> PatternLibrary:
        return self.store.get()

    def match(
        self,
        html: str,
        url: str = "",
        options: MatchOptions = MatchOptions(),
        library: Optional[PatternLibrary] = None,
    ) -> list[MatchEvidence]:
        """Return every matching signature, in library order.

        A deny-listed ``url`` never produces evidence.
        """
        library = library or self.library
        evidence: list[MatchEvidence] = []
        if not html:
            return evidence
        if url and library.is_false_positive_domain(url):
            return evidence
        for sig in library.for_tiers(options.tiers()):
            matched = sig.search(html)
            if matched is None:
                continue
            evidence.append(
                MatchEvidence(
                    type=sig.type,
                    label=sig.label,
                    pattern=sig.pattern,
                    matched_text=matched,
                    tier=sig.tier,
                )
            )
        return evidence

    def summarize(
        self,
        html: str,
        url: str,
        evidence: list[MatchEvidence],
        options: MatchOptions = MatchOptions(),
        library: Optional[PatternLibrary] = None,
    ) -> MatchSummary:
        """Turn raw evidence into credited vendors and signal flags."""
        library = library or self.library
        summary = MatchSummary(url=url, evidence=list(evidence))

        vendor_hits: Counter = Counter()
        advanced_hits: Counter = Counter()
        category_hits: Counter = Counter()
        for item in evidence:
            if item.label in SIGNAL_CATEGORIES:
                category_hits[item.label] += 1
            elif item.tier == PatternTier.ADVANCED:
                advanced_hits[item.label] += 1
            else:
                vendor_hits[item.label] += 1

        summary.vendor_hits = dict(vendor_hits)
        summary.advanced_hits = dict(advanced_hits)
        summary.category_hits = dict(category_hits)
        summary.has_dynamic_loading = category_hits[CATEGORY_DYNAMIC] > 0
        summary.has_chat_elements = category_hits[CATEGORY_ELEMENTS] > 0
        summary.has_meta_tags = category_hits[CATEGORY_META] > 0
        summary.has_websockets = category_hits[CATEGORY_WEBSOCKET] > 0

        fp_hits = category_hits[CATEGORY_FALSE_POSITIVE]
        if html and healthcare_without_chat_cta(html):
            fp_hits += 1
        summary.false_positive_hits = fp_hits
        summary.false_positive = fp_hits >= library.false_positive_content_threshold
        summary.smart = perform_smart_detection(html)

        generic_threshold = (
            library.generic_min_hits_suppressed if summary.false_positive else library.generic_min_hits
        )
        independent = sum(1 for cat in INDEPENDENT_CATEGORIES if category_hits[cat] > 0)
        hints = set(options.vendor_hints)

        for vendor in library.vendors:
            basic = vendor_hits[vendor]
            advanced = advanced_hits[vendor]
            if library.is_generic(vendor):
                if basic == 0:
                    continue
                if basic + independent >= generic_threshold or vendor in hints:
                    summary.vendors.append(vendor)
                continue

            if basic + advanced == 0:
                continue
            if options.deep_verification and advanced == 0 and basic < 2:
                summary.dropped_vendors.append(vendor)
                continue
            summary.vendors.append(vendor)

        return summary

    def analyze(self, html: str, url: str, options: MatchOptions = MatchOptions()) -> MatchSummary:
        """Match and summarize one page, recording metrics."""
        library = self.library
        if library.is_false_positive_domain(url):
            logger.info("Skipping pattern match for deny-listed %s", url)
            return MatchSummary(url=url, denylisted=True)

        evidence = self.match(html, url, options, library)
        summary = self.summarize(html, url, evidence, options, library)

        host = extract_hostname(url)
        for item in evidence:
            metrics.record_pattern_hit(item.label, item.pattern, host)
        for vendor in summary.vendors:
            metrics.record_vendor_detection(vendor, host)

        logger.debug(
            "Matched %s: %s signatures, vendors=%s, dropped=%s, fp_hits=%s",
            url,
            len(evidence),
            summary.vendors,
            summary.dropped_vendors,
            summary.false_positive_hits,
        )
        return summary
