"""Keyword heuristics used when a whole batch comes back negative.

Low-confidence guesses, never presented as verified. They exist so a
batch where every site blocked the fetcher still yields candidates worth
a manual look.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, Optional, Sequence

from .detector_models import ClassificationResult, VerificationStatus
from ..constants import (
    DEFAULT_GENERIC_LABEL,
    FALLBACK_KEYWORDS,
    STATUS_DOMAIN_HEURISTIC,
    STATUS_KEYWORD_MATCH,
)
from ..utils.domains import InvalidURLError, extract_hostname, normalize_url

logger = logging.getLogger(__name__)

LIKELY_LABEL = f"Likely {DEFAULT_GENERIC_LABEL}"
KEYWORD_CONFIDENCE = 0.3
DOMAIN_HEURISTIC_CONFIDENCE = 0.25

_DENTAL_SPECIALIST_RE = re.compile(
    r"(?:orthodont|implant|cosmetic|emergency)[\w-]*(?:dent|smile|clinic)|(?:dent|smile)[\w-]*(?:emergency|specialist|implant)",
    re.I,
)


class HeuristicFallbackDetector:
    """Guesses from URL and title keywords, without fetching anything."""

    def __init__(
        self,
        keywords: Sequence[str] = FALLBACK_KEYWORDS,
        enabled: bool = True,
    ):
        self.keywords = [k.lower() for k in keywords if k]
        self.enabled = enabled

    async def detect(self, url: str, title: str = "") -> ClassificationResult:
        """Same contract as the main detector, but heuristic only."""
        haystack = f"{url} {title or ''}".lower()
        matched = [k for k in self.keywords if k in haystack]
        if matched:
            return ClassificationResult(
                url=url,
                chat_solutions=[LIKELY_LABEL],
                confidence=KEYWORD_CONFIDENCE,
                verification_status=VerificationStatus.LIKELY,
                status=STATUS_KEYWORD_MATCH,
                diagnostics={"fallback": "keyword", "keywords": matched},
            )

        host = extract_hostname(url)
        if host and _DENTAL_SPECIALIST_RE.search(host):
            return ClassificationResult(
                url=url,
                chat_solutions=[LIKELY_LABEL],
                confidence=DOMAIN_HEURISTIC_CONFIDENCE,
                verification_status=VerificationStatus.LIKELY,
                status=STATUS_DOMAIN_HEURISTIC,
                diagnostics={"fallback": "domain"},
            )

        return ClassificationResult(
            url=url,
            verification_status=VerificationStatus.UNKNOWN,
            status="No chatbot detected (heuristic)",
            diagnostics={"fallback": "none"},
        )

    @staticmethod
    def should_apply(results: Iterable[ClassificationResult]) -> bool:
        """Only when nothing in the batch was detected."""
        results = list(results)
        return bool(results) and not any(r.has_chatbot for r in results)

    async def apply(
        self,
        results: list[ClassificationResult],
        titles: Optional[dict[str, str]] = None,
    ) -> list[ClassificationResult]:
        """Return results with eligible negatives replaced by heuristic guesses.

        Errors and deny-listed URLs are never rewritten.
        """
        if not self.enabled or not self.should_apply(results):
            return results

        titles = _title_index(titles)
        updated: list[ClassificationResult] = []
        promoted = 0
        for result in results:
            if result.failed or result.diagnostics.get("denylisted"):
                updated.append(result)
                continue
            guess = await self.detect(result.url, titles.get(result.url, ""))
            if guess.has_chatbot:
                guess.last_checked = result.last_checked
                guess.diagnostics["original_status"] = result.status
                updated.append(guess)
                promoted += 1
            else:
                updated.append(result)

        logger.info("Heuristic fallback promoted %s of %s results", promoted, len(results))
        return updated


def _title_index(titles: Optional[dict[str, str]]) -> dict[str, str]:
    """Key titles by normalized URL so they line up with result URLs."""
    index: dict[str, str] = {}
    for url, title in (titles or {}).items():
        try:
            key = normalize_url(url)
        except InvalidURLError:
            key = (url or "").strip()
        index.setdefault(key, title or "")
    return index
