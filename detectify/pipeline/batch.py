"""Batch analysis: small concurrent groups with a pause between groups."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from ..analyzer.detector import ChatbotDetector
from ..analyzer.detector_models import ClassificationResult, VerificationStatus
from ..analyzer.heuristic_fallback import HeuristicFallbackDetector
from ..cache import ResultCache
from ..storage.enums import ResultPhase

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 3
DEFAULT_BATCH_DELAY = 1.0


@dataclass
class BatchReport:
    """Per-URL results in input order plus aggregate counts."""

    results: list[ClassificationResult] = field(default_factory=list)
    cancelled: bool = False

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.failed)

    @property
    def succeeded(self) -> int:
        return self.total - self.failed

    @property
    def detected(self) -> int:
        return sum(1 for r in self.results if r.has_chatbot)

    @property
    def partial(self) -> bool:
        """Some, but not all, URLs failed."""
        return 0 < self.failed < self.total

    def summary(self) -> dict:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "detected": self.detected,
            "partial": self.partial,
            "cancelled": self.cancelled,
        }


class BatchAnalyzer:
    """Runs ``ChatbotDetector.detect`` over many URLs.

    URLs are processed ``batch_size`` at a time, with ``batch_delay``
    seconds between groups. One URL failing never fails the batch.
    """

    def __init__(
        self,
        detector: ChatbotDetector,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_delay: float = DEFAULT_BATCH_DELAY,
        fallback: Optional[HeuristicFallbackDetector] = None,
        cache: Optional[ResultCache] = None,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.detector = detector
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.fallback = fallback
        self.cache = cache if cache is not None else detector.cache
        self._tasks: set[asyncio.Task] = set()
        self._cancelled = False

    async def analyze(
        self,
        urls: Sequence[str],
        *,
        titles: Optional[dict[str, str]] = None,
        deadline: Optional[float] = None,
    ) -> BatchReport:
        self._cancelled = False
        report = BatchReport()
        urls = list(urls)
        if not urls:
            return report

        if self.cache is not None:
            for url in urls:
                # Cached URLs keep their stored row; detect() answers them from cache.
                if not await self.cache.contains(url):
                    await self.cache.mark_status(url, ResultPhase.PENDING)

        groups = [urls[i:i + self.batch_size] for i in range(0, len(urls), self.batch_size)]
        for index, group in enumerate(groups):
            if self._cancelled:
                break
            logger.info(
                "Analyzing batch %s/%s (%s URLs)",
                index + 1,
                len(groups),
                len(group),
            )
            report.results.extend(await self._run_group(group, deadline))
            if index < len(groups) - 1 and self.batch_delay > 0 and not self._cancelled:
                await asyncio.sleep(self.batch_delay)

        if self._cancelled:
            report.cancelled = True
            done = len(report.results)
            for url in urls[done:]:
                report.results.append(
                    ClassificationResult.error_result(
                        url,
                        "Cancelled",
                        "Batch cancelled before analysis",
                        verification_status=VerificationStatus.UNKNOWN,
                    )
                )

        if self.fallback is not None and not report.cancelled:
            report.results = await self.fallback.apply(report.results, titles)

        logger.info("Batch complete: %s", report.summary())
        return report

    async def _run_group(
        self,
        group: list[str],
        deadline: Optional[float],
    ) -> list[ClassificationResult]:
        tasks = [asyncio.ensure_future(self.detector.detect(url, deadline=deadline)) for url in group]
        self._tasks.update(tasks)
        try:
            outcomes = await asyncio.gather(*tasks, return_exceptions=True)
        finally:
            self._tasks.difference_update(tasks)

        results: list[ClassificationResult] = []
        for url, outcome in zip(group, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                self._cancelled = True
                results.append(
                    ClassificationResult.error_result(
                        url,
                        "Cancelled",
                        "Analysis cancelled",
                        verification_status=VerificationStatus.UNKNOWN,
                    )
                )
            elif isinstance(outcome, BaseException):
                logger.error("Analysis of %s raised: %s", url, outcome)
                results.append(
                    ClassificationResult.error_result(
                        url,
                        f"Error: {outcome}" if str(outcome) else f"Error: {type(outcome).__name__}",
                        str(outcome) or type(outcome).__name__,
                        verification_status=VerificationStatus.UNKNOWN,
                    )
                )
            else:
                results.append(outcome)
        return results

    async def retry_url(self, url: str, *, deadline: Optional[float] = None) -> ClassificationResult:
        """Re-run one URL, bypassing the cache."""
        logger.info("Manual retry requested for %s", url)
        return await self.detector.detect(url, force=True, deadline=deadline)

    def cancel(self) -> int:
        """Abort the running batch. Returns the number of tasks cancelled."""
        self._cancelled = True
        cancelled = 0
        for task in list(self._tasks):
            if not task.done():
                task.cancel()
                cancelled += 1
        if cancelled:
            logger.info("Cancelled %s in-flight analyses", cancelled)
        return cancelled
