"""Top-level chatbot detector: one URL in, one classification out."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

from .confidence import ConfidenceCalculator
from .detector_models import ClassificationResult, VerificationStatus
from .fetcher import Fetcher
from .matcher import PatternMatcher
from .metrics import metrics
from .pattern_store import PatternStore
from ..cache import ResultCache
from ..constants import (
    STATUS_EMPTY_URL,
    STATUS_INVALID_URL,
    STATUS_NO_CHATBOT_VERIFIED,
)
from ..pipeline.staged import StagedDetectionPipeline
from ..pipeline.stages import DEFAULT_STAGES
from ..storage.enums import ResultPhase
from ..utils.domains import DetectionTarget, InvalidURLError

logger = logging.getLogger(__name__)


class ChatbotDetector:
    """Validates, de-duplicates, caches and retries around the staged pipeline.

    Retry layers, innermost first:
      * Fetcher: up to ``fetcher.max_attempts`` per fetch, only in stages
        with retry_failures (the functional stage).
      * Pipeline: one fetch per stage otherwise, at most four stages.
      * This class: up to ``max_attempts`` pipeline runs while the failure
        is transient.
    """

    def __init__(
        self,
        fetcher: Optional[Fetcher] = None,
        pattern_store: Optional[PatternStore] = None,
        *,
        cache: Optional[ResultCache] = None,
        calculator: Optional[ConfidenceCalculator] = None,
        pipeline: Optional[StagedDetectionPipeline] = None,
        max_attempts: int = 3,
        retry_delay: float = 1.0,
        single_flight: bool = False,
    ):
        self.fetcher = fetcher or Fetcher()
        self.pattern_store = pattern_store or PatternStore()
        self.matcher = PatternMatcher(self.pattern_store)
        self.calculator = calculator or ConfidenceCalculator()
        self.pipeline = pipeline or StagedDetectionPipeline(
            self.fetcher,
            self.matcher,
            self.calculator,
            DEFAULT_STAGES,
        )
        self.cache = cache
        self.max_attempts = max(1, int(max_attempts))
        self.retry_delay = retry_delay
        self.single_flight = single_flight
        self._inflight: dict[str, asyncio.Task] = {}

    def worst_case_fetch_attempts(self) -> int:
        """Most HTTP attempts a single ``detect`` call can make."""
        return self.max_attempts * self.pipeline.max_fetch_attempts()

    async def detect(
        self,
        url: str,
        *,
        force: bool = False,
        deadline: Optional[float] = None,
    ) -> ClassificationResult:
        """Classify ``url``. Never raises for per-URL failures.

        ``force`` skips the cache lookup. ``deadline`` is an absolute
        ``time.monotonic()`` value bounding all fetches.
        """
        try:
            target = DetectionTarget.parse(url)
        except InvalidURLError as exc:
            status = STATUS_EMPTY_URL if exc.empty else STATUS_INVALID_URL
            logger.info("Rejected URL %r: %s", url, exc)
            return ClassificationResult.error_result(
                (url or "").strip(),
                status,
                str(exc),
                error_kind="invalid-url",
            )

        if self.pattern_store.get().is_false_positive_domain(target.url):
            logger.info("Deny-listed domain %s, skipping detection", target.host)
            result = ClassificationResult(
                url=target.url,
                status=STATUS_NO_CHATBOT_VERIFIED,
                verification_status=VerificationStatus.VERIFIED,
                diagnostics={"denylisted": True},
            )
            metrics.record_verification(result.verification_status.value)
            if self.cache is not None:
                await self.cache.put(result)
            return result

        if not force and self.cache is not None:
            cached = await self.cache.get(target.url)
            if cached is not None:
                metrics.record_cache_hit()
                return cached

        if not self.single_flight:
            return await self._detect_uncached(target, deadline)

        task = self._inflight.get(target.url)
        if task is None:
            task = asyncio.ensure_future(self._detect_uncached(target, deadline))
            self._inflight[target.url] = task
            task.add_done_callback(lambda _t, key=target.url: self._inflight.pop(key, None))
        return await asyncio.shield(task)

    async def _detect_uncached(
        self,
        target: DetectionTarget,
        deadline: Optional[float],
    ) -> ClassificationResult:
        if self.cache is not None:
            await self.cache.mark_status(target.url, ResultPhase.PROCESSING)

        result: Optional[ClassificationResult] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                result = await self.pipeline.run(target.url, deadline=deadline)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.exception("Detection failed for %s", target.url)
                result = ClassificationResult.error_result(
                    target.url,
                    "Error during analysis",
                    str(exc) or type(exc).__name__,
                    verification_status=VerificationStatus.UNKNOWN,
                )

            if not (result.failed and result.retryable):
                break
            if attempt >= self.max_attempts:
                break
            if deadline is not None and time.monotonic() >= deadline:
                break
            logger.warning(
                "Attempt %s/%s for %s failed (%s), retrying",
                attempt,
                self.max_attempts,
                target.url,
                result.error,
            )
            if self.retry_delay > 0:
                await asyncio.sleep(self.retry_delay)

        result.diagnostics.setdefault("attempts", attempt)
        metrics.record_verification(result.verification_status.value)

        if self.cache is not None:
            if result.failed:
                await self.cache.record_failure(result)
            else:
                await self.cache.put(result)
        return result
