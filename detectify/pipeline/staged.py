"""Staged detection pipeline.

Each stage re-fetches the page and re-matches it with more detection
passes enabled. A stage either finalizes (positive), exits early
(negative), or hands its vendor list to the next stage as hints.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from ..analyzer.confidence import ConfidenceCalculator
from ..analyzer.detector_models import (
    ClassificationResult,
    MatchSummary,
    StageResult,
    VerificationStatus,
)
from ..analyzer.fetcher import FetchError, Fetcher
from ..analyzer.matcher import PatternMatcher
from ..analyzer.metrics import metrics
from ..constants import (
    DEFAULT_GENERIC_LABEL,
    GENERIC_LABELS,
    LABEL_ALIASES,
    STATUS_CHATBOT_DETECTED,
    STATUS_NO_CHATBOT,
    STATUS_NO_CHATBOT_VERIFIED,
)
from .stages import DEFAULT_STAGES, FINALIZE_CONFIDENCE, StageConfig

logger = logging.getLogger(__name__)

MAX_STAGES = 4


def finalize_labels(vendors: Sequence[str]) -> list[str]:
    """Apply aliases, de-duplicate, and prefer specific vendors over generic labels."""
    labels: list[str] = []
    for vendor in vendors:
        label = LABEL_ALIASES.get(vendor, vendor)
        if label and label not in labels:
            labels.append(label)
    specific = [label for label in labels if label not in GENERIC_LABELS]
    if specific:
        return specific
    return labels or [DEFAULT_GENERIC_LABEL]


class StagedDetectionPipeline:
    """Runs up to four escalating detection stages for one URL."""

    def __init__(
        self,
        fetcher: Fetcher,
        matcher: PatternMatcher,
        calculator: Optional[ConfidenceCalculator] = None,
        stages: Sequence[StageConfig] = DEFAULT_STAGES,
        finalize_confidence: float = FINALIZE_CONFIDENCE,
    ):
        if not stages:
            raise ValueError("At least one stage is required")
        if len(stages) > MAX_STAGES:
            raise ValueError(f"At most {MAX_STAGES} stages are supported")
        self.fetcher = fetcher
        self.matcher = matcher
        self.calculator = calculator or ConfidenceCalculator()
        self.stages = tuple(stages)
        self.finalize_confidence = finalize_confidence

    def fetch_attempts(self, stage: StageConfig) -> int:
        """Only stages with retry_failures retry transient fetch errors."""
        return self.fetcher.max_attempts if stage.retry_failures else 1

    def max_fetch_attempts(self) -> int:
        """Upper bound on HTTP attempts for one pipeline run."""
        return sum(self.fetch_attempts(stage) for stage in self.stages)

    async def run(self, url: str, *, deadline: Optional[float] = None) -> ClassificationResult:
        hints: tuple[str, ...] = ()
        history: list[StageResult] = []

        for index, stage in enumerate(self.stages):
            is_last = index == len(self.stages) - 1
            result = await self.run_stage(stage, url, hints, deadline=deadline)
            history.append(result)
            summary = result.summary

            if result.error:
                result.proceed = False
                metrics.record_stage_exit(stage.name)
                logger.warning("Stage %s failed for %s: %s", stage.name, url, result.error)
                return self._error(url, result, history)

            if summary is not None and summary.denylisted:
                metrics.record_stage_exit(stage.name)
                return ClassificationResult(
                    url=url,
                    status=STATUS_NO_CHATBOT_VERIFIED,
                    verification_status=VerificationStatus.VERIFIED,
                    diagnostics=self._diagnostics(history, stage, denylisted=True),
                )

            if result.confidence >= self.finalize_confidence:
                return self._positive(url, stage, result, history)

            if result.confidence < stage.threshold and not result.strong_signal:
                result.proceed = False
                metrics.record_stage_exit(stage.name)
                logger.info(
                    "No chatbot on %s after %s stage (confidence %.2f < %.2f)",
                    url,
                    stage.name,
                    result.confidence,
                    stage.threshold,
                )
                return ClassificationResult(
                    url=url,
                    confidence=result.confidence,
                    status=STATUS_NO_CHATBOT,
                    verification_status=VerificationStatus.VERIFIED,
                    diagnostics=self._diagnostics(history, stage),
                )

            if is_last:
                return self._positive(url, stage, result, history)

            result.proceed = True
            hints = tuple(result.vendors)
            logger.info(
                "Stage %s for %s: confidence %.2f, vendors=%s, continuing",
                stage.name,
                url,
                result.confidence,
                list(hints),
            )

        raise RuntimeError("unreachable: pipeline ended without a decision")  # pragma: no cover

    async def run_stage(
        self,
        stage: StageConfig,
        url: str,
        hints: tuple[str, ...] = (),
        *,
        deadline: Optional[float] = None,
    ) -> StageResult:
        """Fetch, match and score once. Failures become a non-proceeding result."""
        try:
            fetched = await self.fetcher.fetch(
                url,
                timeout=stage.timeout,
                max_attempts=self.fetch_attempts(stage),
                deadline=deadline,
            )
            options = stage.match_options(hints)
            summary = self.matcher.analyze(fetched.html, fetched.final_url or url, options)
            if summary.denylisted:
                return StageResult(stage=stage.name, summary=summary, status=STATUS_NO_CHATBOT_VERIFIED)

            score = self.calculator.evaluate(summary, advanced=stage.advanced_detection)
            enhanced = bool(
                stage.advanced_detection
                and score.points is not None
                and score.points >= self.calculator.scoring["points_medium"]
            )
            return StageResult(
                stage=stage.name,
                confidence=score.confidence,
                vendors=list(summary.vendors),
                strong_signal=bool(summary.vendors) or enhanced,
                status=", ".join(score.reasons),
                summary=summary,
            )
        except FetchError as exc:
            metrics.record_fetch_error(exc.kind.value)
            return StageResult(
                stage=stage.name,
                status=f"Error in {stage.name} stage",
                error=str(exc),
                error_kind=exc.kind.value,
                retryable=exc.retryable,
            )
        except Exception as exc:
            logger.exception("Unexpected error in %s stage for %s", stage.name, url)
            return StageResult(
                stage=stage.name,
                status=f"Error in {stage.name} stage",
                error=str(exc) or type(exc).__name__,
            )

    def _positive(
        self,
        url: str,
        stage: StageConfig,
        result: StageResult,
        history: list[StageResult],
    ) -> ClassificationResult:
        summary = result.summary
        labels = finalize_labels(result.vendors)
        verification = self.calculator.verification_status(
            result.confidence,
            false_positive=bool(summary and summary.false_positive),
        )
        metrics.record_stage_exit(stage.name)
        logger.info(
            "Chatbot detected on %s at %s stage: %s (confidence %.2f, %s)",
            url,
            stage.name,
            labels,
            result.confidence,
            verification.value,
        )
        return ClassificationResult(
            url=url,
            chat_solutions=labels,
            confidence=result.confidence,
            verification_status=verification,
            status=STATUS_CHATBOT_DETECTED,
            diagnostics=self._diagnostics(history, stage),
        )

    def _error(self, url: str, result: StageResult, history: list[StageResult]) -> ClassificationResult:
        failed = ClassificationResult.error_result(
            url,
            result.status,
            result.error,
            error_kind=result.error_kind,
            retryable=result.retryable,
        )
        failed.diagnostics = {"stages": [item.to_dict() for item in history], "exit_stage": result.stage}
        return failed

    @staticmethod
    def _diagnostics(history: list[StageResult], stage: StageConfig, denylisted: bool = False) -> dict:
        data: dict = {
            "stages": [item.to_dict() for item in history],
            "exit_stage": stage.name,
        }
        last: Optional[MatchSummary] = history[-1].summary if history else None
        if last is not None:
            data["signals"] = last.signals()
            data["smart_indicators"] = list(last.smart.indicators)
            if last.dropped_vendors:
                data["dropped_vendors"] = list(last.dropped_vendors)
        if denylisted:
            data["denylisted"] = True
        return data
