"""Stage definitions for the staged detection pipeline."""

from __future__ import annotations

from dataclasses import dataclass

from ..analyzer.matcher import MatchOptions


@dataclass(frozen=True)
class StageConfig:
    """One pass of the pipeline: what to look for and how long to wait."""

    name: str
    threshold: float
    timeout: float
    smart_detection: bool = True
    advanced_detection: bool = False
    deep_verification: bool = False
    check_functionality: bool = False
    detect_hidden: bool = False
    retry_failures: bool = False

    def match_options(self, vendor_hints: tuple[str, ...] = ()) -> MatchOptions:
        return MatchOptions(
            advanced=self.advanced_detection,
            deep_verification=self.deep_verification,
            functional=self.check_functionality,
            hidden=self.detect_hidden,
            vendor_hints=vendor_hints,
        )


DEFAULT_STAGES: tuple[StageConfig, ...] = (
    StageConfig("initial", threshold=0.1, timeout=8.0),
    StageConfig("provider", threshold=0.3, timeout=12.0, advanced_detection=True),
    StageConfig(
        "verification",
        threshold=0.5,
        timeout=15.0,
        advanced_detection=True,
        deep_verification=True,
    ),
    StageConfig(
        "functional",
        threshold=0.8,
        timeout=18.0,
        advanced_detection=True,
        deep_verification=True,
        check_functionality=True,
        detect_hidden=True,
        retry_failures=True,
    ),
)

# Any stage reaching this confidence ends the pipeline with a positive result.
FINALIZE_CONFIDENCE = 0.6
