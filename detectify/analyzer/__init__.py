"""Analyzer modules for Detectify."""

from .confidence import ConfidenceCalculator
from .detector_models import ClassificationResult, VerificationStatus
from .fetcher import FetchError, FetchErrorKind, Fetcher
from .matcher import MatchOptions, PatternMatcher
from .pattern_store import PatternStore

__all__ = [
    "ConfidenceCalculator",
    "ClassificationResult",
    "VerificationStatus",
    "FetchError",
    "FetchErrorKind",
    "Fetcher",
    "MatchOptions",
    "PatternMatcher",
    "PatternStore",
]
