"""Pattern library loader with time-based refresh."""

from __future__ import annotations

import logging
import re
import time
from pathlib import Path
from typing import Callable, Iterable, Optional

import yaml

from .patterns import (
    CATEGORY_FALSE_POSITIVE,
    PatternLibrary,
    PatternSignature,
    PatternTier,
    PatternType,
    build_default_signatures,
)
from ..constants import DEFAULT_FALSE_POSITIVE_DOMAINS

logger = logging.getLogger(__name__)

DEFAULT_PATTERN_TTL_SECONDS = 300


class PatternStore:
    """Loads the pattern library and refreshes it once it goes stale.

    The built-in library is always the base; ``patterns.yaml`` (optional)
    adds vendor patterns, deny-listed domains and false-positive content,
    or disables vendors.
    """

    def __init__(
        self,
        patterns_file: Optional[Path] = None,
        ttl_seconds: float = DEFAULT_PATTERN_TTL_SECONDS,
        extra_false_positive_domains: Iterable[str] = (),
        clock: Callable[[], float] = time.monotonic,
    ):
        self.patterns_file = Path(patterns_file) if patterns_file else None
        self.ttl_seconds = ttl_seconds
        self.extra_false_positive_domains = tuple(extra_false_positive_domains)
        self._clock = clock
        self._library: Optional[PatternLibrary] = None
        self.loaded_at: Optional[float] = None

    def load(self) -> PatternLibrary:
        """Build a fresh library from defaults plus the override file."""
        signatures = list(build_default_signatures())
        fp_domains: list[str] = list(DEFAULT_FALSE_POSITIVE_DOMAINS)
        fp_domains.extend(d.lower() for d in self.extra_false_positive_domains if d)
        generic_min_hits = 2
        version = "builtin"

        data = self._read_overrides()
        if data:
            version = str(data.get("version") or "custom")

            disabled = {str(v).strip() for v in data.get("disabled_vendors") or [] if str(v).strip()}
            if disabled:
                signatures = [sig for sig in signatures if sig.label not in disabled]

            for vendor, patterns in (data.get("vendors") or {}).items():
                vendor = str(vendor).strip()
                if not vendor:
                    continue
                for pattern in patterns or []:
                    sig = self._coerce_signature(vendor, pattern, PatternType.SCRIPT_REFERENCE)
                    if sig:
                        signatures.append(sig)

            for pattern in data.get("false_positive_content") or []:
                sig = self._coerce_signature(CATEGORY_FALSE_POSITIVE, pattern, PatternType.FALSE_POSITIVE)
                if sig:
                    signatures.append(sig)

            for domain in data.get("false_positive_domains") or []:
                domain = str(domain or "").strip().lower()
                if domain:
                    fp_domains.append(domain)

            try:
                generic_min_hits = max(1, int(data.get("generic_min_hits", generic_min_hits)))
            except (TypeError, ValueError):
                logger.warning("Ignoring invalid generic_min_hits in %s", self.patterns_file)

        library = PatternLibrary(
            signatures=tuple(_dedupe(signatures)),
            false_positive_domains=tuple(dict.fromkeys(fp_domains)),
            generic_min_hits=generic_min_hits,
            generic_min_hits_suppressed=generic_min_hits + 1,
            version=version,
        )
        self._library = library
        self.loaded_at = self._clock()
        logger.info(
            "Loaded pattern library %s (%s signatures, %s vendors, %s deny-listed domains)",
            library.version,
            len(library.signatures),
            len(library.vendors),
            len(library.false_positive_domains),
        )
        return library

    def _read_overrides(self) -> dict:
        if not self.patterns_file or not self.patterns_file.exists():
            return {}
        try:
            data = yaml.safe_load(self.patterns_file.read_text()) or {}
        except Exception as exc:
            logger.warning("Failed to parse %s: %s", self.patterns_file, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring %s: expected a mapping", self.patterns_file)
            return {}
        return data

    @staticmethod
    def _coerce_signature(label: str, raw, pattern_type: PatternType) -> Optional[PatternSignature]:
        pattern = str(raw or "").strip()
        if not pattern:
            return None
        try:
            re.compile(pattern)
        except re.error as exc:
            logger.warning("Skipping invalid pattern %r for %s: %s", pattern, label, exc)
            return None
        return PatternSignature(label, pattern, pattern_type, PatternTier.BASIC)

    def is_stale(self) -> bool:
        if self._library is None or self.loaded_at is None:
            return True
        return self._clock() - self.loaded_at >= self.ttl_seconds

    def ensure_fresh(self) -> PatternLibrary:
        """Return the current library, reloading it if the TTL has passed."""
        if self.is_stale():
            try:
                return self.load()
            except Exception as exc:
                if self._library is None:
                    raise
                logger.warning("Pattern refresh failed, keeping previous library: %s", exc)
                self.loaded_at = self._clock()
        return self._library

    def get(self) -> PatternLibrary:
        return self.ensure_fresh()

    def reload(self) -> PatternLibrary:
        """Force reload from file."""
        self._library = None
        return self.load()


def _dedupe(signatures: list[PatternSignature]) -> list[PatternSignature]:
    seen: set[tuple[str, str, str]] = set()
    result: list[PatternSignature] = []
    for sig in signatures:
        key = (sig.label, sig.pattern, sig.tier.value)
        if key in seen:
            continue
        seen.add(key)
        result.append(sig)
    return result
