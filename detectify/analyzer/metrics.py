"""Detection metrics tracking.

Records which signatures fire, which vendors get credited and how stages
exit, so thresholds can be tuned from real traffic.
"""

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class PatternMetrics:
    """Metrics for a single pattern."""

    hits: int = 0
    last_hit: Optional[datetime] = None
    hosts: set = field(default_factory=set)

    def record_hit(self, host: str) -> None:
        self.hits += 1
        self.last_hit = datetime.now()
        self.hosts.add(host)


@dataclass
class CategoryMetrics:
    """Metrics for a vendor or signal category."""

    detections: int = 0  # Times the label was credited
    total_hits: int = 0  # Total pattern matches
    last_detection: Optional[datetime] = None
    hosts: set = field(default_factory=set)
    pattern_hits: dict = field(default_factory=dict)

    def record_pattern_hit(self, pattern: str, host: str) -> None:
        self.total_hits += 1
        if pattern not in self.pattern_hits:
            self.pattern_hits[pattern] = PatternMetrics()
        self.pattern_hits[pattern].record_hit(host)

    def record_detection(self, host: str) -> None:
        self.detections += 1
        self.last_detection = datetime.now()
        self.hosts.add(host)


class DetectionMetrics:
    """Thread-safe metrics collector for chatbot detection."""

    _instance: Optional["DetectionMetrics"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "DetectionMetrics":
        """Singleton pattern for global metrics access."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self) -> None:
        if self._initialized:
            return
        self._initialized = True
        self._lock = threading.Lock()
        self._categories: dict[str, CategoryMetrics] = defaultdict(CategoryMetrics)
        self._stage_exits: dict[str, int] = defaultdict(int)
        self._verification: dict[str, int] = defaultdict(int)
        self._fetch_errors: dict[str, int] = defaultdict(int)
        self._total_analyses: int = 0
        self._cache_hits: int = 0
        self._started: datetime = datetime.now()

    def record_pattern_hit(self, label: str, pattern: str, host: str) -> None:
        """Record a signature match."""
        with self._lock:
            self._categories[label].record_pattern_hit(pattern, host)

    def record_vendor_detection(self, vendor: str, host: str) -> None:
        """Record a vendor being credited on a page."""
        with self._lock:
            self._categories[vendor].record_detection(host)

    def record_stage_exit(self, stage: str) -> None:
        with self._lock:
            self._stage_exits[stage] += 1

    def record_fetch_error(self, kind: str) -> None:
        with self._lock:
            self._fetch_errors[kind] += 1

    def record_cache_hit(self) -> None:
        with self._lock:
            self._cache_hits += 1

    def record_verification(self, status: str) -> None:
        """Record a final classification."""
        with self._lock:
            self._verification[status] += 1
            self._total_analyses += 1

    def get_summary(self) -> dict:
        """Get a summary of all metrics."""
        with self._lock:
            uptime = datetime.now() - self._started
            return {
                "uptime_seconds": int(uptime.total_seconds()),
                "total_analyses": self._total_analyses,
                "cache_hits": self._cache_hits,
                "verification": dict(self._verification),
                "stage_exits": dict(self._stage_exits),
                "fetch_errors": dict(self._fetch_errors),
                "labels": {
                    name: {
                        "detections": cat.detections,
                        "total_hits": cat.total_hits,
                        "unique_hosts": len(cat.hosts),
                        "last_detection": (
                            cat.last_detection.isoformat()
                            if cat.last_detection
                            else None
                        ),
                        "top_patterns": self._get_top_patterns(cat, 5),
                    }
                    for name, cat in self._categories.items()
                },
            }

    def _get_top_patterns(self, category: CategoryMetrics, n: int) -> list[dict]:
        """Get top N patterns by hit count."""
        sorted_patterns = sorted(
            category.pattern_hits.items(),
            key=lambda x: x[1].hits,
            reverse=True,
        )[:n]
        return [{"pattern": p[:50], "hits": m.hits} for p, m in sorted_patterns]

    def reset(self) -> None:
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self._categories.clear()
            self._stage_exits.clear()
            self._verification.clear()
            self._fetch_errors.clear()
            self._total_analyses = 0
            self._cache_hits = 0
            self._started = datetime.now()


# Global instance
metrics = DetectionMetrics()
