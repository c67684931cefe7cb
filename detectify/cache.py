"""Result cache for Detectify.

Classifications are kept in memory and, when a database is attached,
persisted to the analysis_results table. Both layers share one validity
window (24 hours by default): older entries are treated as absent.

Persistence failures are logged and swallowed so a broken store never
turns a finished detection into an error.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from .analyzer.detector_models import ClassificationResult
from .monitoring.notifier import ResultNotifier
from .storage.database import Database
from .storage.enums import IN_FLIGHT_PHASES, ChangeKind, ResultPhase
from .utils.domains import InvalidURLError, normalize_url

logger = logging.getLogger(__name__)

DEFAULT_RESULT_TTL_SECONDS = 24 * 60 * 60


class CacheEntry:
    """Represents a cached value with timestamp."""

    __slots__ = ("value", "timestamp")

    def __init__(self, value: ClassificationResult, timestamp: float):
        self.value = value
        self.timestamp = timestamp

    def is_expired(self, ttl_seconds: float, now: float) -> bool:
        return now - self.timestamp >= ttl_seconds


def cache_key(url: str) -> str:
    try:
        return normalize_url(url)
    except InvalidURLError:
        return (url or "").strip()


class ResultCache:
    """
    URL-keyed classification cache backed by memory and (optionally) SQLite.

    Usage:
        cache = ResultCache(database=db, notifier=notifier)
        await cache.put(result)
        cached = await cache.get("https://example.com")
    """

    def __init__(
        self,
        database: Optional[Database] = None,
        notifier: Optional[ResultNotifier] = None,
        ttl_seconds: float = DEFAULT_RESULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.database = database
        self.notifier = notifier
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._memory: Dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0
        self._persist_errors = 0

    def _is_fresh(self, checked_at: datetime) -> bool:
        age = self._clock() - checked_at.timestamp()
        return age < self.ttl_seconds

    async def get(self, url: str) -> Optional[ClassificationResult]:
        """Return a result younger than the TTL, else None."""
        key = cache_key(url)

        result = self._memory_result(key)
        if result is not None:
            self._hits += 1
            logger.debug("Cache hit (memory) for %s", key)
            await self._restore_row(key, result)
            return result

        result = await self._stored_result(key)
        if result is not None:
            self._hits += 1
            logger.debug("Cache hit (database) for %s", key)
            return result

        self._misses += 1
        return None

    async def contains(self, url: str) -> bool:
        """True when ``get`` would hit. Does not touch hit/miss counters."""
        key = cache_key(url)
        if self._memory_result(key) is not None:
            return True
        return await self._stored_result(key) is not None

    def _memory_result(self, key: str) -> Optional[ClassificationResult]:
        entry = self._memory.get(key)
        if entry is None:
            return None
        if entry.is_expired(self.ttl_seconds, self._clock()):
            del self._memory[key]
            return None
        return entry.value

    async def _stored_result(self, key: str) -> Optional[ClassificationResult]:
        row = await self._load_row(key)
        if row is None or row.get("error") or row.get("status") in IN_FLIGHT_PHASES:
            return None
        result = ClassificationResult.from_record(row)
        if not self._is_fresh(result.last_checked):
            return None
        self._memory[key] = CacheEntry(result, result.last_checked.timestamp())
        return result

    async def _restore_row(self, key: str, result: ClassificationResult) -> None:
        """Rewrite a stored row left pending/processing behind a memory hit."""
        if self.database is None:
            return
        row = await self._load_row(key)
        if row is None or row.get("error") or row.get("status") not in IN_FLIGHT_PHASES:
            return
        record = result.to_record()
        record["url"] = key
        await self._persist(key, record)
        logger.info("Restored %s row for %s from cache", row.get("status"), key)
        self._publish(ChangeKind.UPDATE, key, record)

    async def put(self, result: ClassificationResult) -> None:
        """Store a successful classification; last write wins."""
        key = cache_key(result.url)
        existed = key in self._memory
        result.last_checked = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        self._memory[key] = CacheEntry(result, self._clock())

        record = result.to_record()
        record["url"] = key
        inserted = await self._persist(key, record, default=not existed)
        self._publish(ChangeKind.INSERT if inserted else ChangeKind.UPDATE, key, record)

    async def record_failure(self, result: ClassificationResult) -> None:
        """Persist a failed detection without making it a cache hit."""
        key = cache_key(result.url)
        self._memory.pop(key, None)
        record = result.to_record()
        record["url"] = key
        inserted = await self._persist(key, record)
        self._publish(ChangeKind.INSERT if inserted else ChangeKind.UPDATE, key, record)

    async def mark_status(self, url: str, status: ResultPhase | str) -> None:
        """Expose an in-flight phase (pending/processing) to pollers."""
        key = cache_key(url)
        status_value = status.value if isinstance(status, ResultPhase) else str(status)
        inserted = False
        if self.database is not None:
            try:
                inserted = await self.database.set_status(key, status_value)
            except Exception as exc:
                self._persist_errors += 1
                logger.warning("Failed to record status for %s: %s", key, exc)
        self._publish(ChangeKind.INSERT if inserted else ChangeKind.UPDATE, key, {"url": key, "status": status_value})

    async def delete(self, url: str) -> bool:
        key = cache_key(url)
        removed = self._memory.pop(key, None) is not None
        if self.database is not None:
            try:
                removed = await self.database.delete_result(key) or removed
            except Exception as exc:
                self._persist_errors += 1
                logger.warning("Failed to delete stored result for %s: %s", key, exc)
        if removed:
            self._publish(ChangeKind.DELETE, key, {"url": key})
        return removed

    async def clear(self) -> None:
        self._memory.clear()
        if self.database is not None:
            try:
                await self.database.clear_results()
            except Exception as exc:
                self._persist_errors += 1
                logger.warning("Failed to clear stored results: %s", exc)

    async def lookup(self, url: str) -> Optional[dict]:
        """Raw stored row (any phase) for pollers."""
        key = cache_key(url)
        row = await self._load_row(key)
        if row is not None:
            return row
        entry = self._memory.get(key)
        return entry.value.to_record() if entry else None

    def stats(self) -> dict:
        return {
            "entries": len(self._memory),
            "hits": self._hits,
            "misses": self._misses,
            "persist_errors": self._persist_errors,
            "ttl_seconds": self.ttl_seconds,
            "persistent": self.database is not None,
        }

    async def _load_row(self, key: str) -> Optional[dict]:
        if self.database is None:
            return None
        try:
            return await self.database.get_result(key)
        except Exception as exc:
            logger.warning("Failed to read stored result for %s: %s", key, exc)
            return None

    async def _persist(self, key: str, record: dict, default: bool = False) -> bool:
        if self.database is None:
            return default
        try:
            return await self.database.upsert_result(record)
        except Exception as exc:
            self._persist_errors += 1
            logger.warning("Failed to persist result for %s: %s", key, exc)
            return default

    def _publish(self, kind: ChangeKind, key: str, record: dict) -> None:
        if self.notifier is not None:
            self.notifier.publish(kind, key, record)
