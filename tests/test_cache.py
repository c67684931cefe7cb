"""Tests for the result cache (memory + SQLite)."""

from __future__ import annotations

from pathlib import Path

import pytest

from detectify.analyzer.detector_models import ClassificationResult, VerificationStatus
from detectify.cache import ResultCache, cache_key
from detectify.monitoring.notifier import ResultNotifier
from detectify.storage.database import Database
from detectify.storage.enums import ChangeKind, ResultPhase


class _Clock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class _BrokenDatabase:
    """Every call fails like a locked or missing SQLite file."""

    async def get_result(self, url):  # noqa: ANN001
        raise RuntimeError("database is locked")

    async def upsert_result(self, record):  # noqa: ANN001
        raise RuntimeError("database is locked")

    async def set_status(self, url, status, error=None):  # noqa: ANN001
        raise RuntimeError("database is locked")

    async def delete_result(self, url):  # noqa: ANN001
        raise RuntimeError("database is locked")

    async def clear_results(self):
        raise RuntimeError("database is locked")


def make_result(url: str = "https://example.com", solutions=("Drift",), **kwargs) -> ClassificationResult:
    kwargs.setdefault("confidence", 0.7)
    kwargs.setdefault("verification_status", VerificationStatus.UNVERIFIED)
    kwargs.setdefault("status", "Chatbot detected" if solutions else "No chatbot detected")
    return ClassificationResult(url=url, chat_solutions=list(solutions), **kwargs)


async def _open_db(tmp_path: Path) -> Database:
    db = Database(tmp_path / "detectify.db")
    await db.connect()
    return db


def _drain(subscription) -> list:  # noqa: ANN001
    events = []
    while not subscription.queue.empty():
        events.append(subscription.queue.get_nowait())
    return events


def test_cache_key_normalizes():
    assert cache_key("Example.com/") == "https://example.com"
    assert cache_key("  ") == ""


class TestMemoryCache:
    @pytest.mark.asyncio
    async def test_put_then_get(self):
        cache = ResultCache()
        result = make_result()
        await cache.put(result)

        cached = await cache.get("example.com")
        assert cached is result
        assert cache.stats()["hits"] == 1

    @pytest.mark.asyncio
    async def test_entries_expire_after_ttl(self):
        clock = _Clock()
        cache = ResultCache(ttl_seconds=24 * 3600, clock=clock)
        await cache.put(make_result())

        clock.now += 24 * 3600 - 1
        assert await cache.get("https://example.com") is not None

        clock.now += 1
        assert await cache.get("https://example.com") is None
        assert cache.stats()["entries"] == 0

    @pytest.mark.asyncio
    async def test_last_write_wins(self):
        cache = ResultCache()
        await cache.put(make_result(solutions=("Drift",)))
        await cache.put(make_result(solutions=()))

        cached = await cache.get("https://example.com")
        assert not cached.has_chatbot

    @pytest.mark.asyncio
    async def test_failure_is_not_a_hit(self):
        cache = ResultCache()
        await cache.put(make_result())
        await cache.record_failure(ClassificationResult.error_result("https://example.com", "Error in initial stage"))

        assert await cache.get("https://example.com") is None
        assert cache.stats()["misses"] == 1

    @pytest.mark.asyncio
    async def test_put_stamps_last_checked(self):
        clock = _Clock()
        cache = ResultCache(clock=clock)
        result = make_result()
        await cache.put(result)
        assert result.last_checked.timestamp() == clock.now


class TestChangeEvents:
    @pytest.mark.asyncio
    async def test_insert_then_update(self):
        notifier = ResultNotifier()
        subscription = notifier.subscribe()
        cache = ResultCache(notifier=notifier)

        await cache.put(make_result())
        await cache.put(make_result(solutions=()))

        events = _drain(subscription)
        assert [e.kind for e in events] == [ChangeKind.INSERT, ChangeKind.UPDATE]
        assert events[0].record["has_chatbot"] is True
        assert events[1].record["has_chatbot"] is False
        assert events[0].sequence < events[1].sequence

    @pytest.mark.asyncio
    async def test_status_and_delete_events(self):
        notifier = ResultNotifier()
        subscription = notifier.subscribe()
        cache = ResultCache(notifier=notifier)

        await cache.mark_status("https://example.com", ResultPhase.PROCESSING)
        await cache.put(make_result())
        assert await cache.delete("https://example.com")
        assert not await cache.delete("https://example.com")

        events = _drain(subscription)
        assert events[0].record == {"url": "https://example.com", "status": "processing"}
        assert events[-1].kind == ChangeKind.DELETE
        assert len(events) == 3


class TestPersistentCache:
    @pytest.mark.asyncio
    async def test_results_survive_a_new_cache(self, tmp_path):
        db = await _open_db(tmp_path)
        try:
            await ResultCache(database=db).put(make_result())

            fresh = ResultCache(database=db)
            cached = await fresh.get("https://example.com")
            assert cached is not None
            assert cached.chat_solutions == ["Drift"]
            assert cached.verification_status == VerificationStatus.UNVERIFIED
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_stale_rows_are_ignored(self, tmp_path):
        db = await _open_db(tmp_path)
        try:
            clock = _Clock()
            await ResultCache(database=db, clock=clock).put(make_result())

            clock.now += 25 * 3600
            assert await ResultCache(database=db, clock=clock).get("https://example.com") is None
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_in_flight_rows_are_not_hits(self, tmp_path):
        db = await _open_db(tmp_path)
        try:
            cache = ResultCache(database=db)
            await cache.mark_status("https://example.com", ResultPhase.PENDING)

            assert await cache.get("https://example.com") is None
            row = await cache.lookup("https://example.com")
            assert row["status"] == "pending"
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_memory_hit_restores_row_left_pending(self, tmp_path):
        db = await _open_db(tmp_path)
        try:
            cache = ResultCache(database=db)
            await cache.put(make_result())
            await db.set_status("https://example.com", ResultPhase.PENDING)

            assert await cache.get("https://example.com") is not None

            row = await db.get_result("https://example.com")
            assert row["status"] == "Chatbot detected"
            assert await ResultCache(database=db).get("https://example.com") is not None
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_contains_does_not_count(self, tmp_path):
        db = await _open_db(tmp_path)
        try:
            await ResultCache(database=db).put(make_result())
            cache = ResultCache(database=db)

            assert await cache.contains("example.com")
            assert not await cache.contains("https://other.example")
            assert cache.stats()["hits"] == 0
            assert cache.stats()["misses"] == 0
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_database_insert_then_update_events(self, tmp_path):
        db = await _open_db(tmp_path)
        try:
            notifier = ResultNotifier()
            subscription = notifier.subscribe()
            cache = ResultCache(database=db, notifier=notifier)

            await cache.mark_status("https://example.com", ResultPhase.PROCESSING)
            await cache.put(make_result())

            kinds = [e.kind for e in _drain(subscription)]
            assert kinds == [ChangeKind.INSERT, ChangeKind.UPDATE]
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_failed_rows_are_persisted_but_not_hits(self, tmp_path):
        db = await _open_db(tmp_path)
        try:
            cache = ResultCache(database=db)
            failed = ClassificationResult.error_result(
                "https://example.com", "Error in initial stage", "timed out"
            )
            await cache.record_failure(failed)

            assert await cache.get("https://example.com") is None
            row = await db.get_result("https://example.com")
            assert row["error"] == "timed out"
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_storage_failures_are_swallowed(self):
        cache = ResultCache(database=_BrokenDatabase())
        result = make_result()

        await cache.mark_status("https://example.com", ResultPhase.PROCESSING)
        await cache.put(result)
        assert await cache.get("https://example.com") is result
        await cache.delete("https://example.com")
        await cache.clear()

        assert cache.stats()["persist_errors"] == 4
