"""Tests for batch analysis."""

from __future__ import annotations

import asyncio

import pytest

from detectify.analyzer.detector import ChatbotDetector
from detectify.analyzer.detector_models import ClassificationResult, VerificationStatus
from detectify.analyzer.fetcher import FetchResult
from detectify.analyzer.heuristic_fallback import HeuristicFallbackDetector
from detectify.cache import ResultCache
from detectify.monitoring.notifier import ResultNotifier
from detectify.pipeline.batch import BatchAnalyzer, BatchReport
from detectify.storage.database import Database
from detectify.storage.enums import ChangeKind


class _FakeDetector:
    """Records calls; per-URL behaviour comes from ``outcomes``."""

    def __init__(self, outcomes=None, cache=None):  # noqa: ANN001
        self.outcomes = outcomes or {}
        self.cache = cache
        self.calls: list[tuple[str, bool]] = []
        self.active = 0
        self.max_active = 0
        self.gate: asyncio.Event | None = None

    async def detect(self, url, *, force=False, deadline=None):  # noqa: ANN001
        self.calls.append((url, force))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(0)
            if self.gate is not None:
                await self.gate.wait()
            outcome = self.outcomes.get(url, "negative")
            if isinstance(outcome, BaseException):
                raise outcome
            if outcome == "positive":
                return ClassificationResult(
                    url=url,
                    chat_solutions=["Intercom"],
                    confidence=0.9,
                    verification_status=VerificationStatus.VERIFIED,
                    status="Chatbot detected",
                )
            if outcome == "failed":
                return ClassificationResult.error_result(url, "Error in initial stage", "timed out")
            return ClassificationResult(
                url=url,
                confidence=0.05,
                verification_status=VerificationStatus.VERIFIED,
                status="No chatbot detected",
            )
        finally:
            self.active -= 1


URLS = [f"https://site{i}.example" for i in range(1, 6)]


class TestBatchReport:
    def test_counts(self):
        report = BatchReport(
            results=[
                ClassificationResult(url="a", chat_solutions=["Drift"]),
                ClassificationResult(url="b"),
                ClassificationResult.error_result("c", "Error"),
            ]
        )
        assert report.summary() == {
            "total": 3,
            "succeeded": 2,
            "failed": 1,
            "detected": 1,
            "partial": True,
            "cancelled": False,
        }

    def test_all_failed_is_not_partial(self):
        report = BatchReport(results=[ClassificationResult.error_result("a", "Error")])
        assert not report.partial


class TestBatchAnalyzer:
    def test_rejects_empty_groups(self):
        with pytest.raises(ValueError):
            BatchAnalyzer(_FakeDetector(), batch_size=0)

    @pytest.mark.asyncio
    async def test_one_failure_does_not_fail_the_batch(self):
        detector = _FakeDetector(
            {
                URLS[0]: "positive",
                URLS[2]: RuntimeError("boom"),
                URLS[3]: "failed",
            }
        )
        analyzer = BatchAnalyzer(detector, batch_delay=0)

        report = await analyzer.analyze(URLS)

        assert [r.url for r in report.results] == URLS
        assert report.results[2].status == "Error: boom"
        assert report.results[2].verification_status == VerificationStatus.UNKNOWN
        assert report.total == 5
        assert report.failed == 2
        assert report.detected == 1
        assert report.partial

    @pytest.mark.asyncio
    async def test_groups_bound_concurrency_and_pause_between_them(self, monkeypatch):
        delays: list[float] = []
        real_sleep = asyncio.sleep

        async def _sleep(delay, *args, **kwargs):  # noqa: ANN001
            if delay:
                delays.append(delay)
            await real_sleep(0)

        monkeypatch.setattr("detectify.pipeline.batch.asyncio.sleep", _sleep)
        detector = _FakeDetector()
        analyzer = BatchAnalyzer(detector, batch_size=2, batch_delay=1.5)

        await analyzer.analyze(URLS)

        assert detector.max_active == 2
        assert delays == [1.5, 1.5]

    @pytest.mark.asyncio
    async def test_empty_input(self):
        report = await BatchAnalyzer(_FakeDetector()).analyze([])
        assert report.total == 0
        assert not report.partial

    @pytest.mark.asyncio
    async def test_urls_marked_pending_up_front(self):
        notifier = ResultNotifier()
        subscription = notifier.subscribe()
        detector = _FakeDetector(cache=ResultCache(notifier=notifier))

        await BatchAnalyzer(detector, batch_delay=0).analyze(URLS[:2])

        first = [subscription.queue.get_nowait() for _ in range(2)]
        assert [e.record["status"] for e in first] == ["pending", "pending"]
        assert all(e.kind == ChangeKind.UPDATE for e in first)

    @pytest.mark.asyncio
    async def test_fallback_runs_when_everything_is_negative(self):
        urls = ["https://example-livechat.example", "https://plain.example"]
        analyzer = BatchAnalyzer(_FakeDetector(), batch_delay=0, fallback=HeuristicFallbackDetector())

        report = await analyzer.analyze(urls)

        assert report.results[0].chat_solutions == ["Likely Website Chatbot"]
        assert report.results[0].verification_status == VerificationStatus.LIKELY
        assert not report.results[1].has_chatbot

    @pytest.mark.asyncio
    async def test_fallback_uses_titles_keyed_by_input_url(self):
        analyzer = BatchAnalyzer(_FakeDetector(), batch_delay=0, fallback=HeuristicFallbackDetector())

        report = await analyzer.analyze(
            ["https://acme.example"],
            titles={"acme.example": "Message our team"},
        )

        assert report.results[0].verification_status == VerificationStatus.LIKELY

    @pytest.mark.asyncio
    async def test_fallback_skipped_when_something_detected(self):
        urls = ["https://livechat.example", "https://plain.example"]
        detector = _FakeDetector({urls[1]: "positive"})
        analyzer = BatchAnalyzer(detector, batch_delay=0, fallback=HeuristicFallbackDetector())

        report = await analyzer.analyze(urls)

        assert not report.results[0].has_chatbot

    @pytest.mark.asyncio
    async def test_retry_url_forces_fresh_detection(self):
        detector = _FakeDetector()
        await BatchAnalyzer(detector).retry_url(URLS[0])
        assert detector.calls == [(URLS[0], True)]

    @pytest.mark.asyncio
    async def test_cancel_marks_remaining_urls(self):
        detector = _FakeDetector()
        detector.gate = asyncio.Event()
        analyzer = BatchAnalyzer(detector, batch_size=2, batch_delay=0)

        running = asyncio.ensure_future(analyzer.analyze(URLS))
        for _ in range(5):
            await asyncio.sleep(0)
        assert analyzer.cancel() == 2
        report = await running

        assert report.cancelled
        assert report.total == 5
        assert all(r.status == "Cancelled" for r in report.results)
        assert len(detector.calls) == 2


DRIFT_HTML = '<html><head><script src="https://js.driftt.com/include/123/abc.js"></script></head></html>'


class _PageFetcher:
    max_attempts = 3

    def __init__(self):
        self.calls: list[str] = []

    async def fetch(self, url, *, timeout=None, max_attempts=None, deadline=None):  # noqa: ANN001
        self.calls.append(url)
        return FetchResult(html=DRIFT_HTML, final_url=url, status_code=200)


def make_stored_analyzer(db: Database, fetcher: _PageFetcher) -> BatchAnalyzer:
    detector = ChatbotDetector(fetcher, cache=ResultCache(database=db), retry_delay=0)
    return BatchAnalyzer(detector, batch_delay=0)


class TestBatchWithStoredResults:
    @pytest.mark.asyncio
    async def test_repeat_batch_leaves_stored_row_completed(self, tmp_path):
        db = Database(tmp_path / "detectify.db")
        await db.connect()
        try:
            fetcher = _PageFetcher()
            analyzer = make_stored_analyzer(db, fetcher)

            await analyzer.analyze(["https://a.example"])
            fetched = len(fetcher.calls)
            report = await analyzer.analyze(["https://a.example"])

            assert len(fetcher.calls) == fetched
            assert report.results[0].chat_solutions == ["Drift"]
            row = await db.get_result("https://a.example")
            assert row["status"] == "Chatbot detected"
            assert await ResultCache(database=db).get("https://a.example") is not None
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_batch_after_restart_uses_stored_results(self, tmp_path):
        db = Database(tmp_path / "detectify.db")
        await db.connect()
        try:
            await make_stored_analyzer(db, _PageFetcher()).analyze(["https://a.example"])

            fetcher = _PageFetcher()
            report = await make_stored_analyzer(db, fetcher).analyze(["https://a.example"])

            assert fetcher.calls == []
            assert report.results[0].has_chatbot
            row = await db.get_result("https://a.example")
            assert row["status"] == "Chatbot detected"
        finally:
            await db.close()
