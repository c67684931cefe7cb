"""Tests for result change events and polling."""

from __future__ import annotations

import asyncio

import pytest

from detectify.monitoring.notifier import ResultNotifier, ResultView, is_terminal
from detectify.storage.enums import ChangeKind


class _Lookup:
    """Returns queued rows, one per call; repeats the last one."""

    def __init__(self, *rows):
        self.rows = list(rows)
        self.calls = 0

    async def __call__(self, url):  # noqa: ANN001
        self.calls += 1
        row = self.rows[min(self.calls, len(self.rows)) - 1]
        if isinstance(row, Exception):
            raise row
        return row


class TestNotifier:
    @pytest.mark.asyncio
    async def test_subscribers_receive_events_in_order(self):
        notifier = ResultNotifier()
        subscription = notifier.subscribe()

        notifier.publish(ChangeKind.INSERT, "https://a.example", {"status": "pending"})
        notifier.publish("update", "https://a.example", {"status": "Chatbot detected"})

        first = await subscription.get(timeout=1)
        second = await subscription.get(timeout=1)
        assert (first.kind, second.kind) == (ChangeKind.INSERT, ChangeKind.UPDATE)
        assert second.sequence == first.sequence + 1
        assert second.to_dict()["record"] == {"status": "Chatbot detected"}

    def test_full_queue_drops_oldest(self):
        notifier = ResultNotifier(queue_size=2)
        subscription = notifier.subscribe()

        for i in range(3):
            notifier.publish(ChangeKind.UPDATE, f"https://{i}.example")

        assert subscription.dropped == 1
        assert subscription.queue.get_nowait().url == "https://1.example"

    def test_closed_subscription_stops_receiving(self):
        notifier = ResultNotifier()
        subscription = notifier.subscribe()
        subscription.close()

        notifier.publish(ChangeKind.UPDATE, "https://a.example")

        assert notifier.subscriber_count == 0
        assert subscription.queue.empty()

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValueError):
            ResultNotifier().publish("upsert", "https://a.example")


class TestPolling:
    def test_terminal_states(self):
        assert not is_terminal({"status": "pending"})
        assert not is_terminal({"status": "processing"})
        assert is_terminal({"status": "processing", "error": "timed out"})
        assert is_terminal({"status": "Chatbot detected"})

    @pytest.mark.asyncio
    async def test_poll_until_terminal(self):
        lookup = _Lookup(None, {"status": "pending"}, {"status": "processing"}, {"status": "No chatbot detected"})
        row = await ResultNotifier().poll("https://a.example", lookup, interval=0, max_attempts=10)

        assert row == {"status": "No chatbot detected"}
        assert lookup.calls == 4

    @pytest.mark.asyncio
    async def test_poll_gives_up(self):
        lookup = _Lookup({"status": "processing"})
        row = await ResultNotifier().poll("https://a.example", lookup, interval=0, max_attempts=3)

        assert row is None
        assert lookup.calls == 3

    @pytest.mark.asyncio
    async def test_poll_survives_lookup_errors(self):
        lookup = _Lookup(RuntimeError("db busy"), {"status": "Chatbot detected"})
        row = await ResultNotifier().poll("https://a.example", lookup, interval=0, max_attempts=3)
        assert row["status"] == "Chatbot detected"

    @pytest.mark.asyncio
    async def test_concurrent_polls_are_independent(self):
        notifier = ResultNotifier()
        lookup = _Lookup({"status": "Chatbot detected"})
        rows = await asyncio.gather(
            notifier.poll("https://a.example", lookup, interval=0),
            notifier.poll("https://a.example", lookup, interval=0),
        )
        assert rows[0] == rows[1]


class TestResultView:
    def test_replayed_event_is_ignored(self):
        notifier = ResultNotifier()
        view = ResultView()
        event = notifier.publish(ChangeKind.INSERT, "https://a.example", {"status": "pending"})

        assert view.apply(event)
        assert not view.apply(event)
        assert view.get("https://a.example") == {"status": "pending", "url": "https://a.example"}

    def test_out_of_order_event_is_ignored(self):
        notifier = ResultNotifier()
        view = ResultView()
        older = notifier.publish(ChangeKind.UPDATE, "https://a.example", {"status": "processing"})
        newer = notifier.publish(ChangeKind.UPDATE, "https://a.example", {"status": "Chatbot detected"})

        view.apply(newer)
        assert not view.apply(older)
        assert view.get("https://a.example")["status"] == "Chatbot detected"

    def test_delete_removes_row(self):
        notifier = ResultNotifier()
        view = ResultView()
        view.apply(notifier.publish(ChangeKind.INSERT, "https://a.example", {"status": "pending"}))
        assert view.apply(notifier.publish(ChangeKind.DELETE, "https://a.example"))
        assert view.get("https://a.example") is None
