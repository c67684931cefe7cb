"""Result change notifications and polling.

Producers publish insert/update/delete events when a stored result
changes. Consumers either subscribe to the event stream or poll a lookup
function until the row reaches a terminal state.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from ..storage.enums import IN_FLIGHT_PHASES, ChangeKind

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_POLL_MAX_ATTEMPTS = 30


@dataclass
class ResultEvent:
    """A change to one stored result row."""

    kind: ChangeKind
    url: str
    record: dict = field(default_factory=dict)
    sequence: int = 0
    emitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "url": self.url,
            "record": dict(self.record),
            "sequence": self.sequence,
            "emitted_at": self.emitted_at.isoformat(),
        }


class Subscription:
    """An async iterator over events, backed by a bounded queue."""

    def __init__(self, notifier: "ResultNotifier", maxsize: int = 1000):
        self._notifier = notifier
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0
        self.closed = False

    def _offer(self, event: ResultEvent) -> None:
        if self.closed:
            return
        if self.queue.full():
            # Oldest event goes; consumers resync through polling.
            self.queue.get_nowait()
            self.dropped += 1
        self.queue.put_nowait(event)

    async def get(self, timeout: Optional[float] = None) -> ResultEvent:
        if timeout is None:
            return await self.queue.get()
        return await asyncio.wait_for(self.queue.get(), timeout=timeout)

    def close(self) -> None:
        self.closed = True
        self._notifier.unsubscribe(self)

    def __aiter__(self):
        return self

    async def __anext__(self) -> ResultEvent:
        if self.closed and self.queue.empty():
            raise StopAsyncIteration
        return await self.queue.get()


class ResultNotifier:
    """Fan-out of result change events to in-process subscribers."""

    def __init__(self, queue_size: int = 1000):
        self.queue_size = queue_size
        self._subscribers: list[Subscription] = []
        self._sequence = 0

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        subscription = Subscription(self, maxsize=self.queue_size)
        self._subscribers.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)

    def publish(self, kind: ChangeKind | str, url: str, record: Optional[dict] = None) -> ResultEvent:
        self._sequence += 1
        event = ResultEvent(
            kind=ChangeKind(kind),
            url=url,
            record=dict(record or {}),
            sequence=self._sequence,
        )
        for subscription in list(self._subscribers):
            subscription._offer(event)
        logger.debug("Published %s for %s to %s subscribers", event.kind.value, url, len(self._subscribers))
        return event

    async def poll(
        self,
        url: str,
        lookup: Callable[[str], Awaitable[Optional[dict]]],
        *,
        interval: float = DEFAULT_POLL_INTERVAL,
        max_attempts: int = DEFAULT_POLL_MAX_ATTEMPTS,
    ) -> Optional[dict]:
        """Poll ``lookup(url)`` until the row leaves pending/processing.

        Returns the final row, or None if it never settled within
        ``max_attempts``. Safe to call repeatedly for the same URL.
        """
        for attempt in range(max(1, max_attempts)):
            try:
                row = await lookup(url)
            except Exception as exc:
                logger.warning("Poll lookup for %s failed: %s", url, exc)
                row = None
            if row is not None and is_terminal(row):
                return row
            if attempt < max_attempts - 1:
                await asyncio.sleep(interval)
        logger.info("Polling for %s gave up after %s attempts", url, max_attempts)
        return None


def is_terminal(row: dict) -> bool:
    status = str(row.get("status") or "")
    return status not in IN_FLIGHT_PHASES or bool(row.get("error"))


class ResultView:
    """Consumer-side map of url -> row kept current from events.

    Applying the same event twice, or an older event after a newer one,
    leaves the view unchanged.
    """

    def __init__(self):
        self.rows: dict[str, dict] = {}
        self._versions: dict[str, int] = {}

    def apply(self, event: ResultEvent) -> bool:
        """Apply an event; returns True if the view changed."""
        if event.sequence and event.sequence <= self._versions.get(event.url, 0):
            return False
        self._versions[event.url] = event.sequence

        if event.kind == ChangeKind.DELETE:
            return self.rows.pop(event.url, None) is not None

        merged = dict(self.rows.get(event.url, {}))
        merged.update(event.record)
        merged["url"] = event.url
        changed = merged != self.rows.get(event.url)
        self.rows[event.url] = merged
        return changed

    def get(self, url: str) -> Optional[dict]:
        return self.rows.get(url)
