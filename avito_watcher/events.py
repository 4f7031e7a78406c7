"""Status and message events plus the fan-out sink that delivers them.

Every component reports through one ``EventSink``. The sink keeps the most
recent events for late subscribers and mirrors status events to ``logging``.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Union

from avito_watcher.utils.timestamps import now_iso

logger = logging.getLogger(__name__)

STATUS_LEVELS = {
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}

# Per-subscriber queue bound; the oldest events are dropped past it.
SUBSCRIBER_BACKLOG = 1000


@dataclass(frozen=True)
class StatusEvent:
    level: str
    message: str
    at: str = field(default_factory=now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {"type": "status", "level": self.level, "message": self.message, "at": self.at}


@dataclass(frozen=True)
class MessageEvent:
    sender: str
    text: str
    at: str = field(default_factory=now_iso)

    @property
    def fingerprint(self) -> str:
        return f"{self.sender}|{self.text}".strip()

    def to_dict(self) -> dict[str, Any]:
        return {"type": "message", "from": self.sender, "text": self.text, "at": self.at}


Event = Union[StatusEvent, MessageEvent]


class Subscription:
    """Live view of the sink for one consumer.

    Iterate with ``async for``; iteration ends after ``close()``. A consumer
    that falls more than ``maxsize`` events behind loses the oldest ones;
    ``dropped`` counts them.
    """

    _CLOSED = object()

    def __init__(self, sink: EventSink, backlog: list[Event], maxsize: int = SUBSCRIBER_BACKLOG):
        self._sink = sink
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max(1, maxsize))
        self.closed = False
        self.dropped = 0
        for event in backlog:
            self._put(event)

    def _put(self, item: Any) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(item)

    def _push(self, event: Event) -> None:
        if not self.closed:
            self._put(event)

    def pending(self) -> int:
        return self._queue.qsize()

    def get_nowait(self) -> Event | None:
        """Return the next queued event, or None if nothing is waiting."""
        try:
            item = self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None
        return None if item is self._CLOSED else item

    async def get(self) -> Event | None:
        item = await self._queue.get()
        return None if item is self._CLOSED else item

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._sink._unsubscribe(self)
        self._put(self._CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self) -> Event:
        item = await self._queue.get()
        if item is self._CLOSED:
            raise StopAsyncIteration
        return item


class EventSink:
    """Ordered fan-out of events with a bounded replay buffer."""

    def __init__(self, replay_size: int = 50, subscriber_backlog: int = SUBSCRIBER_BACKLOG):
        self._replay: deque[Event] = deque(maxlen=max(1, replay_size))
        self._subscriber_backlog = subscriber_backlog
        self._subscribers: list[Subscription] = []

    def emit(self, event: Event) -> None:
        """Record ``event`` and hand it to every subscriber. Never raises."""
        self._replay.append(event)

        if isinstance(event, StatusEvent):
            logger.log(STATUS_LEVELS.get(event.level, logging.INFO), event.message)

        for subscription in list(self._subscribers):
            try:
                subscription._push(event)
            except Exception:
                logger.exception("Dropping subscriber after delivery failure")
                self._unsubscribe(subscription)

    def status(self, level: str, message: str) -> StatusEvent:
        if level not in STATUS_LEVELS:
            level = "info"
        event = StatusEvent(level=level, message=message)
        self.emit(event)
        return event

    def message(self, sender: str, text: str, at: str | None = None) -> MessageEvent:
        event = MessageEvent(sender=sender, text=text, at=at or now_iso())
        self.emit(event)
        return event

    def subscribe(self) -> Subscription:
        """Attach a subscriber that first receives the replay snapshot."""
        subscription = Subscription(self, list(self._replay), self._subscriber_backlog)
        self._subscribers.append(subscription)
        return subscription

    def recent(self, limit: int | None = None) -> list[Event]:
        events = list(self._replay)
        if limit is not None:
            events = events[-limit:] if limit > 0 else []
        return events

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def _unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)
