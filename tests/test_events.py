"""Tests for events and the event sink."""

from __future__ import annotations

import logging

import pytest

from avito_watcher.events import EventSink, MessageEvent, StatusEvent

# ── Event shapes ────────────────────────────────────────────────────


class TestEventShapes:
    def test_status_wire_shape(self) -> None:
        event = StatusEvent("warn", "Login required", "2026-02-01T10:00:00.000Z")
        assert event.to_dict() == {
            "type": "status",
            "level": "warn",
            "message": "Login required",
            "at": "2026-02-01T10:00:00.000Z",
        }

    def test_message_wire_shape(self) -> None:
        event = MessageEvent("Иван", "Привет", "2026-02-01T10:00:00.000Z")
        assert event.to_dict() == {
            "type": "message",
            "from": "Иван",
            "text": "Привет",
            "at": "2026-02-01T10:00:00.000Z",
        }

    def test_default_timestamp(self) -> None:
        assert StatusEvent("info", "x").at.endswith("Z")

    def test_events_are_frozen(self) -> None:
        event = MessageEvent("a", "b")
        with pytest.raises(AttributeError):
            event.text = "c"  # type: ignore[misc]


# ── EventSink ───────────────────────────────────────────────────────


class TestEventSink:
    def test_replay_is_bounded(self) -> None:
        sink = EventSink(replay_size=50)
        for i in range(60):
            sink.status("info", f"event {i}")
        recent = sink.recent()
        assert len(recent) == 50
        assert recent[0].message == "event 10"
        assert recent[-1].message == "event 59"

    def test_recent_limit(self) -> None:
        sink = EventSink()
        for i in range(5):
            sink.status("info", str(i))
        assert [e.message for e in sink.recent(2)] == ["3", "4"]
        assert sink.recent(0) == []

    def test_unknown_level_becomes_info(self) -> None:
        sink = EventSink()
        assert sink.status("debug", "x").level == "info"

    def test_message_helper(self) -> None:
        sink = EventSink()
        event = sink.message("Иван", "Привет", "2026-02-01T10:00:00.000Z")
        assert sink.recent() == [event]
        assert event.fingerprint == "Иван|Привет"

    def test_status_mirrored_to_logging(self, caplog: pytest.LogCaptureFixture) -> None:
        sink = EventSink()
        with caplog.at_level(logging.INFO, logger="avito_watcher.events"):
            sink.status("error", "Watcher error → restart: boom")
        assert any(r.levelno == logging.ERROR and "boom" in r.getMessage() for r in caplog.records)

    async def test_subscriber_gets_replay_then_live(self) -> None:
        sink = EventSink()
        sink.status("info", "before")
        subscription = sink.subscribe()
        sink.message("Иван", "после")

        first = await subscription.get()
        second = await subscription.get()
        assert isinstance(first, StatusEvent) and first.message == "before"
        assert isinstance(second, MessageEvent) and second.text == "после"

    async def test_emission_order_per_subscriber(self) -> None:
        sink = EventSink()
        a, b = sink.subscribe(), sink.subscribe()
        for i in range(3):
            sink.status("info", str(i))
        for subscription in (a, b):
            assert [(await subscription.get()).message for _ in range(3)] == ["0", "1", "2"]

    async def test_close_ends_iteration(self) -> None:
        sink = EventSink()
        subscription = sink.subscribe()
        sink.status("info", "one")
        subscription.close()
        sink.status("info", "two")

        received = [event async for event in subscription]
        assert [e.message for e in received] == ["one"]
        assert sink.subscriber_count == 0

    async def test_emit_never_blocks(self) -> None:
        sink = EventSink(subscriber_backlog=10)
        subscription = sink.subscribe()
        for i in range(25):
            sink.status("info", str(i))
        assert subscription.pending() == 10
        assert subscription.dropped == 15
        assert (await subscription.get()).message == "15"

    async def test_close_on_full_queue_still_ends_iteration(self) -> None:
        sink = EventSink(subscriber_backlog=3)
        subscription = sink.subscribe()
        for i in range(3):
            sink.status("info", str(i))
        subscription.close()

        received = [event async for event in subscription]
        assert [e.message for e in received] == ["1", "2"]

    def test_backlog_larger_than_bound_is_trimmed(self) -> None:
        sink = EventSink(replay_size=50, subscriber_backlog=5)
        for i in range(20):
            sink.status("info", str(i))
        subscription = sink.subscribe()
        assert subscription.pending() == 5
        assert subscription.get_nowait().message == "15"

    def test_get_nowait(self) -> None:
        sink = EventSink()
        subscription = sink.subscribe()
        assert subscription.get_nowait() is None
        sink.status("info", "x")
        event = subscription.get_nowait()
        assert event is not None and event.message == "x"
