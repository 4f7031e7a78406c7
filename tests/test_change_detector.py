"""Tests for the change detector (push observer, polling fallback, dedup)."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from avito_watcher.errors import ObserverInstallFailure, SessionExpired, WatcherError
from avito_watcher.events import EventSink, MessageEvent
from avito_watcher.watchers.change_detector import (
    BRIDGE_NAME,
    DETACH_JS,
    OBSERVER_JS,
    READ_CANDIDATES_JS,
    ChangeDetector,
    WatchMode,
)

CHAT_URL = "https://www.avito.ru/profile/messenger/channel/u2i-abc"


class FakePage:
    """Just enough of a Playwright page for the detector."""

    def __init__(self, texts: list[str] | None = None, install_ok: bool = True, expose_fails: bool = False):
        self.url = CHAT_URL
        self.texts = texts or []
        self.install_ok = install_ok
        self.expose_fails = expose_fails
        self.closed = False
        self.exposed: dict[str, Any] = {}
        self.expose_calls = 0
        self.detached = 0

    def is_closed(self) -> bool:
        return self.closed

    async def expose_function(self, name: str, callback: Any) -> None:
        self.expose_calls += 1
        if self.expose_fails:
            raise RuntimeError("Target closed")
        self.exposed[name] = callback

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        if script is READ_CANDIDATES_JS:
            return list(self.texts)
        if script is OBSERVER_JS:
            return self.install_ok
        if script is DETACH_JS:
            self.detached += 1
            return None
        raise AssertionError("unexpected script")

    def push(self, text: str) -> None:
        """Simulate the in-page observer calling the bridge."""
        self.exposed[BRIDGE_NAME]({"text": text, "at": "2026-02-01T10:00:00.000Z"})


@pytest.fixture
def sink() -> EventSink:
    return EventSink()


@pytest.fixture
def detector(sink: EventSink) -> ChangeDetector:
    return ChangeDetector(sink, poll_interval=0.01, auth_check_interval=0.01, grace_period=0)


def _messages(sink: EventSink) -> list[str]:
    return [e.text for e in sink.recent() if isinstance(e, MessageEvent)]


# ── Dedup ───────────────────────────────────────────────────────────


class TestDedup:
    def test_consecutive_duplicates_suppressed(self, detector: ChangeDetector, sink: EventSink) -> None:
        detector.mode = WatchMode.OBSERVING
        detector.sender = "Иван"
        for text in ["A", "A", "B", "A"]:
            detector._on_bridge_payload({"text": text})
        assert _messages(sink) == ["A", "B", "A"]

    def test_noise_not_emitted(self, detector: ChangeDetector, sink: EventSink) -> None:
        detector.sender = "Иван"
        detector.accept("Иван\nВчера")
        detector.accept("12:30")
        assert _messages(sink) == []

    def test_last_line_emitted(self, detector: ChangeDetector, sink: EventSink) -> None:
        event = detector.accept("Иван\n10:02\nКогда можно забрать?", sender="Иван")
        assert event is not None
        assert event.sender == "Иван"
        assert _messages(sink) == ["Когда можно забрать?"]

    def test_bubble_with_trailing_stamp_emitted(self, detector: ChangeDetector, sink: EventSink) -> None:
        detector.mode = WatchMode.OBSERVING
        detector.sender = "Иван"
        detector._on_bridge_payload({"text": "Когда можно забрать?\n12:30"})
        detector._on_bridge_payload({"text": "Договорились\n12:31\nПрочитано"})
        assert _messages(sink) == ["Когда можно забрать?", "Договорились"]

    async def test_push_and_poll_read_bubble_alike(self, detector: ChangeDetector) -> None:
        bubble = "Иван\nДоговорились\n12:31\nПрочитано"
        detector.sender = "Иван"
        assert await detector.read_latest(FakePage(texts=[bubble])) == "Договорились"
        assert detector.accept(bubble).text == "Договорились"

    def test_bridge_ignored_unless_observing(self, detector: ChangeDetector, sink: EventSink) -> None:
        detector._on_bridge_payload({"text": "Привет"})
        detector.mode = WatchMode.POLLING
        detector._on_bridge_payload({"text": "Привет"})
        assert _messages(sink) == []

    def test_bridge_keeps_page_timestamp(self, detector: ChangeDetector, sink: EventSink) -> None:
        detector.mode = WatchMode.OBSERVING
        detector._on_bridge_payload({"text": "Привет", "at": "2026-02-01T10:00:00.000Z"})
        assert sink.recent()[-1].at == "2026-02-01T10:00:00.000Z"


# ── Baseline ────────────────────────────────────────────────────────


class TestBaseline:
    async def test_baseline_suppresses_existing_message(self, detector: ChangeDetector, sink: EventSink) -> None:
        page = FakePage(texts=["Иван\nСтарое сообщение", "12:00"])
        detector.sender = "Иван"
        await detector.capture_baseline(page)
        assert detector.floor == "Иван|Старое сообщение"

        detector.accept("Старое сообщение")
        detector.accept("Новое")
        assert _messages(sink) == ["Новое"]

    async def test_empty_conversation_has_no_floor(self, detector: ChangeDetector, sink: EventSink) -> None:
        detector.accept("Привет")
        await detector.capture_baseline(FakePage(texts=[]))
        assert detector.floor is None
        detector.accept("Привет")
        assert _messages(sink) == ["Привет", "Привет"]


# ── Observer install / mutual exclusion ─────────────────────────────


class TestObserverInstall:
    async def test_bridge_registered_once_per_page(self, detector: ChangeDetector) -> None:
        page = FakePage()
        await detector.install_observer(page)
        await detector.install_observer(page)
        assert page.expose_calls == 1
        await detector.install_observer(FakePage())
        assert detector._bridge_page is not page

    async def test_expose_failure(self, detector: ChangeDetector) -> None:
        with pytest.raises(ObserverInstallFailure):
            await detector.install_observer(FakePage(expose_fails=True))

    async def test_no_container(self, detector: ChangeDetector) -> None:
        with pytest.raises(ObserverInstallFailure):
            await detector.install_observer(FakePage(install_ok=False))

    async def test_observing_mode(self, detector: ChangeDetector, sink: EventSink) -> None:
        page = FakePage(texts=["Старое"])
        stop = asyncio.Event()
        task = asyncio.create_task(detector.watch(page, stop, "Иван"))
        await asyncio.sleep(0.03)
        assert detector.observer_active and not detector.polling_active

        page.push("Старое")
        page.push("Новое")
        page.push("Новое")
        stop.set()
        await task

        assert _messages(sink) == ["Новое"]
        assert detector.mode is WatchMode.IDLE
        assert page.detached == 1

    async def test_falls_back_to_polling(self, detector: ChangeDetector, sink: EventSink) -> None:
        page = FakePage(texts=["Старое"], install_ok=False)
        stop = asyncio.Event()
        task = asyncio.create_task(detector.watch(page, stop, "Иван"))
        await asyncio.sleep(0.03)
        assert detector.polling_active and not detector.observer_active

        page.push("из наблюдателя")
        page.texts = ["Старое", "Новое"]
        await asyncio.sleep(0.05)
        stop.set()
        await task

        assert _messages(sink) == ["Новое"]
        assert detector.mode is WatchMode.IDLE
        statuses = [e.message for e in sink.recent() if not isinstance(e, MessageEvent)]
        assert any("polling" in s for s in statuses)

    async def test_late_bridge_calls_dropped_after_detach(self, detector: ChangeDetector, sink: EventSink) -> None:
        page = FakePage()
        stop = asyncio.Event()
        stop.set()
        await detector.install_observer(page)
        await detector.watch(page, stop, "Иван")
        page.push("После остановки")
        assert _messages(sink) == []


# ── Session checks ──────────────────────────────────────────────────


class TestSessionChecks:
    async def test_login_redirect_raises(self, detector: ChangeDetector) -> None:
        page = FakePage()
        page.url = "https://www.avito.ru/#login?next=/profile/messenger"
        with pytest.raises(SessionExpired):
            await asyncio.wait_for(detector.watch(page, asyncio.Event(), "Иван"), timeout=1)
        assert detector.mode is WatchMode.IDLE

    async def test_login_redirect_raises_while_polling(self, detector: ChangeDetector) -> None:
        page = FakePage(install_ok=False)
        stop = asyncio.Event()
        task = asyncio.create_task(detector.watch(page, stop, "Иван"))
        await asyncio.sleep(0.02)
        page.url = "https://www.avito.ru/login"
        with pytest.raises(SessionExpired):
            await asyncio.wait_for(task, timeout=1)
        assert detector.last_mode is WatchMode.POLLING

    async def test_closed_page_raises(self, detector: ChangeDetector) -> None:
        page = FakePage()
        stop = asyncio.Event()
        task = asyncio.create_task(detector.watch(page, stop, "Иван"))
        await asyncio.sleep(0.02)
        page.closed = True
        with pytest.raises(WatcherError):
            await asyncio.wait_for(task, timeout=1)
        assert detector.mode is WatchMode.IDLE
        assert detector.last_mode is WatchMode.OBSERVING
