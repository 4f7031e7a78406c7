"""Detection of new messages in the open conversation.

A ``MutationObserver`` injected into the page pushes the text of every added
node to the host through an exposed function. When it cannot be installed,
the detector polls the most recent message instead. Either way every
candidate goes through the same path: noise filter, fingerprint, comparison
with the suppression floor, emit.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from avito_watcher.errors import ObserverInstallFailure, SessionExpired, WatcherError
from avito_watcher.events import MessageEvent
from avito_watcher.targets.classifier import is_login_location
from avito_watcher.watchers.base_watcher import sleep_until_stopped
from avito_watcher.watchers.noise import NoiseFilter, fingerprint

logger = logging.getLogger(__name__)

BRIDGE_NAME = "__avitoWatcherEmit"

_CONTAINER_JS = """
  const pickContainer = () => {
    const roleLog = document.querySelector('[role="log"]');
    if (roleLog) return roleLog;
    const input = document.querySelector('textarea, [contenteditable="true"]');
    const main = (input && input.closest('main')) || document.querySelector('main');
    return main || document.body;
  };
"""

OBSERVER_JS = (
    """
({ bridge, graceMs }) => {
"""
    + _CONTAINER_JS
    + """
  const container = pickContainer();
  if (!container || typeof window[bridge] !== 'function') return false;
  if (window.__avitoWatcherObserver) window.__avitoWatcherObserver.disconnect();
  const readyAt = Date.now() + graceMs;
  const observer = new MutationObserver((mutations) => {
    if (Date.now() < readyAt) return;
    for (const m of mutations) {
      for (const node of m.addedNodes) {
        if (!(node instanceof HTMLElement)) continue;
        const text = node.innerText || '';
        if (!text.trim()) continue;
        window[bridge]({ text, at: new Date().toISOString() });
      }
    }
  });
  observer.observe(container, { childList: true, subtree: true });
  window.__avitoWatcherObserver = observer;
  return true;
}
"""
)

DETACH_JS = """
() => {
  if (window.__avitoWatcherObserver) {
    window.__avitoWatcherObserver.disconnect();
    window.__avitoWatcherObserver = null;
  }
}
"""

READ_CANDIDATES_JS = (
    """
(limit) => {
"""
    + _CONTAINER_JS
    + """
  const container = pickContainer();
  if (!container) return [];
  const nodes = Array.from(container.querySelectorAll('div, p, span'));
  return nodes.slice(-limit).map((n) => n.innerText || '').filter((t) => t.trim());
}
"""
)

READ_LIMIT = 300


class WatchMode(str, Enum):
    IDLE = "idle"
    OBSERVING = "observing"
    POLLING = "polling"


class ChangeDetector:
    """Emits each new message of the watched conversation once.

    The detector owns the suppression floor: the fingerprint of the last
    emitted (or baseline) message. A candidate equal to the floor is dropped.
    """

    def __init__(
        self,
        sink: Any,
        noise: NoiseFilter | None = None,
        poll_interval: float = 1.5,
        auth_check_interval: float = 1.0,
        grace_period: float = 1.5,
    ):
        self.sink = sink
        self.noise = noise or NoiseFilter()
        self.poll_interval = poll_interval
        self.auth_check_interval = auth_check_interval
        self.grace_period = grace_period
        self.mode = WatchMode.IDLE
        self.last_mode = WatchMode.IDLE
        self.sender = "unknown"
        self._floor: str | None = None
        self._bridge_page: Any = None

    @property
    def observer_active(self) -> bool:
        return self.mode is WatchMode.OBSERVING

    @property
    def polling_active(self) -> bool:
        return self.mode is WatchMode.POLLING

    @property
    def floor(self) -> str | None:
        return self._floor

    # ── Candidate handling ──────────────────────────────────────────

    def accept(self, text: str | None, sender: str | None = None, at: str | None = None) -> MessageEvent | None:
        """Run one raw text candidate through filter and dedup; emit if new."""
        sender = sender or self.sender
        message = self.noise.extract(text, ignore=(sender,))
        if message is None:
            return None

        fp = fingerprint(sender, message)
        if not fp or fp == self._floor:
            return None

        self._floor = fp
        return self.sink.message(sender, message, at)

    def _on_bridge_payload(self, payload: Any) -> None:
        if self.mode is not WatchMode.OBSERVING:
            return
        if isinstance(payload, dict):
            text, at = payload.get("text"), payload.get("at")
        else:
            text, at = payload, None
        try:
            self.accept(str(text) if text is not None else None, at=str(at) if at else None)
        except Exception:
            logger.exception("Failed to handle observer payload")

    # ── Page access ─────────────────────────────────────────────────

    async def read_latest(self, page: Any) -> str | None:
        """Most recent qualifying message text on the page, or None."""
        texts = await page.evaluate(READ_CANDIDATES_JS, READ_LIMIT)
        for text in reversed(texts or []):
            message = self.noise.extract(text, ignore=(self.sender,))
            if message is not None:
                return message
        return None

    async def capture_baseline(self, page: Any) -> None:
        """Set the floor to the newest existing message without emitting it."""
        latest = await self.read_latest(page)
        if latest is None:
            self._floor = None
            logger.debug("Conversation has no messages yet, no baseline")
            return
        self._floor = fingerprint(self.sender, latest)
        self.sink.status("info", "Baseline set (existing messages ignored)")

    async def install_observer(self, page: Any) -> None:
        """Register the host bridge (once per page) and inject the observer.

        Raises:
            ObserverInstallFailure: If either step fails.
        """
        try:
            if self._bridge_page is not page:
                await page.expose_function(BRIDGE_NAME, self._on_bridge_payload)
                self._bridge_page = page
            installed = await page.evaluate(
                OBSERVER_JS, {"bridge": BRIDGE_NAME, "graceMs": int(self.grace_period * 1000)}
            )
        except Exception as exc:
            raise ObserverInstallFailure(f"Observer install failed: {exc}") from exc
        if not installed:
            raise ObserverInstallFailure("Observer install failed: no message container or bridge")

    async def poll_once(self, page: Any) -> MessageEvent | None:
        latest = await self.read_latest(page)
        if latest is None:
            return None
        return self.accept(latest)

    async def detach(self, page: Any | None) -> None:
        """Return to idle and disconnect the in-page observer (best effort)."""
        was_observing = self.mode is WatchMode.OBSERVING
        if self.mode is not WatchMode.IDLE:
            self.last_mode = self.mode
        self.mode = WatchMode.IDLE
        if page is None or not was_observing:
            return
        try:
            if not page.is_closed():
                await page.evaluate(DETACH_JS)
        except Exception as exc:
            logger.debug("Observer detach failed: %s", exc)

    # ── Watch loop ──────────────────────────────────────────────────

    async def watch(self, page: Any, stop_event: Any, sender: str = "unknown") -> None:
        """Watch ``page`` until ``stop_event`` is set.

        Raises:
            SessionExpired: If the page is redirected to a login view.
            WatcherError: If the page is closed underneath the watcher.
        """
        self.sender = sender or "unknown"
        self.last_mode = WatchMode.IDLE
        self.sink.status("info", "Watching new messages…")
        try:
            await self.capture_baseline(page)

            try:
                await self.install_observer(page)
                self.mode = WatchMode.OBSERVING
                self.sink.status("info", "Realtime observer installed")
            except ObserverInstallFailure as exc:
                self.mode = WatchMode.POLLING
                logger.debug("%s", exc)
                self.sink.status("warn", "Realtime observer unavailable, falling back to polling")

            while not stop_event.is_set():
                if page.is_closed():
                    raise WatcherError("Watched page was closed")
                if is_login_location(page.url):
                    raise SessionExpired("Session expired (redirected to login)")

                if self.mode is WatchMode.POLLING:
                    await self.poll_once(page)
                    interval = self.poll_interval
                else:
                    interval = self.auth_check_interval
                await sleep_until_stopped(stop_event, interval)
        finally:
            await self.detach(page)
