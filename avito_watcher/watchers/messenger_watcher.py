"""Avito messenger watcher - streams new messages of one bound conversation.

The supervisor keeps a Playwright session alive, logs in, opens the bound
chat, and hands the page to the change detector. Whatever goes wrong, it
dumps diagnostics, reports one error event, tears everything down and
starts over after a cooldown.

Usage:
    # First-time setup (headed browser for manual login)
    python -m avito_watcher.watchers.messenger_watcher --setup

    # Continuous watching, events as JSON lines on stdout
    python -m avito_watcher.watchers.messenger_watcher --json-events

    # Bind file management (no browser)
    python -m avito_watcher.watchers.messenger_watcher --bind-status
    python -m avito_watcher.watchers.messenger_watcher --bind /profile/messenger/channel/u2i-abc
    python -m avito_watcher.watchers.messenger_watcher --clear-binding
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from collections import deque
from collections.abc import Callable
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from avito_watcher.config import ENV_PATH, WatcherConfig, configure_logging
from avito_watcher.errors import PersistenceFailure, TargetInvalid, TargetUnresolved, WatcherError
from avito_watcher.events import EventSink
from avito_watcher.targets.binding_store import Binding, BindingStore
from avito_watcher.targets.classifier import TargetKind, classify, is_default_conversation
from avito_watcher.targets.resolver import TargetResolver
from avito_watcher.utils.diagnostics import dump_debug_artifacts
from avito_watcher.utils.logging_utils import log_action
from avito_watcher.watchers.auth import Authenticator
from avito_watcher.watchers.base_watcher import BaseWatcher, sleep_until_stopped
from avito_watcher.watchers.change_detector import ChangeDetector, WatchMode
from avito_watcher.watchers.noise import NoiseFilter
from avito_watcher.watchers.session import RenderingSession

logger = logging.getLogger(__name__)

TRANSITION_HISTORY = 100


class SupervisorState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    AUTHENTICATING = "authenticating"
    RESOLVING = "resolving"
    WATCHING = "watching"
    RECOVERING = "recovering"
    STOPPED = "stopped"


@dataclass(frozen=True)
class BindResult:
    ok: bool
    url: str | None
    message: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class MessengerWatcher(BaseWatcher):
    """Supervisor of the whole start, login, resolve, watch chain."""

    def __init__(
        self,
        config: WatcherConfig,
        sink: EventSink | None = None,
        store: BindingStore | None = None,
        resolver: TargetResolver | None = None,
        detector: ChangeDetector | None = None,
        session_factory: Callable[[], Any] | None = None,
    ):
        super().__init__(cooldown=config.restart_cooldown)
        self.config = config
        self.sink = sink or EventSink(config.replay_size)
        self.store = store or BindingStore(config.bind_file)
        self.resolver = resolver or TargetResolver.from_config(config, self.store)
        self.detector = detector or ChangeDetector(
            self.sink,
            NoiseFilter.from_file(config.noise_file),
            poll_interval=config.poll_interval,
            auth_check_interval=config.auth_check_interval,
            grace_period=config.observer_grace,
        )
        self._session_factory = session_factory or (lambda: RenderingSession(config, self.sink))
        self.session: Any = None
        self.state = SupervisorState.IDLE
        self.transitions: deque[SupervisorState] = deque(maxlen=TRANSITION_HISTORY)
        self.watched_location: str | None = None
        self.conversation_title: str | None = None
        self.last_error: str | None = None
        self.errors_path = Path(config.logs_dir) / "errors"

    def _set_state(self, state: SupervisorState) -> None:
        if state is self.state:
            return
        self.logger.info("State %s -> %s", self.state.value, state.value)
        self.state = state
        self.transitions.append(state)

    # ── Cycle ───────────────────────────────────────────────────────

    async def run(self) -> None:
        self.sink.status("info", "Avito watcher starting…")
        try:
            await super().run()
        finally:
            self._set_state(SupervisorState.STOPPED)

    async def run_cycle(self) -> None:
        self._set_state(SupervisorState.STARTING)
        self.session = self._session_factory()
        await self.session.start()

        self._set_state(SupervisorState.AUTHENTICATING)
        authenticator = Authenticator(self.session, self.config, self.sink, self._stop_event)
        await authenticator.authenticate()

        self._set_state(SupervisorState.RESOLVING)
        location = await self._resolve_target()
        if location is None:
            return

        self._set_state(SupervisorState.WATCHING)
        sender = self.config.contact_name or self.conversation_title or "unknown"
        await self.detector.watch(self.session.page, self._stop_event, sender)

    async def _resolve_target(self) -> str | None:
        """Resolve and validate until a genuine chat thread is open, or stop."""
        unresolved_reported = False
        last_rejected: str | None = None
        last_warning: str | None = None

        while not self.stopping:
            candidate = await self.resolver.resolve(self.session)
            if candidate is None:
                if not unresolved_reported:
                    reason = TargetUnresolved(
                        "No target chat yet: open the conversation and bind it, or set TARGET_CHAT_URL"
                    )
                    self.sink.status("warn", str(reason))
                    unresolved_reported = True
                await sleep_until_stopped(self._stop_event, self.config.resolve_retry)
                continue
            unresolved_reported = False

            try:
                location = await self._open_and_validate(candidate, navigate=candidate != last_rejected)
            except TargetInvalid as exc:
                last_rejected = candidate
                if str(exc) != last_warning:
                    self.sink.status("warn", str(exc))
                    last_warning = str(exc)
                await sleep_until_stopped(self._stop_event, self.config.resolve_retry)
                continue

            strategy = self.resolver.last_strategy or "resolved"
            self.watched_location = location
            self.sink.status("info", f"Chat opened via {strategy}: {location}")
            if self.config.auto_bind_on_open:
                self._auto_bind(location, strategy)
            return location

        return None

    async def _open_and_validate(self, candidate: str, navigate: bool = True) -> str:
        """Open ``candidate`` and confirm it is a real conversation.

        Raises:
            TargetInvalid: Not a chat thread, or the platform default chat.
        """
        if navigate:
            await self.session.goto(classify(candidate).location or candidate)
            await self.session.settle()
            await self.session.wait_for_chat_surface()

        current = self.session.location
        kind, location = classify(current)
        if kind is not TargetKind.CHANNEL:
            raise TargetInvalid(f"Target is not a chat thread ({kind.value}): {current}", location=current)

        title = await self.session.conversation_title()
        if is_default_conversation(title):
            raise TargetInvalid(
                f"Opened the default '{title}' conversation instead of the target chat. "
                "Open the right chat and bind it again.",
                location=location,
            )

        self.conversation_title = title
        return location

    def _auto_bind(self, location: str, reason: str) -> None:
        current = self.store.read()
        if current is not None and current.location == location:
            return
        try:
            self.store.write(Binding.create(location, reason))
        except (PersistenceFailure, TargetInvalid) as exc:
            self.sink.status("warn", f"Auto-bind failed: {exc}")
            return
        self.sink.status("info", f"Auto-bound chat: {location}")

    # ── Recovery ────────────────────────────────────────────────────

    async def recover(self, exc: BaseException) -> None:
        failed_state = self.state
        self._set_state(SupervisorState.RECOVERING)
        message = str(exc) or exc.__class__.__name__
        self.last_error = message

        page = None
        location = None
        if self.session is not None:
            location = self.session.location
            try:
                page = self.session.page
            except WatcherError:
                page = None

        await dump_debug_artifacts(
            page,
            self.config.debug_dir,
            "error",
            {
                "error": message,
                "errorType": exc.__class__.__name__,
                "state": failed_state.value,
                "location": location,
                "watchedLocation": self.watched_location,
                "mode": self._mode_at_failure(failed_state).value,
            },
        )
        self.sink.status("error", f"Watcher error → restart: {message}")
        self._log_error(failed_state, exc, location)

    def _mode_at_failure(self, failed_state: SupervisorState) -> WatchMode:
        # detach() has already reset the live mode when a watch fails
        if failed_state is SupervisorState.WATCHING:
            return self.detector.last_mode
        return self.detector.mode

    def _log_error(self, failed_state: SupervisorState, exc: BaseException, location: str | None) -> None:
        try:
            log_action(
                self.errors_path,
                {
                    "actor": "messenger_watcher",
                    "action_type": "error",
                    "target": location or self.watched_location or "",
                    "error": str(exc) or exc.__class__.__name__,
                    "details": {"state": failed_state.value, "error_type": exc.__class__.__name__},
                    "result": "failure",
                },
            )
        except Exception:
            self.logger.exception("Failed to write error log")

    async def teardown(self) -> None:
        session, self.session = self.session, None
        if session is not None:
            await session.close(self.config.close_grace)

    # ── Operator actions ────────────────────────────────────────────

    def _report(self, result: BindResult) -> BindResult:
        self.sink.status("info" if result.ok else "warn", result.message)
        return result

    def bind_status(self) -> BindResult:
        binding = self.store.read()
        if binding is None:
            return self._report(BindResult(False, None, "No chat bound"))
        reason = f" ({binding.reason})" if binding.reason else ""
        return self._report(BindResult(True, binding.location, f"Bound since {binding.bound_at}{reason}: {binding.location}"))

    def current_bindable_location(self) -> str | None:
        if self.session is not None:
            location = self.session.messenger_location()
            if location:
                return location
        return self.watched_location

    def bind_current(self) -> BindResult:
        location = self.current_bindable_location()
        if location is None:
            return self._report(BindResult(False, None, "No messenger page is open, nothing to bind"))
        return self.bind(location, reason="bind-current")

    def bind(self, location: str, reason: str = "manual") -> BindResult:
        kind, normalized = classify(location)
        if kind is not TargetKind.CHANNEL:
            return self._report(
                BindResult(
                    False,
                    normalized,
                    f"Not a chat thread ({kind.value}): {location}. Open the conversation itself and bind again.",
                )
            )
        try:
            self.store.write(Binding.create(normalized, reason))
        except PersistenceFailure as exc:
            return self._report(BindResult(True, normalized, f"Bound in memory only, file not saved: {exc}"))
        return self._report(BindResult(True, normalized, f"Bound chat: {normalized}"))

    def clear_binding(self) -> BindResult:
        try:
            self.store.clear()
        except PersistenceFailure as exc:
            return self._report(BindResult(False, None, str(exc)))
        return self._report(BindResult(True, None, "Binding cleared"))

    def snapshot(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "mode": self.detector.mode.value,
            "watched_location": self.watched_location,
            "conversation_title": self.conversation_title,
            "last_error": self.last_error,
            "transitions": [s.value for s in self.transitions],
        }

    # ── Setup ───────────────────────────────────────────────────────

    async def setup_session(self) -> bool:
        """Open a headed browser so the operator can log in once.

        Returns:
            True if the messenger opened logged in.
        """
        self.config.headless = False
        self.session = self._session_factory()
        try:
            await self.session.start()
            authenticator = Authenticator(self.session, self.config, self.sink, self._stop_event)
            await authenticator.authenticate()
            self.logger.info("Logged in. Session saved to %s", self.config.profile_dir)
            return True
        except WatcherError as exc:
            self.logger.error("Setup failed: %s", exc)
            return False
        finally:
            await self.teardown()


# ── CLI Entry Point ─────────────────────────────────────────────────


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Avito messenger watcher")
    parser.add_argument(
        "--setup",
        action="store_true",
        help="First-time setup: open headed browser for manual login",
    )
    parser.add_argument("--bind-status", action="store_true", help="Show the bound chat and exit")
    parser.add_argument("--clear-binding", action="store_true", help="Forget the bound chat and exit")
    parser.add_argument("--bind", metavar="URL", help="Bind a chat thread URL (absolute or /path) and exit")
    parser.add_argument(
        "--json-events",
        action="store_true",
        help="Print every event as a JSON line on stdout",
    )
    return parser.parse_args(argv)


async def _run_printing_events(watcher: MessengerWatcher) -> None:
    subscription = watcher.sink.subscribe()

    async def printer() -> None:
        async for event in subscription:
            print(json.dumps(event.to_dict(), ensure_ascii=False), flush=True)

    printer_task = asyncio.create_task(printer())
    try:
        await watcher.run()
    finally:
        subscription.close()
        await asyncio.gather(printer_task, return_exceptions=True)


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for the messenger watcher."""
    load_dotenv(ENV_PATH)
    args = _parse_args(argv)
    configure_logging()

    config = WatcherConfig.from_env()
    watcher = MessengerWatcher(config)

    if args.bind_status or args.clear_binding or args.bind:
        if args.clear_binding:
            result = watcher.clear_binding()
        elif args.bind:
            result = watcher.bind(args.bind, reason="cli")
        else:
            result = watcher.bind_status()
        print(json.dumps(result.to_dict(), ensure_ascii=False))
        return

    if args.setup:
        logger.info("Starting Avito login setup...")
        if asyncio.run(watcher.setup_session()):
            logger.info("Setup complete! You can now run the watcher normally.")
        else:
            logger.error("Setup failed. Please try again.")
        return

    logger.info(
        "Starting messenger watcher (headless: %s, bind file: %s)",
        config.headless,
        config.bind_file,
    )
    try:
        if args.json_events:
            asyncio.run(_run_printing_events(watcher))
        else:
            asyncio.run(watcher.run())
    except KeyboardInterrupt:
        logger.info("Interrupted, watcher stopped")


if __name__ == "__main__":
    main()
