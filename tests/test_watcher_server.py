"""Tests for the watcher MCP server tools (avito_watcher.mcp_servers.watcher_server)."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from avito_watcher.config import WatcherConfig
from avito_watcher.mcp_servers.watcher_server import (
    _format_result,
    bind_current,
    bind_location,
    bind_status,
    clear_binding,
    recent_errors,
    recent_events,
    watcher_state,
)
from avito_watcher.utils.logging_utils import log_action, read_recent_logs
from avito_watcher.watchers.messenger_watcher import BindResult, MessengerWatcher

CHAT = "https://www.avito.ru/profile/messenger/channel/u2i-abc"


# ── Helper Tests ────────────────────────────────────────────────────


class TestFormatResult:
    def test_ok(self) -> None:
        assert _format_result(BindResult(True, CHAT, "Bound chat")) == "OK: Bound chat"

    def test_failed(self) -> None:
        assert _format_result(BindResult(False, None, "No chat bound")) == "FAILED: No chat bound"


# ── Tool Tests (via direct function calls) ──────────────────────────
# The tools are called as plain coroutines with a mocked MCP context
# whose lifespan state holds a real watcher that is never started.


@pytest.fixture()
def mock_app(tmp_path: Path):
    config = WatcherConfig(bind_file=tmp_path / "bind.json", logs_dir=tmp_path / "logs")
    app = MagicMock()
    app.config = config
    app.watcher = MessengerWatcher(config)
    return app


@pytest.fixture()
def mock_mcp(mock_app):
    ctx = MagicMock()
    ctx.request_context.lifespan_context = mock_app
    with patch("avito_watcher.mcp_servers.watcher_server.mcp") as mcp:
        mcp.get_context.return_value = ctx
        yield mcp


class TestBindTools:
    async def test_bind_location_and_status(self, mock_app, mock_mcp) -> None:
        result = await bind_location("/profile/messenger/channel/u2i-abc")
        assert result == f"OK: Bound chat: {CHAT}"

        status = await bind_status()
        assert status.startswith("OK: Bound since")
        assert CHAT in status

    async def test_bind_location_refuses_root(self, mock_app, mock_mcp) -> None:
        result = await bind_location("https://www.avito.ru/profile/messenger")
        assert result.startswith("FAILED: Not a chat thread (messenger-root)")

    async def test_bind_current_without_browser(self, mock_app, mock_mcp) -> None:
        assert (await bind_current()).startswith("FAILED:")

    async def test_clear_binding(self, mock_app, mock_mcp) -> None:
        await bind_location(CHAT)
        assert await clear_binding() == "OK: Binding cleared"
        assert (await bind_status()) == "FAILED: No chat bound"

    async def test_actions_are_audited(self, mock_app, mock_mcp) -> None:
        await bind_location(CHAT)
        await clear_binding()
        entries = read_recent_logs(mock_app.config.logs_dir / "actions")
        assert [e["action_type"] for e in entries] == ["clear_binding", "bind_location"]
        assert entries[1]["result"] == "success"
        assert entries[1]["actor"] == "watcher_mcp"
        assert entries[1]["parameters"] == {"location": CHAT}


class TestStateTools:
    async def test_recent_events(self, mock_app, mock_mcp) -> None:
        mock_app.watcher.sink.status("warn", "Login required")
        mock_app.watcher.sink.message("Иван", "Привет", "2026-02-01T10:00:00.000Z")
        output = await recent_events(10)
        lines = output.splitlines()
        assert lines[0].endswith("WARN Login required")
        assert lines[1] == "2026-02-01T10:00:00.000Z MESSAGE Иван: Привет"

    async def test_recent_events_empty(self, mock_app, mock_mcp) -> None:
        assert await recent_events() == "No events yet."

    async def test_recent_events_limit_clamped(self, mock_app, mock_mcp) -> None:
        for i in range(5):
            mock_app.watcher.sink.status("info", f"event {i}")
        assert len((await recent_events(0)).splitlines()) == 1

    async def test_recent_errors(self, mock_app, mock_mcp) -> None:
        errors_dir = mock_app.watcher.errors_path
        log_action(
            errors_dir,
            {"action_type": "error", "error": "Page closed", "target": CHAT, "details": {"state": "watching"}},
        )
        log_action(
            errors_dir,
            {"action_type": "error", "error": "Login required", "details": {"state": "authenticating"}},
        )

        lines = (await recent_errors()).splitlines()
        assert lines[0].endswith("[authenticating] Login required (-)")
        assert lines[1].endswith(f"[watching] Page closed ({CHAT})")

    async def test_recent_errors_empty(self, mock_app, mock_mcp) -> None:
        assert await recent_errors() == "No errors logged."

    async def test_watcher_state(self, mock_app, mock_mcp) -> None:
        output = await watcher_state()
        assert "State: idle" in output
        assert "Mode: idle" in output
        assert "Watching: -" in output
