"""Watcher MCP Server: operator controls for the messenger watcher.

Runs the watcher in the background for the lifetime of the server and
exposes the bind operations plus a view of recent events via Model Context
Protocol over stdio.

Usage:
    python -m avito_watcher.mcp_servers.watcher_server
"""

from __future__ import annotations

import asyncio
import logging
import sys
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from mcp.server.fastmcp import FastMCP

from avito_watcher.config import ENV_PATH, WatcherConfig
from avito_watcher.utils.logging_utils import correlation_id, log_action, read_recent_logs
from avito_watcher.watchers.messenger_watcher import BindResult, MessengerWatcher

# ── Configuration ───────────────────────────────────────────────────

load_dotenv(ENV_PATH)

# Logging MUST go to stderr (stdout is reserved for MCP JSON-RPC)
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)

MAX_EVENTS = 50
MAX_ERRORS = 50


# ── Helpers ─────────────────────────────────────────────────────────


def _log_tool_action(
    logs_dir: str | Path,
    action_type: str,
    target: str,
    result: str,
    cid: str,
    duration_ms: int = 0,
    parameters: dict[str, Any] | None = None,
) -> None:
    """Write an audit log entry to <logs>/actions/."""
    try:
        log_action(
            Path(logs_dir) / "actions",
            {
                "correlation_id": cid,
                "actor": "watcher_mcp",
                "action_type": action_type,
                "target": target,
                "result": result,
                "duration_ms": duration_ms,
                "parameters": parameters or {},
            },
        )
    except OSError:
        logger.exception("Failed to write audit log")


def _format_result(result: BindResult) -> str:
    prefix = "OK" if result.ok else "FAILED"
    return f"{prefix}: {result.message}"


def _audited(app: AppContext, action_type: str, result: BindResult, start: float, **parameters: Any) -> str:
    duration_ms = int((time.time() - start) * 1000)
    _log_tool_action(
        app.config.logs_dir,
        action_type,
        result.url or "",
        "success" if result.ok else "failure",
        correlation_id(),
        duration_ms,
        parameters,
    )
    return _format_result(result)


# ── Lifespan ────────────────────────────────────────────────────────


@dataclass
class AppContext:
    """Shared state injected into MCP tool handlers."""

    config: WatcherConfig
    watcher: MessengerWatcher
    task: asyncio.Task | None = None


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    """Start the watcher loop in the background; stop it on shutdown."""
    config = WatcherConfig.from_env()
    watcher = MessengerWatcher(config)
    task = asyncio.create_task(watcher.run())
    logger.info("Watcher MCP server started (headless=%s, bind file=%s)", config.headless, config.bind_file)
    try:
        yield AppContext(config=config, watcher=watcher, task=task)
    finally:
        logger.info("Watcher MCP server shutting down")
        watcher.stop()
        try:
            await asyncio.wait_for(task, timeout=config.close_grace + config.restart_cooldown + 5)
        except asyncio.TimeoutError:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)


# ── Server ──────────────────────────────────────────────────────────

mcp = FastMCP(
    "avito-watcher",
    instructions=(
        "Controls for the Avito messenger watcher. Open the wanted chat in the "
        "watcher's browser and call bind_current, or bind_location with a chat URL. "
        "recent_events shows what the watcher reported lately, recent_errors why it restarted."
    ),
    lifespan=app_lifespan,
)


@mcp.tool()
async def bind_status() -> str:
    """Show which chat is currently bound."""
    ctx = mcp.get_context()
    app: AppContext = ctx.request_context.lifespan_context
    start = time.time()
    result = app.watcher.bind_status()
    return _audited(app, "bind_status", result, start)


@mcp.tool()
async def bind_current() -> str:
    """Bind the chat currently open in the watcher's browser."""
    ctx = mcp.get_context()
    app: AppContext = ctx.request_context.lifespan_context
    start = time.time()
    result = app.watcher.bind_current()
    return _audited(app, "bind_current", result, start)


@mcp.tool()
async def bind_location(location: str) -> str:
    """Bind a chat thread by URL.

    Args:
        location: Absolute URL or site path such as /profile/messenger/channel/<id>.
    """
    ctx = mcp.get_context()
    app: AppContext = ctx.request_context.lifespan_context
    start = time.time()
    result = app.watcher.bind(location, reason="mcp")
    return _audited(app, "bind_location", result, start, location=location[:200])


@mcp.tool()
async def clear_binding() -> str:
    """Forget the bound chat."""
    ctx = mcp.get_context()
    app: AppContext = ctx.request_context.lifespan_context
    start = time.time()
    result = app.watcher.clear_binding()
    return _audited(app, "clear_binding", result, start)


@mcp.tool()
async def recent_events(limit: int = 20) -> str:
    """List the most recent watcher events, oldest first.

    Args:
        limit: Number of events (1-50, default 20).
    """
    ctx = mcp.get_context()
    app: AppContext = ctx.request_context.lifespan_context
    limit = max(1, min(MAX_EVENTS, limit))

    events = app.watcher.sink.recent(limit)
    if not events:
        return "No events yet."

    lines = []
    for event in events:
        data = event.to_dict()
        if data["type"] == "message":
            lines.append(f"{data['at']} MESSAGE {data['from']}: {data['text']}")
        else:
            lines.append(f"{data['at']} {data['level'].upper()} {data['message']}")
    return "\n".join(lines)


@mcp.tool()
async def recent_errors(limit: int = 10) -> str:
    """List the errors that made the watcher restart, newest first.

    Args:
        limit: Number of entries (1-50, default 10).
    """
    ctx = mcp.get_context()
    app: AppContext = ctx.request_context.lifespan_context
    limit = max(1, min(MAX_ERRORS, limit))

    entries = read_recent_logs(app.watcher.errors_path, limit)
    if not entries:
        return "No errors logged."

    lines = []
    for entry in entries:
        details = entry.get("details") or {}
        state = details.get("state", "?")
        target = entry.get("target") or "-"
        lines.append(f"{entry.get('timestamp', '?')} [{state}] {entry.get('error', '')} ({target})")
    return "\n".join(lines)


@mcp.tool()
async def watcher_state() -> str:
    """Show the supervisor state, detection mode and last error."""
    ctx = mcp.get_context()
    app: AppContext = ctx.request_context.lifespan_context
    snapshot = app.watcher.snapshot()

    lines = [
        f"State: {snapshot['state']}",
        f"Mode: {snapshot['mode']}",
        f"Watching: {snapshot['watched_location'] or '-'}",
    ]
    if snapshot["conversation_title"]:
        lines.append(f"Conversation: {snapshot['conversation_title']}")
    if snapshot["last_error"]:
        lines.append(f"Last error: {snapshot['last_error']}")
    if snapshot["transitions"]:
        lines.append("Recent transitions: " + " -> ".join(snapshot["transitions"][-10:]))
    return "\n".join(lines)


# ── Entry Point ─────────────────────────────────────────────────────


def main() -> None:
    """CLI entry point for the watcher MCP server."""
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
