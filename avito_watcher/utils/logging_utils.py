"""Audit logging utilities for the watcher.

Operator actions and supervisor failures are appended to daily JSON files
(``<logs>/<kind>/<YYYY-MM-DD>.json``) next to the regular ``logging`` output,
so repeated failures can be reviewed after the fact.
"""

import json
import logging
import uuid
from pathlib import Path
from typing import Any

from avito_watcher.utils.files import write_json_atomic
from avito_watcher.utils.timestamps import now_iso, today_iso

logger = logging.getLogger(__name__)


def correlation_id() -> str:
    """Generate a UUID v4 string linking a log entry to its status event."""
    return str(uuid.uuid4())


def log_action(log_dir: str | Path, entry: dict[str, Any]) -> None:
    """Append an entry to today's log file in ``log_dir``.

    Each log file holds a JSON object with a "date" field and an "entries"
    array. ``timestamp`` and ``correlation_id`` are filled in when missing.
    A corrupted day file is started over rather than failing the caller.

    Args:
        log_dir: Path to the log directory (e.g., logs/actions).
        entry: Dictionary containing the log entry fields.
            Usual keys: actor, action_type, target, result
            Optional: parameters, error, details

    Raises:
        OSError: If the log file cannot be written.

    Examples:
        >>> log_action("logs/actions", {
        ...     "actor": "watcher_mcp",
        ...     "action_type": "bind_current",
        ...     "target": "https://www.avito.ru/profile/messenger/channel/abc",
        ...     "result": "success",
        ... })
    """
    log_path = Path(log_dir)
    date = today_iso()
    log_file = log_path / f"{date}.json"

    data: dict[str, Any] = {"date": date, "entries": []}
    if log_file.exists():
        try:
            loaded = json.loads(log_file.read_text(encoding="utf-8"))
            if isinstance(loaded, dict) and isinstance(loaded.get("entries"), list):
                data = loaded
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning("Corrupted log file %s, starting fresh", log_file)

    record = {"timestamp": now_iso(), "correlation_id": correlation_id(), **entry}
    data["entries"].append(record)
    write_json_atomic(log_file, data)


def read_recent_logs(log_dir: str | Path, count: int = 10) -> list[dict[str, Any]]:
    """Read the most recent log entries from a log directory, newest first."""
    log_path = Path(log_dir)
    if not log_path.exists():
        return []

    entries: list[dict[str, Any]] = []
    for log_file in sorted(log_path.glob("*.json"), reverse=True):
        if len(entries) >= count:
            break
        try:
            data = json.loads(log_file.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError, OSError):
            continue
        file_entries = list(data.get("entries", []))
        file_entries.reverse()
        entries.extend(file_entries)

    return entries[:count]
