"""Shared utilities for the messenger watcher."""

from avito_watcher.utils.diagnostics import dump_debug_artifacts
from avito_watcher.utils.files import atomic_write_text, write_json_atomic
from avito_watcher.utils.logging_utils import correlation_id, log_action, read_recent_logs
from avito_watcher.utils.timestamps import format_filename_timestamp, now_iso, parse_iso

__all__ = [
    "atomic_write_text",
    "write_json_atomic",
    "dump_debug_artifacts",
    "correlation_id",
    "log_action",
    "read_recent_logs",
    "now_iso",
    "parse_iso",
    "format_filename_timestamp",
]
