"""ISO 8601 timestamp utilities for the watcher.

All events, bind records and log entries carry UTC timestamps produced here.
"""

from datetime import UTC, datetime

EPOCH_ISO = "1970-01-01T00:00:00.000Z"


def now_iso() -> str:
    """Get the current UTC timestamp in ISO 8601 format with milliseconds.

    Returns:
        Current timestamp as ISO 8601 string (YYYY-MM-DDTHH:MM:SS.mmmZ).

    Examples:
        >>> ts = now_iso()
        >>> ts  # e.g., "2026-02-04T14:30:22.481Z"
    """
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso(timestamp: str) -> datetime:
    """Parse an ISO 8601 timestamp string to a timezone-aware datetime.

    Handles both 'Z' suffix and '+00:00' timezone formats. Naive input is
    assumed to be UTC.

    Raises:
        ValueError: If the timestamp format is invalid.
    """
    normalized = timestamp.strip().replace("Z", "+00:00")
    parsed = datetime.fromisoformat(normalized)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def format_filename_timestamp() -> str:
    """Get current timestamp formatted for filenames.

    Microseconds are included so artifacts written within the same second
    do not overwrite each other: YYYYMMDDTHHMMSS_ffffff
    """
    return datetime.now(UTC).strftime("%Y%m%dT%H%M%S_%f")


def today_iso() -> str:
    """Get today's date in ISO format (YYYY-MM-DD), used for daily log files."""
    return datetime.now(UTC).strftime("%Y-%m-%d")
