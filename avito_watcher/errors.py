"""Error taxonomy for the messenger watcher.

Every error raised by the watcher core derives from ``WatcherError`` so the
supervisor can tell its own failures apart from programming errors in logs.
Only ``AuthenticationRequired`` is expected to repeat forever without operator
action; everything else is recovered by the supervisor restart policy.
"""

from __future__ import annotations


class WatcherError(Exception):
    """Base class for all watcher failures."""


class SessionStartFailure(WatcherError):
    """The browser context or its first page could not be created."""


class AuthenticationRequired(WatcherError):
    """Not logged in and no way to log in (headless, no usable credentials)."""


class AuthenticationTimeout(WatcherError):
    """A login was started but did not complete before the deadline."""


class TargetUnresolved(WatcherError):
    """No strategy produced a target chat yet. Recoverable: wait and retry."""


class TargetInvalid(WatcherError):
    """A candidate is not a chat thread or is the platform default chat."""

    def __init__(self, message: str, location: str | None = None):
        super().__init__(message)
        self.location = location


class SessionExpired(WatcherError):
    """The page was redirected to a login view while watching."""


class ObserverInstallFailure(WatcherError):
    """The in-page mutation observer could not be installed."""


class PersistenceFailure(WatcherError):
    """The bind state file could not be written or removed."""
