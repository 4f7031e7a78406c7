"""Classification of messenger locations.

Pure helpers: no I/O, no browser. Everything that decides whether a URL is a
chat thread, a search view or the messenger landing page lives here.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import NamedTuple
from urllib.parse import parse_qs, urlsplit

ORIGIN = "https://www.avito.ru"

MESSENGER_ENTRY_PATHS = ("/profile/messenger", "/messenger")

_CHANNEL_PATH = re.compile(r"^/(?:profile/)?messenger/channel/[^/?#]+/?$")
_ROOT_PATH = re.compile(r"^/(?:profile/)?messenger/?$")
_LOGIN_MARKERS = ("login", "/auth/")

# Chats the platform opens by itself (support bot, notifications).
DEFAULT_CONVERSATION_TITLES = (
    "Поддержка Авито",
    "Авито",
    "Avito",
    "Avito Support",
    "Служба поддержки",
    "Поддержка",
    "Support",
    "Уведомления",
    "Авито Доставка",
)


class TargetKind(str, Enum):
    CHANNEL = "channel"
    SEARCH = "search"
    MESSENGER_ROOT = "messenger-root"
    UNRELATED = "unrelated"
    NONE = "none"


class Classification(NamedTuple):
    kind: TargetKind
    location: str | None


def absolutize(location: str | None) -> str | None:
    """Strip whitespace and resolve a site-relative path against ``ORIGIN``."""
    if location is None:
        return None
    text = location.strip()
    if not text:
        return None
    if text.startswith("//"):
        return "https:" + text
    if text.startswith("/"):
        return ORIGIN + text
    return text


def _is_avito_host(host: str) -> bool:
    host = host.lower()
    return host == "avito.ru" or host.endswith(".avito.ru")


def classify(location: str | None) -> Classification:
    """Tell what kind of page ``location`` points at.

    Never raises. Relative paths are made absolute first; the returned
    location is the normalized form (or None for ``none``).
    """
    normalized = absolutize(location)
    if normalized is None:
        return Classification(TargetKind.NONE, None)

    try:
        parts = urlsplit(normalized)
    except ValueError:
        return Classification(TargetKind.NONE, None)

    if parts.scheme not in ("http", "https") or not parts.netloc or not parts.hostname:
        return Classification(TargetKind.NONE, None)

    if _is_avito_host(parts.hostname):
        if _CHANNEL_PATH.match(parts.path):
            return Classification(TargetKind.CHANNEL, normalized)
        if _ROOT_PATH.match(parts.path):
            query = parse_qs(parts.query, keep_blank_values=True)
            if "q" in query:
                return Classification(TargetKind.SEARCH, normalized)
            return Classification(TargetKind.MESSENGER_ROOT, normalized)

    return Classification(TargetKind.UNRELATED, normalized)


def is_messenger_location(location: str | None) -> bool:
    return classify(location).kind in (
        TargetKind.CHANNEL,
        TargetKind.SEARCH,
        TargetKind.MESSENGER_ROOT,
    )


def is_login_location(location: str | None) -> bool:
    """True when the page was redirected to a login or auth view."""
    if not location:
        return False
    lowered = location.lower()
    return any(marker in lowered for marker in _LOGIN_MARKERS)


def _normalize_title(title: str) -> str:
    return " ".join(title.split()).casefold()


_DEFAULT_TITLES = frozenset(_normalize_title(t) for t in DEFAULT_CONVERSATION_TITLES)


def is_default_conversation(title: str | None) -> bool:
    if not title:
        return False
    return _normalize_title(title) in _DEFAULT_TITLES


def entry_urls() -> list[str]:
    return [ORIGIN + path for path in MESSENGER_ENTRY_PATHS]
