"""Message text extraction, noise filtering and fingerprints.

Text coming out of the chat DOM is mixed with interface chrome: date
separators, clock stamps, delivery receipts, navigation labels. Only the last
line of a node's text is considered a message candidate, and it is dropped
when it matches the denylist.

The defaults below can be extended with a YAML file::

    exact:
      - "в архиве"
    patterns:
      - "^\\\\d+ непрочитанн"
    max_length: 4000
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 4000

DEFAULT_EXACT = frozenset(
    {
        # relative dates
        "сегодня",
        "вчера",
        "позавчера",
        "today",
        "yesterday",
        # weekdays
        "понедельник",
        "вторник",
        "среда",
        "четверг",
        "пятница",
        "суббота",
        "воскресенье",
        "monday",
        "tuesday",
        "wednesday",
        "thursday",
        "friday",
        "saturday",
        "sunday",
        # navigation and account chrome
        "войти",
        "регистрация",
        "вход и регистрация",
        "профиль",
        "настройки",
        "объявления",
        "мои объявления",
        "избранное",
        "сообщения",
        "уведомления",
        "разместить объявление",
        # delivery receipts and typing
        "прочитано",
        "доставлено",
        "отправлено",
        "не доставлено",
        "печатает…",
        "печатает...",
        "read",
        "delivered",
        "sent",
    }
)

_MONTHS = (
    "января|февраля|марта|апреля|мая|июня|июля|августа|сентября|октября|ноября|декабря"
)

DEFAULT_PATTERNS = (
    r"^\d{1,2}:\d{2}$",
    r"^\d{1,2}\.\d{1,2}(\.\d{2,4})?$",
    rf"^\d{{1,2}} ({_MONTHS})( \d{{4}})?$",
    rf"^(сегодня|вчера),? (в )?\d{{1,2}}:\d{{2}}$",
    rf"^\d{{1,2}} ({_MONTHS}),? (в )?\d{{1,2}}:\d{{2}}$",
    r"^был(а)? (в сети|онлайн).*$",
    r"^в сети$",
    r"^онлайн$",
)


def normalize_text(text: str) -> str:
    """Collapse runs of whitespace and trim."""
    return " ".join(text.split())


def fingerprint(sender: str, text: str) -> str:
    return f"{sender}|{text}".strip()


class NoiseFilter:
    """Decides whether a text candidate is a real message."""

    def __init__(
        self,
        exact: Iterable[str] = DEFAULT_EXACT,
        patterns: Iterable[str] = DEFAULT_PATTERNS,
        max_length: int = MAX_MESSAGE_LENGTH,
    ):
        self.exact = frozenset(normalize_text(e).casefold() for e in exact)
        self.patterns = [re.compile(p, re.IGNORECASE) for p in patterns]
        self.max_length = max_length

    @classmethod
    def from_file(cls, path: str | Path | None) -> NoiseFilter:
        """Defaults extended by the YAML file at ``path``.

        A missing or malformed file logs a warning and yields the defaults.
        """
        if path is None:
            return cls()

        file_path = Path(path)
        try:
            data = yaml.safe_load(file_path.read_text(encoding="utf-8")) or {}
        except FileNotFoundError:
            logger.warning("Noise denylist %s not found, using defaults", file_path)
            return cls()
        except (OSError, yaml.YAMLError) as exc:
            logger.warning("Cannot load noise denylist %s: %s", file_path, exc)
            return cls()

        if not isinstance(data, dict):
            logger.warning("Noise denylist %s must be a mapping, using defaults", file_path)
            return cls()

        extra_exact = [str(e) for e in data.get("exact") or []]
        extra_patterns = []
        for pattern in data.get("patterns") or []:
            try:
                re.compile(str(pattern))
            except re.error as exc:
                logger.warning("Skipping invalid noise pattern %r: %s", pattern, exc)
                continue
            extra_patterns.append(str(pattern))

        max_length = data.get("max_length", MAX_MESSAGE_LENGTH)
        if not isinstance(max_length, int) or max_length <= 0:
            logger.warning("Invalid max_length %r in %s, using %d", max_length, file_path, MAX_MESSAGE_LENGTH)
            max_length = MAX_MESSAGE_LENGTH

        logger.info(
            "Loaded noise denylist %s (%d extra entries, %d extra patterns)",
            file_path,
            len(extra_exact),
            len(extra_patterns),
        )
        return cls(
            exact=list(DEFAULT_EXACT) + extra_exact,
            patterns=list(DEFAULT_PATTERNS) + extra_patterns,
            max_length=max_length,
        )

    def is_noise(self, line: str) -> bool:
        text = normalize_text(line)
        if not text:
            return True
        if text.casefold() in self.exact:
            return True
        return any(p.search(text) for p in self.patterns)

    def extract(self, text: str | None, ignore: Iterable[str] = ()) -> str | None:
        """Message text carried by a DOM node's text, or None when it is noise.

        A bubble's text often ends with its clock stamp or read receipt, so
        lines are walked from the end and the first real one wins. Lines
        equal to an ``ignore`` entry (the sender's name header) are skipped.
        """
        if not text:
            return None
        if len(text) > self.max_length:
            return None
        skipped = {normalize_text(i).casefold() for i in ignore if i}
        for raw in reversed(text.splitlines()):
            line = normalize_text(raw)
            if self.is_noise(line) or line.casefold() in skipped:
                continue
            return line
        return None
