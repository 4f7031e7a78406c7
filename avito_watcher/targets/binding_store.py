"""Persistence of the single bound chat thread.

The record lives in a small JSON file (``{"url", "boundAt", "reason"}``) so a
binding survives restarts. Reading fails soft; writing is atomic.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path

from avito_watcher.errors import PersistenceFailure, TargetInvalid
from avito_watcher.targets.classifier import TargetKind, absolutize, classify
from avito_watcher.utils.files import write_json_atomic
from avito_watcher.utils.timestamps import EPOCH_ISO, now_iso, parse_iso

logger = logging.getLogger(__name__)


def _is_timestamp(value: object) -> bool:
    if not isinstance(value, str) or not value:
        return False
    try:
        parse_iso(value)
    except ValueError:
        return False
    return True


@dataclass(frozen=True)
class Binding:
    location: str
    bound_at: str
    reason: str = ""

    @classmethod
    def create(cls, location: str, reason: str) -> Binding:
        return cls(location=absolutize(location) or location, bound_at=now_iso(), reason=reason)

    def to_dict(self) -> dict[str, str]:
        return {"url": self.location, "boundAt": self.bound_at, "reason": self.reason}


class BindingStore:
    """Reads and writes the bind state file at ``path``."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._fallback: Binding | None = None
        self._fallback_disk: tuple[int, int, int] | None = None

    def _disk_signature(self) -> tuple[int, int, int] | None:
        try:
            st = self.path.stat()
        except OSError:
            return None
        return (st.st_ino, st.st_mtime_ns, st.st_size)

    def read(self) -> Binding | None:
        """Return the stored binding, or None if there is no valid one.

        After a failed write the binding handed to ``write`` is returned
        instead, until the file is changed by someone else.
        """
        if self._fallback is not None:
            if self._disk_signature() == self._fallback_disk:
                return self._fallback
            logger.info("Bind file %s changed since the failed write, dropping in-memory binding", self.path)
            self._fallback = None

        if not self.path.exists():
            return None

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Cannot read bind file %s: %s", self.path, exc)
            return None
        except json.JSONDecodeError:
            logger.warning("Bind file %s is not valid JSON, ignoring", self.path)
            return None

        if not isinstance(data, dict):
            logger.warning("Bind file %s does not hold an object, ignoring", self.path)
            return None

        url = data.get("url")
        if not isinstance(url, str) or not url.strip():
            logger.debug("Bind file %s has no url", self.path)
            return None

        kind, location = classify(url)
        if kind is not TargetKind.CHANNEL:
            logger.warning("Bound url %s is not a chat thread (%s), ignoring", url, kind.value)
            return None

        bound_at = data.get("boundAt")
        reason = data.get("reason")
        return Binding(
            location=location,
            bound_at=bound_at if _is_timestamp(bound_at) else EPOCH_ISO,
            reason=reason if isinstance(reason, str) else "",
        )

    def write(self, binding: Binding) -> None:
        """Persist ``binding``.

        Raises:
            TargetInvalid: If the location is not a chat thread.
            PersistenceFailure: If the file cannot be written. The binding is
                still kept in memory and returned by ``read``
                until the file changes.
        """
        kind, location = classify(binding.location)
        if kind is not TargetKind.CHANNEL:
            raise TargetInvalid(
                f"Refusing to bind {binding.location!r}: not a chat thread ({kind.value})",
                location=binding.location,
            )
        if location != binding.location:
            binding = Binding(location=location, bound_at=binding.bound_at, reason=binding.reason)

        try:
            write_json_atomic(self.path, binding.to_dict())
        except OSError as exc:
            self._fallback = binding
            self._fallback_disk = self._disk_signature()
            raise PersistenceFailure(f"Cannot write bind file {self.path}: {exc}") from exc

        self._fallback = None
        logger.info("Bound %s (%s)", binding.location, binding.reason or "no reason")

    def clear(self) -> None:
        """Forget the binding. Clearing twice is fine."""
        self._fallback = None
        try:
            self.path.unlink(missing_ok=True)
        except OSError as exc:
            raise PersistenceFailure(f"Cannot remove bind file {self.path}: {exc}") from exc
        logger.info("Binding cleared")
