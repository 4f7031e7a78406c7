"""Runtime configuration for the watcher, read from environment variables.

Entry points call ``load_dotenv`` on ``config/.env`` first (project convention),
then build a ``WatcherConfig`` with ``WatcherConfig.from_env()``.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

ENV_PATH = Path(__file__).resolve().parents[1] / "config" / ".env"


def _text(env: Mapping[str, str], name: str) -> str | None:
    value = env.get(name, "").strip()
    return value or None


def _flag(env: Mapping[str, str], name: str, default: bool) -> bool:
    value = env.get(name, "").strip().lower()
    if not value:
        return default
    return value in ("1", "true", "yes", "on")


def _seconds_from_ms(env: Mapping[str, str], name: str, default_ms: int) -> float:
    raw = env.get(name, "").strip()
    if not raw:
        return default_ms / 1000
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Invalid %s=%r, using default %dms", name, raw, default_ms)
        return default_ms / 1000
    if value < 0:
        logger.warning("Negative %s=%r, using default %dms", name, raw, default_ms)
        return default_ms / 1000
    return value / 1000


def _integer(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid %s=%r, using default %d", name, raw, default)
        return default


@dataclass
class WatcherConfig:
    """All tunables of the watcher. Durations are in seconds."""

    headless: bool = False
    executable_path: str | None = None
    profile_dir: Path = Path(".avito-profile")
    nav_timeout: float = 60.0

    target_url: str | None = None
    contact_name: str | None = None
    auto_discover: bool = False
    auto_bind_on_open: bool = True
    scan_steps: int = 60

    poll_interval: float = 1.5
    auth_check_interval: float = 1.0
    observer_grace: float = 1.5
    restart_cooldown: float = 2.5
    resolve_retry: float = 5.0
    close_grace: float = 5.0

    login: str | None = None
    password: str | None = None
    verification_timeout: float = 120.0
    manual_login_timeout: float = 300.0

    cookies_json: str | None = None
    cookies_b64: str | None = None
    cookies_path: str | None = None

    noise_file: Path | None = None
    bind_file: Path = Path(".avito-target.json")
    debug_dir: Path = Path("debug")
    logs_dir: Path = Path("logs")
    replay_size: int = 50

    @property
    def has_credentials(self) -> bool:
        return bool(self.login and self.password)

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> WatcherConfig:
        """Build a config from ``env`` (defaults to ``os.environ``)."""
        env = os.environ if env is None else env
        noise_file = _text(env, "NOISE_DENYLIST_PATH")

        return cls(
            headless=_flag(env, "HEADLESS", False),
            executable_path=_text(env, "BROWSER_EXECUTABLE_PATH")
            or _text(env, "PUPPETEER_EXECUTABLE_PATH"),
            profile_dir=Path(_text(env, "BROWSER_PROFILE_DIR") or ".avito-profile"),
            nav_timeout=_seconds_from_ms(env, "NAV_TIMEOUT_MS", 60000),
            target_url=_text(env, "TARGET_CHAT_URL"),
            contact_name=_text(env, "TARGET_CONTACT"),
            auto_discover=_flag(env, "AUTO_DISCOVER", False),
            auto_bind_on_open=_flag(env, "AUTO_BIND_ON_OPEN", True),
            scan_steps=max(1, _integer(env, "CHAT_SCAN_STEPS", 60)),
            poll_interval=_seconds_from_ms(env, "POLL_INTERVAL_MS", 1500),
            auth_check_interval=_seconds_from_ms(env, "AUTH_CHECK_INTERVAL_MS", 1000),
            observer_grace=_seconds_from_ms(env, "OBSERVER_GRACE_MS", 1500),
            restart_cooldown=_seconds_from_ms(env, "RESTART_COOLDOWN_MS", 2500),
            resolve_retry=_seconds_from_ms(env, "RESOLVE_RETRY_MS", 5000),
            close_grace=_seconds_from_ms(env, "CLOSE_GRACE_MS", 5000),
            login=_text(env, "AVITO_LOGIN"),
            password=_text(env, "AVITO_PASSWORD"),
            verification_timeout=_seconds_from_ms(env, "AUTH_VERIFICATION_TIMEOUT_MS", 120000),
            manual_login_timeout=_seconds_from_ms(env, "MANUAL_LOGIN_TIMEOUT_MS", 300000),
            cookies_json=_text(env, "AVITO_COOKIES_JSON"),
            cookies_b64=_text(env, "AVITO_COOKIES_B64"),
            cookies_path=_text(env, "AVITO_COOKIES_PATH"),
            noise_file=Path(noise_file) if noise_file else None,
            bind_file=Path(_text(env, "BIND_FILE") or ".avito-target.json"),
            debug_dir=Path(_text(env, "DEBUG_DIR") or "debug"),
            logs_dir=Path(_text(env, "LOGS_DIR") or "logs"),
            replay_size=max(1, _integer(env, "REPLAY_SIZE", 50)),
        )


def configure_logging(stream=None) -> None:
    """Apply the project log format with the level from ``LOG_LEVEL``."""
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        stream=stream,
    )
