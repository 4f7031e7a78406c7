"""The browser session the watcher drives.

One ``RenderingSession`` wraps one Playwright persistent Chromium context and
the page currently being watched. The supervisor owns it; other pages of the
same context only become active through ``adopt``.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
from pathlib import Path
from typing import Any

from avito_watcher.errors import SessionStartFailure
from avito_watcher.targets.classifier import is_login_location, is_messenger_location

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/133.0.0.0 Safari/537.36"
)
VIEWPORT = {"width": 1280, "height": 800}
LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--lang=ru-RU,ru",
    "--window-size=1280,800",
]

# Any of these means the conversation view with its composer is rendered.
CHAT_SURFACE_SELECTOR = ", ".join([
    '[role="log"]',
    "textarea",
    '[contenteditable="true"]',
    '[data-marker*="messenger"] form',
])

CONVERSATION_TITLE_SELECTORS = [
    '[data-marker="header/title"]',
    '[data-marker*="channel-header"] [data-marker*="name"]',
    'header [data-marker*="title"]',
    "main header h1",
    "main header h2",
    "main h1",
]

_COOKIE_KEYS = ("name", "value", "url", "domain", "path", "expires", "httpOnly", "secure", "sameSite")
_SAME_SITE = {"strict": "Strict", "lax": "Lax", "none": "None", "no_restriction": "None"}


# ── Cookies ─────────────────────────────────────────────────────────


def load_cookie_payload(config: Any) -> str | None:
    """Raw cookie JSON from the first configured source (JSON, base64, file)."""
    if config.cookies_json:
        return config.cookies_json

    if config.cookies_b64:
        try:
            return base64.b64decode(config.cookies_b64, validate=False).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as exc:
            logger.warning("AVITO_COOKIES_B64 is not valid base64 UTF-8: %s", exc)

    if config.cookies_path:
        try:
            return Path(config.cookies_path).read_text(encoding="utf-8")
        except OSError as exc:
            logger.warning("Cannot read cookies file %s: %s", config.cookies_path, exc)

    return None


def normalize_cookies(raw: Any) -> list[dict[str, Any]]:
    """Convert exported cookies (DevTools, browser extensions) to Playwright's shape.

    Entries without name/value or without domain/url are dropped.
    """
    if not isinstance(raw, list):
        return []

    cookies = []
    for entry in raw:
        if not isinstance(entry, dict) or not entry.get("name") or "value" not in entry:
            continue

        cookie = {k: entry[k] for k in _COOKIE_KEYS if k in entry and entry[k] is not None}
        if "expires" not in cookie and isinstance(entry.get("expirationDate"), int | float):
            cookie["expires"] = entry["expirationDate"]
        if isinstance(cookie.get("expires"), int | float) and cookie["expires"] <= 0:
            del cookie["expires"]

        same_site = str(cookie.get("sameSite", "")).lower()
        if same_site in _SAME_SITE:
            cookie["sameSite"] = _SAME_SITE[same_site]
        else:
            cookie.pop("sameSite", None)

        if "url" not in cookie:
            if "domain" not in cookie:
                continue
            cookie.setdefault("path", "/")
        cookie["value"] = str(cookie["value"])
        cookies.append(cookie)
    return cookies


class RenderingSession:
    """Exclusively owned browser context plus its active page."""

    def __init__(self, config: Any, sink: Any | None = None):
        self.config = config
        self.sink = sink
        self.logger = logging.getLogger(self.__class__.__name__)
        self.authenticated = False
        self.last_messenger_location: str | None = None
        self._playwright = None
        self._context = None
        self._page = None
        self._adoptions: set[asyncio.Future] = set()

    # ── Lifecycle ───────────────────────────────────────────────────

    @property
    def is_alive(self) -> bool:
        return self._context is not None and self._page is not None and not self._page.is_closed()

    @property
    def page(self) -> Any:
        if self._page is None:
            raise SessionStartFailure("Page not initialized")
        return self._page

    @property
    def context(self) -> Any:
        return self._context

    @property
    def location(self) -> str | None:
        if self._page is None:
            return None
        try:
            return self._page.url
        except Exception:
            return None

    async def start(self) -> None:
        """Launch the persistent context and prepare the first page.

        Raises:
            SessionStartFailure: On any launch or setup error.
        """
        from playwright.async_api import async_playwright

        cfg = self.config
        try:
            self._playwright = await async_playwright().start()
            Path(cfg.profile_dir).mkdir(parents=True, exist_ok=True)

            launch_kwargs: dict[str, Any] = {
                "user_data_dir": str(cfg.profile_dir),
                "headless": cfg.headless,
                "user_agent": USER_AGENT,
                "viewport": VIEWPORT,
                "locale": "ru-RU",
                "args": LAUNCH_ARGS,
            }
            if cfg.executable_path:
                launch_kwargs["executable_path"] = cfg.executable_path

            self._context = await self._playwright.chromium.launch_persistent_context(**launch_kwargs)
            self._context.set_default_navigation_timeout(cfg.nav_timeout * 1000)
            self._context.on("page", self._on_new_page)

            self._page = self._context.pages[0] if self._context.pages else await self._context.new_page()
            await self._load_cookies()
        except SessionStartFailure:
            raise
        except Exception as exc:
            await self.close(grace=1.0)
            raise SessionStartFailure(f"Browser start failed: {exc}") from exc

        self._status("info", f"Browser started (headless={str(cfg.headless).lower()})")

    async def close(self, grace: float | None = None) -> None:
        """Close the context within ``grace`` seconds, then stop the driver regardless."""
        grace = self.config.close_grace if grace is None else grace
        context, playwright = self._context, self._playwright
        self._context = None
        self._page = None
        self._playwright = None
        self.authenticated = False

        if context is not None:
            try:
                await asyncio.wait_for(context.close(), timeout=grace)
            except asyncio.TimeoutError:
                self.logger.warning("Browser did not close within %.1fs, forcing driver stop", grace)
            except Exception as exc:
                self.logger.debug("Error closing browser context: %s", exc)

        if playwright is not None:
            try:
                await playwright.stop()
            except Exception as exc:
                self.logger.debug("Error stopping Playwright: %s", exc)

    async def _load_cookies(self) -> None:
        payload = load_cookie_payload(self.config)
        if not payload:
            return
        try:
            cookies = normalize_cookies(json.loads(payload))
            if not cookies:
                return
            await self._context.add_cookies(cookies)
        except Exception as exc:
            self._status("warn", f"Failed to load cookies: {exc}")
            return
        self._status("info", f"Loaded {len(cookies)} auth cookies")

    # ── Page ownership ──────────────────────────────────────────────

    def adopt(self, page: Any) -> None:
        """Make ``page`` the active page."""
        if page is self._page:
            return
        self._page = page
        self._remember(self.location)
        self.logger.info("Adopted page %s", self.location)

    def _on_new_page(self, page: Any) -> None:
        task = asyncio.ensure_future(self._maybe_adopt(page))
        self._adoptions.add(task)
        task.add_done_callback(self._adoptions.discard)

    async def _maybe_adopt(self, page: Any) -> None:
        try:
            await page.wait_for_load_state("domcontentloaded")
        except Exception:
            return
        if self._context is not None and is_messenger_location(page.url):
            self.adopt(page)

    def _remember(self, location: str | None) -> None:
        if is_messenger_location(location):
            self.last_messenger_location = location

    def messenger_location(self) -> str | None:
        """Best bindable messenger location among the open pages.

        The active page wins; otherwise the first open messenger tab is
        adopted; otherwise the last messenger location seen.
        """
        current = self.location
        if is_messenger_location(current):
            self._remember(current)
            return current

        if self._context is not None:
            for page in list(self._context.pages):
                try:
                    url = page.url
                except Exception:
                    continue
                if is_messenger_location(url):
                    self.adopt(page)
                    return url

        return self.last_messenger_location

    # ── Navigation and reading ──────────────────────────────────────

    async def goto(self, location: str) -> Any:
        """Navigate the active page; returns the Playwright response (may be None)."""
        response = await self.page.goto(location, wait_until="domcontentloaded")
        self._remember(self.location)
        return response

    async def settle(self, delay: float = 1.2, idle_timeout: float = 15.0) -> None:
        """Give the SPA time to render after a navigation."""
        await asyncio.sleep(delay)
        try:
            await self.page.wait_for_load_state("networkidle", timeout=idle_timeout * 1000)
        except Exception:
            self.logger.debug("Network did not go idle within %.0fs", idle_timeout)
        self._remember(self.location)

    async def wait_for_chat_surface(self, timeout: float = 15.0) -> bool:
        try:
            await self.page.wait_for_selector(CHAT_SURFACE_SELECTOR, timeout=timeout * 1000)
            return True
        except Exception:
            self.logger.debug("Chat surface not visible after %.0fs", timeout)
            return False

    async def body_text(self) -> str:
        try:
            return await self.page.evaluate("() => (document.body && document.body.innerText) || ''")
        except Exception:
            return ""

    async def conversation_title(self) -> str | None:
        """Name shown in the open conversation header, else the document title."""
        page = self.page
        for selector in CONVERSATION_TITLE_SELECTORS:
            try:
                element = await page.query_selector(selector)
                if element:
                    text = (await element.inner_text()).strip()
                    if text:
                        return " ".join(text.split())
            except Exception:
                continue
        try:
            title = (await page.title()).strip()
        except Exception:
            return None
        return title or None

    def _status(self, level: str, message: str) -> None:
        if self.sink is not None:
            self.sink.status(level, message)
        else:
            self.logger.info(message)
