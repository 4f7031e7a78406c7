"""Getting the session into the messenger while logged in."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from avito_watcher.errors import AuthenticationRequired, AuthenticationTimeout, WatcherError
from avito_watcher.targets.classifier import entry_urls, is_login_location
from avito_watcher.watchers.base_watcher import sleep_until_stopped
from avito_watcher.watchers.ranking import best_candidate, candidate_locator, collect_candidates

NOT_FOUND_MARKERS = ("Такой страницы", "не существует", "Ошибка 404")

LOGIN_INPUT_SELECTORS = [
    'input[name="login"]',
    'input[data-marker*="login"]',
    'input[type="tel"]',
    'input[type="email"]',
    'input[autocomplete="username"]',
]

PASSWORD_INPUT_SELECTORS = [
    'input[name="password"]',
    'input[data-marker*="password"]',
    'input[type="password"]',
]

SUBMIT_SELECTOR = 'button, [role="button"], input[type="submit"]'
SUBMIT_HINTS = ["войти", "вход", "продолжить", "sign in", "log in"]

LOGIN_CHECK_INTERVAL = 1.5


def looks_like_not_found(status: int | None, body_text: str) -> bool:
    if status == 404:
        return True
    return any(marker in body_text for marker in NOT_FOUND_MARKERS)


class Authenticator:
    """Opens the messenger and makes sure the session is logged in.

    Order of attempts: saved profile/cookies, configured credentials,
    then (headed only) a human finishing the login in the browser window.
    """

    def __init__(self, session: Any, config: Any, sink: Any, stop_event: asyncio.Event):
        self.session = session
        self.config = config
        self.sink = sink
        self.stop_event = stop_event
        self.logger = logging.getLogger(self.__class__.__name__)

    async def authenticate(self) -> str:
        """Open the messenger; returns the location it opened at.

        Raises:
            AuthenticationRequired: Headless and still on the login view.
            AuthenticationTimeout: Login was not completed in time.
            WatcherError: Every messenger entry URL looked like a 404.
        """
        for url in entry_urls():
            response = await self.session.goto(url)
            await self.session.settle()

            status = None
            if response is not None:
                try:
                    status = response.status
                except Exception:
                    status = None
            if looks_like_not_found(status, await self.session.body_text()):
                self.sink.status("warn", f"Messenger URL returned 404: {url}")
                continue

            if is_login_location(self.session.location):
                await self._login()

            self.session.authenticated = True
            location = self.session.location
            self.sink.status("info", f"Messenger opened: {location}")
            return location

        raise WatcherError("Cannot open Avito messenger: all candidate URLs look like 404")

    async def _login(self) -> None:
        if self.config.has_credentials:
            self.sink.status("info", "Login page detected, submitting configured credentials")
            if await self._submit_credentials():
                if await self._wait_until_logged_in(self.config.verification_timeout):
                    return
                self.logger.warning(
                    "Still on login view %.0fs after submitting credentials", self.config.verification_timeout
                )
            else:
                self.logger.warning("Login form not found, cannot submit credentials")

        if self.config.headless:
            message = (
                "AUTH_REQUIRED (headless). Provide cookies via AVITO_COOKIES_* "
                "or run once with HEADLESS=false to login."
            )
            raise AuthenticationRequired(message)

        self.sink.status(
            "warn",
            "Login required. Complete the login (and SMS code) in the browser window.",
        )
        if not await self._wait_until_logged_in(self.config.manual_login_timeout):
            raise AuthenticationTimeout("Login timeout (manual auth not completed)")

    async def _submit_credentials(self) -> bool:
        page = self.session.page
        if not await self._fill_first(page, LOGIN_INPUT_SELECTORS, self.config.login):
            return False

        if not await self._fill_first(page, PASSWORD_INPUT_SELECTORS, self.config.password):
            # Some flows ask for the login alone first.
            await self._click_submit(page)
            await asyncio.sleep(1.5)
            if not await self._fill_first(page, PASSWORD_INPUT_SELECTORS, self.config.password):
                return False

        await self._click_submit(page)
        return True

    async def _fill_first(self, page: Any, selectors: list[str], value: str) -> bool:
        for selector in selectors:
            try:
                locator = page.locator(selector).first
                if await locator.count() and await locator.is_visible():
                    await locator.fill(value)
                    self.logger.debug("Filled %s", selector)
                    return True
            except Exception:
                self.logger.debug("Input %s not usable", selector, exc_info=True)
        return False

    async def _click_submit(self, page: Any) -> None:
        candidates = await collect_candidates(page, SUBMIT_SELECTOR)
        best = best_candidate(candidates, SUBMIT_HINTS)
        if best is not None:
            try:
                await candidate_locator(page, SUBMIT_SELECTOR, best).click()
                return
            except Exception as exc:
                self.logger.debug("Submit click failed (%s), pressing Enter", exc)
        await page.keyboard.press("Enter")

    async def _wait_until_logged_in(self, timeout: float) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if not is_login_location(self.session.location):
                return True
            if await sleep_until_stopped(self.stop_event, LOGIN_CHECK_INTERVAL):
                return False
        return not is_login_location(self.session.location)
