"""Choosing which chat thread to watch.

The resolver walks an ordered list of strategies and returns the first
candidate location. It does not validate: the supervisor navigates to the
candidate and classifies where it actually lands.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from avito_watcher.targets.binding_store import BindingStore
from avito_watcher.targets.classifier import ORIGIN, TargetKind, absolutize, classify
from avito_watcher.watchers.ranking import (
    best_candidate,
    candidate_locator,
    collect_candidates,
)

logger = logging.getLogger(__name__)

# Sidebar rows that link to a chat thread, newest layout first.
SIDEBAR_SELECTORS = [
    'a[href*="/messenger/channel/"]',
    '[data-marker="channel"] a',
    '[data-marker*="channel"]',
    'div[role="listitem"]',
]

SIDEBAR_SCROLL_ROOTS = [
    '[data-marker="channels-list"]',
    '[data-marker*="channels"]',
    "aside",
]


class ResolveStrategy:
    """One way of producing a candidate location."""

    name = "strategy"

    async def candidate(self, session: Any | None) -> str | None:
        raise NotImplementedError


class OverrideStrategy(ResolveStrategy):
    """Location fixed by the operator in the environment."""

    name = "override"

    def __init__(self, location: str | None):
        self.location = absolutize(location)

    async def candidate(self, session: Any | None) -> str | None:
        return self.location


class BindingStrategy(ResolveStrategy):
    name = "bind"

    def __init__(self, store: BindingStore):
        self.store = store

    async def candidate(self, session: Any | None) -> str | None:
        binding = self.store.read()
        return binding.location if binding else None


class SidebarContactStrategy(ResolveStrategy):
    """Find the chat with ``contact_name`` in the messenger sidebar.

    Scrolls the chat list up to ``scan_steps`` times. Prefers a row that links
    straight to a thread; otherwise clicks the best row and reports where the
    page ended up.
    """

    name = "discovery"

    def __init__(self, contact_name: str, scan_steps: int = 60, step_delay: float = 0.4):
        self.contact_name = contact_name
        self.scan_steps = max(1, scan_steps)
        self.step_delay = step_delay

    async def candidate(self, session: Any | None) -> str | None:
        if session is None or not session.is_alive:
            return None
        page = session.page

        if classify(page.url).kind is not TargetKind.MESSENGER_ROOT:
            await session.goto(ORIGIN + "/profile/messenger")
            await session.settle()

        for step in range(self.scan_steps):
            for selector in SIDEBAR_SELECTORS:
                candidates = await collect_candidates(page, selector)
                best = best_candidate(candidates, [self.contact_name])
                if best is None:
                    continue

                logger.debug("Step %d: sidebar match %r via %s", step, best.text[:60], selector)
                if best.href and classify(best.href).kind is TargetKind.CHANNEL:
                    return classify(best.href).location

                try:
                    await candidate_locator(page, selector, best).click()
                    await session.settle()
                except Exception as exc:
                    logger.debug("Clicking sidebar row failed: %s", exc)
                    continue
                kind, location = classify(page.url)
                if kind is TargetKind.CHANNEL:
                    return location

            if not await self._scroll(page):
                break
            await asyncio.sleep(self.step_delay)

        logger.debug("Contact %r not found after %d scroll steps", self.contact_name, self.scan_steps)
        return None

    async def _scroll(self, page: Any) -> bool:
        """Scroll the chat list down one screen. False once nothing moves."""
        for root in SIDEBAR_SCROLL_ROOTS:
            try:
                moved = await page.evaluate(
                    """(root) => {
                      const el = document.querySelector(root);
                      if (!el) return null;
                      const before = el.scrollTop;
                      el.scrollTop = before + el.clientHeight;
                      return el.scrollTop !== before;
                    }""",
                    root,
                )
            except Exception:
                continue
            if moved is not None:
                return bool(moved)
        try:
            await page.mouse.wheel(0, 800)
            return True
        except Exception:
            return False


class TargetResolver:
    """First-match chain over ``strategies``."""

    def __init__(self, strategies: list[ResolveStrategy]):
        self.strategies = strategies
        self.last_strategy: str | None = None

    @classmethod
    def from_config(cls, config: Any, store: BindingStore) -> TargetResolver:
        strategies: list[ResolveStrategy] = []
        if config.target_url:
            strategies.append(OverrideStrategy(config.target_url))
        strategies.append(BindingStrategy(store))
        if config.auto_discover and config.contact_name:
            strategies.append(SidebarContactStrategy(config.contact_name, config.scan_steps))
        return cls(strategies)

    async def resolve(self, session: Any | None = None) -> str | None:
        """Return the first candidate location, or None if nothing is known yet."""
        self.last_strategy = None
        for strategy in self.strategies:
            location = await strategy.candidate(session)
            if location:
                self.last_strategy = strategy.name
                logger.debug("Resolved %s via %s", location, strategy.name)
                return location
        return None
