"""Ranking of clickable page elements by visible text.

The scoring is pure so it can be tested without a browser; only
``collect_candidates`` touches the page.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

CLICKABLE_BONUS = 2
EXACT_MATCH_BONUS = 3
HINT_BONUS = 1


@dataclass(frozen=True)
class ElementCandidate:
    index: int
    tag: str
    text: str
    href: str | None = None
    visible: bool = True
    clickable: bool = False


def _norm(text: str) -> str:
    return " ".join(text.split()).casefold()


def score(candidate: ElementCandidate, hints: Sequence[str] = ()) -> int | None:
    """Score one candidate, or None when it must be excluded."""
    if not candidate.visible:
        return None

    text = _norm(candidate.text)
    normalized_hints = [_norm(h) for h in hints if h and h.strip()]
    matched = [h for h in normalized_hints if h in text]
    if normalized_hints and not matched:
        return None

    points = CLICKABLE_BONUS if candidate.clickable else 0
    if any(text == h for h in normalized_hints):
        points += EXACT_MATCH_BONUS
    points += HINT_BONUS * len(matched)
    return points


def rank_candidates(
    candidates: Iterable[ElementCandidate],
    hints: Sequence[str] = (),
) -> list[ElementCandidate]:
    """Order candidates best first: score, then shorter text, then document order."""
    scored = []
    for candidate in candidates:
        points = score(candidate, hints)
        if points is not None:
            scored.append((points, candidate))
    scored.sort(key=lambda pair: (-pair[0], len(pair[1].text.strip()), pair[1].index))
    return [candidate for _, candidate in scored]


def best_candidate(
    candidates: Iterable[ElementCandidate],
    hints: Sequence[str] = (),
) -> ElementCandidate | None:
    ranked = rank_candidates(candidates, hints)
    return ranked[0] if ranked else None


_COLLECT_JS = """
([selector, root]) => {
  const scope = root ? document.querySelector(root) : document;
  if (!scope) return [];
  return Array.from(scope.querySelectorAll(selector)).map((el, index) => {
    const rect = el.getBoundingClientRect();
    const style = window.getComputedStyle(el);
    const visible = rect.width > 0 && rect.height > 0
      && style.visibility !== 'hidden' && style.display !== 'none';
    const tag = el.tagName.toLowerCase();
    const clickable = tag === 'a' || tag === 'button'
      || el.getAttribute('role') === 'button' || typeof el.onclick === 'function'
      || style.cursor === 'pointer';
    return {
      index,
      tag,
      text: (el.innerText || el.textContent || el.getAttribute('aria-label') || '').trim(),
      href: el.href || el.getAttribute('href') || null,
      visible,
      clickable,
    };
  });
}
"""


async def collect_candidates(page: Any, selector: str, root: str | None = None) -> list[ElementCandidate]:
    """Snapshot elements matching ``selector`` (inside ``root`` when given)."""
    try:
        raw = await page.evaluate(_COLLECT_JS, [selector, root])
    except Exception as exc:
        logger.debug("Candidate collection for %r failed: %s", selector, exc)
        return []

    candidates = []
    for item in raw or []:
        candidates.append(
            ElementCandidate(
                index=int(item.get("index", 0)),
                tag=str(item.get("tag", "")),
                text=str(item.get("text") or ""),
                href=item.get("href") or None,
                visible=bool(item.get("visible")),
                clickable=bool(item.get("clickable")),
            )
        )
    return candidates


def candidate_locator(page: Any, selector: str, candidate: ElementCandidate, root: str | None = None) -> Any:
    """Playwright locator pointing at ``candidate`` as collected."""
    if root:
        return page.locator(root).first.locator(selector).nth(candidate.index)
    return page.locator(selector).nth(candidate.index)
