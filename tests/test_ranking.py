"""Tests for element candidate ranking."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

from avito_watcher.watchers.ranking import (
    ElementCandidate,
    best_candidate,
    candidate_locator,
    collect_candidates,
    rank_candidates,
    score,
)


def _c(index: int, text: str, visible: bool = True, clickable: bool = False, tag: str = "div") -> ElementCandidate:
    return ElementCandidate(index=index, tag=tag, text=text, visible=visible, clickable=clickable)


# ── score ───────────────────────────────────────────────────────────


class TestScore:
    def test_invisible_excluded(self) -> None:
        assert score(_c(0, "Войти", visible=False), ["войти"]) is None

    def test_no_hint_match_excluded(self) -> None:
        assert score(_c(0, "Отмена", clickable=True), ["войти"]) is None

    def test_without_hints_only_clickable_counts(self) -> None:
        assert score(_c(0, "Что угодно", clickable=True)) == 2
        assert score(_c(0, "Что угодно")) == 0

    def test_exact_match_bonus(self) -> None:
        assert score(_c(0, " Войти ", clickable=True), ["войти"]) == 2 + 3 + 1

    def test_partial_match(self) -> None:
        assert score(_c(0, "Войти по телефону"), ["войти"]) == 1

    def test_multiple_hints(self) -> None:
        assert score(_c(0, "Продолжить и войти"), ["войти", "продолжить"]) == 2


# ── rank_candidates ─────────────────────────────────────────────────


class TestRankCandidates:
    def test_score_then_length_then_order(self) -> None:
        candidates = [
            _c(0, "Войти через соцсети", clickable=True),
            _c(1, "Войти", clickable=True),
            _c(2, "Войти сейчас", clickable=True),
            _c(3, "Войти ещё", clickable=True),
        ]
        ranked = rank_candidates(candidates, ["войти"])
        assert [c.index for c in ranked] == [1, 3, 2, 0]

    def test_document_order_breaks_ties(self) -> None:
        ranked = rank_candidates([_c(5, "abc"), _c(2, "xyz")])
        assert [c.index for c in ranked] == [2, 5]

    def test_best_candidate_none(self) -> None:
        assert best_candidate([_c(0, "hidden", visible=False)]) is None

    def test_best_candidate(self) -> None:
        best = best_candidate([_c(0, "Иван Петров"), _c(1, "Иван", clickable=True)], ["Иван"])
        assert best is not None
        assert best.index == 1


# ── Page access ─────────────────────────────────────────────────────


class TestCollectCandidates:
    async def test_builds_candidates(self) -> None:
        page = MagicMock()
        page.evaluate = AsyncMock(
            return_value=[
                {"index": 0, "tag": "a", "text": "Иван", "href": "https://x/1", "visible": True, "clickable": True},
                {"index": 1, "tag": "div", "text": None, "href": None, "visible": False, "clickable": False},
            ]
        )
        candidates = await collect_candidates(page, "a", root="aside")
        assert candidates[0] == ElementCandidate(0, "a", "Иван", "https://x/1", True, True)
        assert candidates[1].text == ""
        assert page.evaluate.await_args.args[1] == ["a", "aside"]

    async def test_evaluate_failure_gives_empty_list(self) -> None:
        page = MagicMock()
        page.evaluate = AsyncMock(side_effect=RuntimeError("detached"))
        assert await collect_candidates(page, "a") == []

    def test_candidate_locator_without_root(self) -> None:
        page = MagicMock()
        candidate_locator(page, "button", _c(3, "Войти"))
        page.locator.assert_called_once_with("button")
        page.locator.return_value.nth.assert_called_once_with(3)
