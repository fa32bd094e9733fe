from __future__ import annotations

import logging
import re
from typing import Iterable

from variation_engine.config.schema import ScoringSettings
from variation_engine.core.metadata import PageContext, PageElement, SelectorCandidate

logger = logging.getLogger(__name__)

_ID_SELECTOR = re.compile(r"^[a-zA-Z][\w-]*#[\w-]+$|^#")
_CLASS_SELECTOR = re.compile(r"\.\w+")
_COMBINATOR = re.compile(r"\S\s*[>+~]\s*\S|[\w\])*]\s+[\w.#\[*:]")


def selector_form(selector: str) -> str:
    """Classifies a selector as id, attribute, class, structural or tag."""

    stripped = selector.strip()
    if _ID_SELECTOR.search(stripped):
        return "id"
    if "[name=" in stripped or "[data-" in stripped:
        return "attribute"
    if _CLASS_SELECTOR.search(stripped):
        return "class"
    if _COMBINATOR.search(stripped):
        return "structural"
    return "tag"


_FORM_WEIGHTS = {
    "id": 0.4,
    "attribute": 0.35,
    "class": 0.3,
    "structural": 0.2,
    "tag": 0.1,
}


def score_selector(selector: str, match_count: int) -> float:
    if match_count <= 0 or not selector.strip():
        return 0.0
    score = _match_count_weight(match_count)
    score += _FORM_WEIGHTS[selector_form(selector)]
    if len(selector) < 30:
        score += 0.1
    return round(min(score, 1.0), 4)


def _match_count_weight(match_count: int) -> float:
    if match_count == 1:
        return 0.5
    if match_count <= 3:
        return 0.4
    if match_count <= 10:
        return 0.3
    if match_count <= 50:
        return 0.2
    return 0.1


def failure_reason(match_count: int) -> str:
    if match_count == 0:
        return "Selector matches no elements on page"
    if match_count > 50:
        return f"Selector too broad (matches {match_count} elements)"
    return "Selector confidence too low"


def rank_unique_selectors(options: Iterable[tuple[str, int]]) -> list[tuple[str, float]]:
    """Ranks selectors with exactly one match by score, then by length."""

    unique = [
        (selector, score_selector(selector, count))
        for selector, count in options
        if count == 1
    ]
    # sorted() is stable, so equal score and length keep input order.
    return sorted(unique, key=lambda item: (-item[1], len(item[0])))


class SelectorConfidenceScorer:
    """Scores page selectors and picks the least ambiguous one per element.

    Scores are cached by selector string for the lifetime of one page
    capture; supplying a context with a different ``capture_id`` drops
    the cache.
    """

    def __init__(self, settings: ScoringSettings | None = None) -> None:
        self.settings = settings or ScoringSettings()
        self._cache: dict[str, tuple[int, float]] = {}
        self._capture_id: str | None = None

    def score(self, selector: str, match_count: int) -> float:
        cached = self._cache.get(selector)
        if cached is not None and cached[0] == match_count:
            return cached[1]
        value = score_selector(selector, match_count)
        self._cache[selector] = (match_count, value)
        return value

    def is_valid(self, score: float) -> bool:
        return score >= self.settings.validity_threshold

    def observe_capture(self, context: PageContext) -> None:
        if context.capture_id != self._capture_id:
            if self._capture_id is not None:
                logger.debug("Page re-captured (%s), dropping selector score cache", context.capture_id)
            self._cache.clear()
            self._capture_id = context.capture_id

    def invalidate(self) -> None:
        self._cache.clear()
        self._capture_id = None

    def candidate(self, element: PageElement) -> SelectorCandidate:
        options = [(element.selector, element.match_count)]
        options.extend(
            (selector, count)
            for selector, count in element.alternatives.items()
            if selector != element.selector
        )
        ranked = rank_unique_selectors(options)
        if ranked:
            best_selector = ranked[0][0]
            best_count = 1
        else:
            best_selector, best_count = element.selector, element.match_count
        best_score = self.score(best_selector, best_count)
        others = [
            (selector, count)
            for selector, count in options
            if count > 0 and selector != best_selector
        ]
        others.sort(key=lambda item: (item[1] != 1, -self.score(*item), len(item[0])))
        alternatives = tuple(dict.fromkeys(selector for selector, _ in others))
        return SelectorCandidate(
            selector=best_selector,
            match_count=best_count,
            score=best_score,
            alternatives=alternatives[: self.settings.max_alternatives],
            tag=element.tag,
            text=element.text,
            valid=self.is_valid(best_score),
        )

    def candidates(self, context: PageContext) -> list[SelectorCandidate]:
        self.observe_capture(context)
        scored = [self.candidate(element) for element in context.elements]
        failed = [item for item in scored if not item.valid]
        if failed:
            logger.info(
                "%d of %d captured selectors below confidence %.2f",
                len(failed),
                len(scored),
                self.settings.validity_threshold,
            )
        scored.sort(key=lambda item: item.score, reverse=True)
        return scored

    def known_selectors(self, context: PageContext) -> set[str]:
        self.observe_capture(context)
        known: set[str] = set()
        for element in context.elements:
            candidate = self.candidate(element)
            if not candidate.valid:
                continue
            known.add(candidate.selector)
            known.update(
                selector for selector, count in element.alternatives.items() if count > 0
            )
            if element.match_count > 0:
                known.add(element.selector)
        return known
