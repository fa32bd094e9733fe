from __future__ import annotations

import re
from typing import Iterable, Sequence

from variation_engine.config.schema import InspectionSettings
from variation_engine.core.metadata import Defect

STOPWORDS = frozenset(
    {
        "the", "and", "are", "not", "but", "for", "with", "this", "that", "from",
        "they", "been", "have", "their", "said", "each", "which", "will", "there",
        "could", "other",
    }
)

_NON_LETTERS = re.compile(r"[^a-z\s]")


def extract_keywords(text: str, min_length: int = 4) -> list[str]:
    """Unique lowercase words of at least ``min_length`` letters, minus stopwords."""

    words = _NON_LETTERS.sub("", text.lower()).split()
    keywords: dict[str, None] = {}
    for word in words:
        if len(word) >= min_length and word not in STOPWORDS:
            keywords.setdefault(word)
    return list(keywords)


def keyword_overlap(left: Sequence[str], right: Sequence[str]) -> float:
    if not left or not right:
        return 0.0
    shared = len(set(left) & set(right))
    return shared / max(len(left), len(right))


def defects_similar(current: Defect, previous: Defect, settings: InspectionSettings | None = None) -> bool:
    settings = settings or InspectionSettings()
    if current.description.strip().lower() == previous.description.strip().lower():
        return True
    overlap = keyword_overlap(
        extract_keywords(current.description, settings.min_keyword_length),
        extract_keywords(previous.description, settings.min_keyword_length),
    )
    return overlap >= settings.defect_keyword_overlap


def defects_repeated(
    current: Sequence[Defect],
    previous: Sequence[Defect],
    settings: InspectionSettings | None = None,
) -> bool:
    """True when enough current defects match one from the previous iteration."""

    settings = settings or InspectionSettings()
    if not current or not previous:
        return False
    matched = sum(
        1 for defect in current if any(defects_similar(defect, earlier, settings) for earlier in previous)
    )
    return matched / len(current) >= settings.repeated_defect_ratio


def compile_patterns(patterns: Iterable[str]) -> list[re.Pattern[str]]:
    return [re.compile(pattern, re.IGNORECASE) for pattern in patterns]


def is_dangerous_fix(suggested_fix: str, patterns: Sequence[re.Pattern[str]]) -> bool:
    return any(pattern.search(suggested_fix) for pattern in patterns)


def filter_dangerous(
    defects: Iterable[Defect], patterns: Sequence[re.Pattern[str]]
) -> tuple[list[Defect], list[Defect]]:
    """Splits defects into (kept, discarded) by their suggested fix."""

    kept: list[Defect] = []
    discarded: list[Defect] = []
    for defect in defects:
        if defect.suggested_fix and is_dangerous_fix(defect.suggested_fix, patterns):
            discarded.append(defect)
        else:
            kept.append(defect)
    return kept, discarded
