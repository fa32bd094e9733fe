from __future__ import annotations

import logging
import re
from typing import Sequence

from variation_engine.config.schema import IntentSettings
from variation_engine.core.collaborators import IntentAnalysis, IntentAnalyzer
from variation_engine.core.exceptions import EngineError
from variation_engine.core.metadata import (
    ClarificationOption,
    ClarificationQuestion,
    ConversationTurn,
    IntentDecision,
    Strategy,
    WorkingArtifact,
)
from variation_engine.utils.code_scan import artifact_selectors

logger = logging.getLogger(__name__)

STRATEGY_CUES: dict[Strategy, list[tuple[re.Pattern[str], int]]] = {
    Strategy.PRESERVE_SELECTORS: [
        (re.compile(r"\bmake (?:it|them|this|that|those|these)\b"), 2),
        (re.compile(r"\b(?:bigger|smaller|larger|darker|lighter|bolder|wider|narrower|taller|shorter)\b"), 2),
        (re.compile(r"\b(?:adjust|tweak|modify|refine|increase|decrease|change)\b"), 1),
        (re.compile(r"\b(?:slightly|a bit|a little|instead|more|less|same)\b"), 1),
    ],
    Strategy.USE_NEW_ELEMENTS: [
        (re.compile(r"\b(?:also|additionally|as well)\b"), 2),
        (re.compile(r"\b(?:add|insert|create|include)\b"), 2),
        (re.compile(r"\b(?:another|other|different|new)\b"), 1),
    ],
    Strategy.FULL_REWRITE: [
        (re.compile(r"\b(?:start over|from scratch|scrap|revert|undo|redo|throw (?:it|that) away)\b"), 3),
        (re.compile(r"\b(?:completely|entirely|totally) (?:different|new|redo|rewrite)\b"), 3),
        (re.compile(r"\bnever ?mind\b|\bforget (?:it|that|this)\b"), 2),
        (re.compile(r"\brewrite\b"), 2),
    ],
}

ELEMENT_WORDS = re.compile(
    r"\b(?:button|btn|cta|heading|headline|title|subtitle|link|image|img|photo|logo|icon|banner|hero"
    r"|header|footer|nav|navigation|menu|form|input|field|section|card|price|text|paragraph|label"
    r"|badge|modal|popup|sidebar|table|list|video|testimonial|review)s?\b"
)
SELECTOR_TOKEN = re.compile(r"(?:^|\s)[.#][a-zA-Z][\w-]*")
PRONOUN = re.compile(
    r"\b(?:it|them|these|those)\b|\b(?:this|that)\b(?=\s*(?:$|[.,!?;]|one\b|again\b|too\b))"
)

_ANALYSIS_STRATEGIES = {
    "NEW_FEATURE": Strategy.USE_NEW_ELEMENTS,
    "COURSE_REVERSAL": Strategy.FULL_REWRITE,
}


def clarification_question(message: str | None = None) -> ClarificationQuestion:
    return ClarificationQuestion(
        message=message or "I'm not sure which element you want to change. What would you like to do?",
        options=(
            ClarificationOption("Modify the elements already changed", Strategy.PRESERVE_SELECTORS),
            ClarificationOption("Work with a different element", Strategy.USE_NEW_ELEMENTS),
            ClarificationOption("Start over", Strategy.FULL_REWRITE),
        ),
    )


def names_element(text: str) -> bool:
    lowered = text.lower()
    return bool(ELEMENT_WORDS.search(lowered) or SELECTOR_TOKEN.search(text) or re.search(r"[\"'][^\"']+[\"']", text))


def has_unresolved_pronoun(
    request: str,
    working_artifact: WorkingArtifact,
    history: Sequence[ConversationTurn],
    history_window: int = 3,
) -> bool:
    if not PRONOUN.search(request.lower()):
        return False
    if names_element(request):
        return False
    recent = list(history)[-history_window:] if history_window else []
    if any(names_element(turn.content) for turn in recent):
        return False
    return len(artifact_selectors(working_artifact)) != 1


def score_cues(request: str) -> dict[Strategy, int]:
    lowered = request.lower()
    return {
        strategy: sum(weight for pattern, weight in cues if pattern.search(lowered))
        for strategy, cues in STRATEGY_CUES.items()
    }


class IntentClassifier:
    """Decides how much of the working artifact a request may change."""

    def __init__(self, settings: IntentSettings | None = None, analyzer: IntentAnalyzer | None = None) -> None:
        self.settings = settings or IntentSettings()
        self.analyzer = analyzer

    def classify(
        self,
        request: str,
        working_artifact: WorkingArtifact,
        history: Sequence[ConversationTurn] = (),
    ) -> IntentDecision:
        if has_unresolved_pronoun(request, working_artifact, history, self.settings.history_window):
            logger.info("Request has a pronoun with no antecedent, asking for clarification")
            return IntentDecision(
                strategy=None,
                needs_clarification=True,
                question=clarification_question(
                    "Which element do you mean? Nothing in the request or the current code identifies it."
                ),
                reasoning="unresolved pronoun",
            )
        if working_artifact.is_empty:
            return IntentDecision(
                strategy=Strategy.USE_NEW_ELEMENTS,
                needs_clarification=False,
                confidence=100.0,
                reasoning="no working code yet",
            )

        decision = self._from_analyzer(request, working_artifact, history)
        if decision is None:
            decision = self._from_cues(request)
        if decision.strategy is None or decision.confidence < self.settings.confidence_threshold:
            logger.info(
                "Intent confidence %.0f below %.0f, asking for clarification",
                decision.confidence,
                self.settings.confidence_threshold,
            )
            return IntentDecision(
                strategy=None,
                needs_clarification=True,
                question=clarification_question(),
                confidence=decision.confidence,
                reasoning=decision.reasoning,
            )
        return decision

    def _from_analyzer(
        self,
        request: str,
        working_artifact: WorkingArtifact,
        history: Sequence[ConversationTurn],
    ) -> IntentDecision | None:
        if self.analyzer is None:
            return None
        try:
            analysis = self.analyzer.analyze(request, working_artifact, history)
        except EngineError as exc:
            logger.warning("Intent analysis failed, falling back to keyword cues: %s", exc)
            return None
        return IntentDecision(
            strategy=strategy_for_analysis(analysis),
            needs_clarification=False,
            confidence=analysis.confidence,
            reasoning=analysis.reasoning,
        )

    def _from_cues(self, request: str) -> IntentDecision:
        scores = score_cues(request)
        total = sum(scores.values())
        if total == 0:
            return IntentDecision(strategy=None, needs_clarification=False, reasoning="no intent cues")
        ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)
        (best, best_weight), (_, runner_up) = ranked[0], ranked[1]
        if best_weight == runner_up:
            return IntentDecision(
                strategy=None,
                needs_clarification=False,
                confidence=100.0 * best_weight / total,
                reasoning="tied intent cues",
            )
        return IntentDecision(
            strategy=best,
            needs_clarification=False,
            confidence=round(100.0 * best_weight / total, 1),
            reasoning="keyword cues " + ", ".join(f"{key}={value}" for key, value in scores.items()),
        )


def strategy_for_analysis(analysis: IntentAnalysis) -> Strategy | None:
    intent_type = analysis.intent_type.upper()
    if intent_type == "REFINEMENT":
        if analysis.refinement_type == "full_rewrite":
            return Strategy.FULL_REWRITE
        return Strategy.PRESERVE_SELECTORS
    return _ANALYSIS_STRATEGIES.get(intent_type)
