from __future__ import annotations

import logging
from typing import Sequence

from variation_engine.config.schema import IntentSettings
from variation_engine.core.collaborators import (
    ArtifactGenerator,
    CriticVerdict,
    IntentAnalysis,
    IntentAnalyzer,
    VisionCritic,
)
from variation_engine.core.exceptions import (
    GenerationCallFailure,
    InspectionParseFailure,
    InspectionUnreachable,
    LLMRequestError,
    ResponseSchemaError,
)
from variation_engine.core.metadata import (
    ConversationTurn,
    Defect,
    GenerationPrompt,
    WorkingArtifact,
)
from variation_engine.llm.client import CompletionClient
from variation_engine.llm.parser import (
    parse_artifact_response,
    parse_critic_response,
    parse_intent_response,
)
from variation_engine.llm.prompts import (
    GENERATION_SYSTEM_PROMPT,
    INSPECTION_SYSTEM_PROMPT,
    INTENT_SYSTEM_PROMPT,
    build_generation_prompt,
    build_inspection_prompt,
    build_intent_prompt,
)

logger = logging.getLogger(__name__)


class LLMArtifactGenerator(ArtifactGenerator):
    def __init__(self, client: CompletionClient) -> None:
        self.client = client

    def generate(self, prompt: GenerationPrompt) -> WorkingArtifact:
        try:
            raw = self.client.complete(GENERATION_SYSTEM_PROMPT, build_generation_prompt(prompt))
            return parse_artifact_response(raw)
        except (LLMRequestError, ResponseSchemaError) as exc:
            raise GenerationCallFailure(str(exc)) from exc


class LLMVisionCritic(VisionCritic):
    def __init__(self, client: CompletionClient) -> None:
        self.client = client

    def inspect(
        self,
        request: str,
        before_png: bytes,
        after_png: bytes,
        prior_defects: Sequence[Defect],
        iteration: int,
    ) -> CriticVerdict:
        try:
            raw = self.client.complete(
                INSPECTION_SYSTEM_PROMPT,
                build_inspection_prompt(request, prior_defects, iteration),
                images=(before_png, after_png),
            )
        except LLMRequestError as exc:
            raise InspectionUnreachable(str(exc)) from exc
        try:
            return parse_critic_response(raw)
        except ResponseSchemaError as exc:
            raise InspectionParseFailure(str(exc)) from exc


class LLMIntentAnalyzer(IntentAnalyzer):
    def __init__(self, client: CompletionClient, settings: IntentSettings | None = None) -> None:
        self.client = client
        self.settings = settings or IntentSettings()

    def analyze(
        self,
        request: str,
        working_artifact: WorkingArtifact,
        history: Sequence[ConversationTurn],
    ) -> IntentAnalysis:
        recent = list(history)[-self.settings.history_window :] if self.settings.history_window else []
        raw = self.client.complete(
            INTENT_SYSTEM_PROMPT, build_intent_prompt(request, working_artifact, recent)
        )
        analysis = parse_intent_response(raw)
        logger.debug("Intent analysis: %s (%.0f)", analysis.intent_type, analysis.confidence)
        return analysis
