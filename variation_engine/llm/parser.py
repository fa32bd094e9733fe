from __future__ import annotations

import json
import logging
import re
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from variation_engine.core.collaborators import CriticVerdict, IntentAnalysis
from variation_engine.core.exceptions import ResponseSchemaError
from variation_engine.core.metadata import WorkingArtifact
from variation_engine.llm.schema import ArtifactPayload, CriticPayload, IntentPayload

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"```(?:json)?\s*\n(.*?)\n```", re.DOTALL)

ModelT = TypeVar("ModelT", bound=BaseModel)


def extract_json(raw: str) -> dict[str, Any]:
    """Parse a JSON object from a model reply, handling fences and preamble.

    Tries in order: direct parse -> strip leading fence -> fenced block -> outermost braces.
    """
    if not raw or not raw.strip():
        raise ResponseSchemaError("Model returned an empty response")
    text = raw.strip()
    if text.startswith("```"):
        lines = text.split("\n")[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        text = "\n".join(lines).strip()

    attempts = [text]
    fence_match = _FENCE.search(text)
    if fence_match:
        attempts.append(fence_match.group(1))
    brace_start = text.find("{")
    brace_end = text.rfind("}")
    if brace_start >= 0 and brace_end > brace_start:
        attempts.append(text[brace_start : brace_end + 1])

    for candidate in attempts:
        try:
            payload = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(payload, dict):
            return payload
    logger.debug("Unparseable model response: %s", text[:500])
    raise ResponseSchemaError("Model response did not contain a JSON object")


def _validate(model: type[ModelT], raw: str) -> ModelT:
    payload = extract_json(raw)
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'response'}: {error['msg']}"
            for error in exc.errors()
        )
        raise ResponseSchemaError(f"{model.__name__} rejected: {problems}") from exc


def parse_artifact_response(raw: str) -> WorkingArtifact:
    return _validate(ArtifactPayload, raw).to_artifact()


def parse_critic_response(raw: str) -> CriticVerdict:
    return _validate(CriticPayload, raw).to_verdict()


def parse_intent_response(raw: str) -> IntentAnalysis:
    return _validate(IntentPayload, raw).to_analysis()
