from __future__ import annotations

import json
from typing import Any, Sequence

from variation_engine.core.metadata import (
    ConversationTurn,
    Defect,
    GenerationPrompt,
    RefinementAttempt,
    Strategy,
    WorkingArtifact,
)

NAVIGATION_RULE = """NEVER MODIFY NAVIGATION OR HEADER POSITIONING:
- Never add margin-top, padding-top, or a top offset to: header, nav, .nav, .header, .menu, .primary-nav, .secondary-nav
- For a fixed banner use "body { padding-top: XXpx !important; }" and leave navigation elements alone"""

GENERATION_SYSTEM_PROMPT = f"""You write small CSS and vanilla JavaScript variations that modify a live web page.
Rules:
1. Use only selectors from the allowed selector list. Do not invent selectors.
2. Vanilla JavaScript only, no libraries. The JavaScript runs as a function body.
3. Make the JavaScript safe to run twice: start with a marker guard such as
   if (element.dataset.varApplied) return; and set element.dataset.varApplied = '1';
4. Prefer CSS with !important for visual changes; use JavaScript for text and structure.
5. Implement every requested change.

{NAVIGATION_RULE}

Return exactly one JSON object and nothing else:
{{"variants": [{{"name": "...", "css": "...", "js": "..."}}], "sharedCss": "...", "sharedJs": "...", "confidence": 0-100}}"""

_STRATEGY_RULES = {
    Strategy.PRESERVE_SELECTORS: (
        "REFINEMENT: keep all existing code and change only the elements it already targets. "
        "Use no selector outside the current code."
    ),
    Strategy.USE_NEW_ELEMENTS: (
        "EXTENSION: keep all existing code and add the new changes on top. "
        "You may target any selector from the allowed list."
    ),
    Strategy.FULL_REWRITE: (
        "REWRITE: discard the current code and write a fresh variation for the request."
    ),
}


def build_generation_prompt(prompt: GenerationPrompt) -> str:
    sections = [
        f"REQUEST:\n{prompt.request}",
        f"MODE:\n{_STRATEGY_RULES[prompt.strategy]}",
    ]
    if prompt.strategy is not Strategy.FULL_REWRITE and not prompt.working_artifact.is_empty:
        sections.append("CURRENT GENERATED CODE:\n" + _artifact_json(prompt.working_artifact))
    sections.append("ALLOWED SELECTORS:\n" + _selector_lines(prompt))
    if prompt.feedback:
        sections.append(prompt.feedback)
    if prompt.prior_attempts:
        sections.append(build_correction_block(prompt.prior_attempts))
    return "\n\n".join(sections)


def build_correction_block(attempts: Sequence[RefinementAttempt]) -> str:
    """Lists every error from earlier attempts so the next one can fix them."""

    lines = ["YOUR PREVIOUS CODE FAILED VALIDATION. Fix every error below:", ""]
    for attempt in attempts:
        lines.append(f"Attempt {attempt.number}:")
        for index, issue in enumerate(attempt.validation.errors, start=1):
            lines.append(f"ERROR {index}: {issue.kind}")
            lines.append(f"  {issue.message}")
            if issue.suggestion:
                lines.append(f"  FIX: {issue.suggestion}")
        lines.append("")
    lines.append("Return the corrected, complete JSON object.")
    return "\n".join(lines)


def _selector_lines(prompt: GenerationPrompt) -> str:
    allowed = set(prompt.allowed_selectors)
    lines = []
    for candidate in prompt.candidates:
        if candidate.selector not in allowed:
            continue
        detail = f"<{candidate.tag}>" if candidate.tag else ""
        if candidate.text:
            detail += f' "{candidate.text[:60]}"'
        lines.append(f"- {candidate.selector} {detail}".rstrip())
        allowed.discard(candidate.selector)
    lines.extend(f"- {selector}" for selector in sorted(allowed))
    return "\n".join(lines) if lines else "(no element set captured; use html or body only)"


def _artifact_json(artifact: WorkingArtifact) -> str:
    return json.dumps(artifact.to_dict(), indent=2)


INSPECTION_SYSTEM_PROMPT = f"""You are a visual QA reviewer for web page variations.
You receive the user's request and two screenshots: BEFORE (original page) and AFTER (variation applied).
Report only real, visible defects: duplicated elements, missing changes, broken layout, unreadable contrast.
Every defect needs an exact, mandatory CSS or JavaScript change in suggestedFix.
Never suggest a fix that breaks this rule:
{NAVIGATION_RULE}

RESPONSE FORMAT (STRICT JSON):
{{
  "status": "PASS" | "GOAL_NOT_MET" | "CRITICAL_DEFECT" | "MAJOR_DEFECT",
  "goalAccomplished": true/false,
  "defects": [{{"severity": "critical" | "major", "type": "...", "description": "...", "suggestedFix": "..."}}],
  "reasoning": "...",
  "shouldContinue": true/false
}}
shouldContinue = false if status = "PASS" or the same defects repeat from the previous iteration."""


def build_inspection_prompt(request: str, prior_defects: Sequence[Defect], iteration: int) -> str:
    lines = [
        f"ITERATION: {iteration}",
        f"USER REQUEST:\n{request}",
        "The first image is BEFORE, the second image is AFTER.",
    ]
    if prior_defects:
        lines.append("DEFECTS REPORTED LAST ITERATION (check whether they are fixed):")
        lines.extend(
            f"- [{defect.severity}] {defect.type}: {defect.description}" for defect in prior_defects
        )
    return "\n\n".join(lines)


INTENT_SYSTEM_PROMPT = """You classify a follow-up request about an existing page variation.
Types:
- REFINEMENT: change elements the current code already modifies.
- NEW_FEATURE: add changes to other elements, keeping the current code.
- COURSE_REVERSAL: abandon the current code and start over.
- AMBIGUOUS: the target element cannot be determined.
Return exactly one JSON object:
{"type": "REFINEMENT" | "NEW_FEATURE" | "COURSE_REVERSAL" | "AMBIGUOUS", "confidence": 0-100,
 "refinementType": "incremental" | "full_rewrite", "reasoning": "..."}"""


def build_intent_prompt(
    request: str, working_artifact: WorkingArtifact, history: Sequence[ConversationTurn]
) -> str:
    payload: dict[str, Any] = {
        "request": request,
        "current_code": working_artifact.to_dict(),
        "recent_conversation": [
            {"role": turn.role, "content": turn.content} for turn in history
        ],
    }
    return json.dumps(payload, indent=2, sort_keys=True)
