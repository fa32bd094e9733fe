from __future__ import annotations

import re

from pydantic import BaseModel, Field, field_validator

_LAYOUT_PROPERTY = r"(?:\b(?:margin(?:-[a-z]+)?|padding-top|position(?:ing)?|inset)\b|\btop\s*(?:offset\b|:))"
_NAVIGATION_ELEMENT = r"\b(?:header|nav|navbar|navigation|menu|masthead)\b"
_SAME_SENTENCE = r"(?:[^.;\n{}]|\.(?=\w)){0,80}?"

DEFAULT_DANGEROUS_FIX_PATTERNS = [
    # Prose suggestions, either word order, within one sentence.
    _LAYOUT_PROPERTY + _SAME_SENTENCE + _NAVIGATION_ELEMENT,
    _NAVIGATION_ELEMENT + _SAME_SENTENCE + _LAYOUT_PROPERTY,
    # CSS rule on a navigation/header selector that touches margin or positioning.
    r"(?:(?<![\w.#-])(?:header|nav)|\.(?:nav|navbar|header|menu|primary-nav|secondary-nav|site-header|masthead)[\w-]*"
    r"|#(?:header|nav|navbar|masthead|menu)[\w-]*|\[role=[\"']?navigation[\"']?\])(?![\w-])"
    r"[^{};]*\{[^}]*?(?<![\w-])(?:margin(?:-[a-z]+)?|padding-top|top|position|inset)\s*:",
    # Inline style assignment on a navigation/header element.
    r"(?<![\w-])(?:header|nav|navbar|masthead|menu)\b[^;]*?\.style\.(?:margin\w*|paddingTop|top|position|inset)\b",
    r"(?<![\w-])(?:header|nav|navbar|masthead|menu)\b[^;]*?setProperty\(\s*[\"'](?:margin(?:-[a-z]+)?|padding-top|top|position|inset)[\"']",
]


class ScoringSettings(BaseModel):
    validity_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    max_alternatives: int = Field(default=3, ge=0)


class GenerationSettings(BaseModel):
    max_attempts: int = Field(default=3, ge=1)
    warning_penalty: int = Field(default=5, ge=0, le=100)
    always_allowed_selectors: list[str] = Field(
        default_factory=lambda: ["html", "body", ":root", "*", "head"]
    )
    max_prompt_elements: int = Field(default=50, ge=1)


class InspectionSettings(BaseModel):
    max_iterations: int = Field(default=2, ge=1)
    defect_keyword_overlap: float = Field(default=0.6, ge=0.0, le=1.0)
    repeated_defect_ratio: float = Field(default=0.7, ge=0.0, le=1.0)
    min_keyword_length: int = Field(default=4, ge=1)
    dangerous_fix_patterns: list[str] = Field(
        default_factory=lambda: list(DEFAULT_DANGEROUS_FIX_PATTERNS)
    )

    @field_validator("dangerous_fix_patterns")
    @classmethod
    def validate_patterns(cls, value: list[str]) -> list[str]:
        for pattern in value:
            try:
                re.compile(pattern)
            except re.error as exc:
                raise ValueError(f"Invalid dangerous-fix pattern {pattern!r}: {exc}") from exc
        return value


class IntentSettings(BaseModel):
    confidence_threshold: float = Field(default=50, ge=0, le=100)
    history_window: int = Field(default=3, ge=0)


class LLMSettings(BaseModel):
    provider: str = "openai"
    model: str | None = None
    timeout_seconds: float = Field(default=30.0, gt=0)
    max_tokens: int = Field(default=4096, ge=1)

    @field_validator("provider")
    @classmethod
    def validate_provider(cls, value: str) -> str:
        normalized = value.lower()
        if normalized not in {"openai", "anthropic", "gemini"}:
            raise ValueError(f"Unsupported LLM provider: {value}")
        return normalized


class BrowserSettings(BaseModel):
    name: str = "chrome"
    headless: bool = True
    window_size: tuple[int, int] = (1440, 1200)
    page_load_timeout_seconds: int = Field(default=30, ge=1)
    settle_seconds: float = Field(default=0.5, ge=0)

    @field_validator("name")
    @classmethod
    def validate_browser(cls, value: str) -> str:
        normalized = value.lower()
        if normalized not in {"chrome", "firefox"}:
            raise ValueError(f"Unsupported browser: {value}")
        return normalized


class EngineConfig(BaseModel):
    scoring: ScoringSettings = Field(default_factory=ScoringSettings)
    generation: GenerationSettings = Field(default_factory=GenerationSettings)
    inspection: InspectionSettings = Field(default_factory=InspectionSettings)
    intent: IntentSettings = Field(default_factory=IntentSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    browser: BrowserSettings = Field(default_factory=BrowserSettings)
