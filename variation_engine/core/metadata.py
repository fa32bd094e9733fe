from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any


def utc_now() -> str:
    return datetime.now(UTC).isoformat()


class Strategy(StrEnum):
    PRESERVE_SELECTORS = "PRESERVE_SELECTORS"
    USE_NEW_ELEMENTS = "USE_NEW_ELEMENTS"
    FULL_REWRITE = "FULL_REWRITE"


class IssueSeverity(StrEnum):
    ERROR = "error"
    WARNING = "warning"


class IssueKind(StrEnum):
    SELECTOR_NOT_FOUND = "selector-not-found"
    SELECTOR_NOT_PRESERVED = "selector-not-preserved"
    CSS_SYNTAX = "css-syntax"
    JS_SYNTAX = "js-syntax"
    SELECTOR_CONFLICT = "selector-conflict"
    DUPLICATE_RISK = "duplicate-risk"
    RUNTIME_ERROR = "runtime-error"
    RUNTIME_PROBE_UNAVAILABLE = "runtime-probe-unavailable"
    NO_ELEMENT_SET = "no-element-set"
    GENERATION_FAILED = "generation-failed"


class InspectionStatus(StrEnum):
    PASS = "PASS"
    GOAL_NOT_MET = "GOAL_NOT_MET"
    CRITICAL_DEFECT = "CRITICAL_DEFECT"
    MAJOR_DEFECT = "MAJOR_DEFECT"
    ERROR = "ERROR"


class DefectSeverity(StrEnum):
    CRITICAL = "critical"
    MAJOR = "major"


class StopReason(StrEnum):
    PASSED = "passed"
    REPEATED_DEFECTS = "repeated-defects"
    MAX_ITERATIONS = "max-iterations"
    CRITIC_STOPPED = "critic-stopped"
    REFINEMENT_FAILED = "refinement-failed"
    CANCELLED = "cancelled"
    RENDER_FAILED = "render-failed"


@dataclass(frozen=True, slots=True)
class Variant:
    name: str
    css: str = ""
    js: str = ""


@dataclass(frozen=True, slots=True)
class WorkingArtifact:
    variants: tuple[Variant, ...] = ()
    shared_css: str = ""
    shared_js: str = ""

    @classmethod
    def empty(cls) -> WorkingArtifact:
        return cls()

    @property
    def is_empty(self) -> bool:
        return not self.variants and not self.shared_css.strip() and not self.shared_js.strip()

    def css_sources(self) -> list[str]:
        return [self.shared_css, *(variant.css for variant in self.variants)]

    def js_sources(self) -> list[str]:
        return [self.shared_js, *(variant.js for variant in self.variants)]

    def to_dict(self) -> dict[str, Any]:
        return {
            "variants": [
                {"name": variant.name, "css": variant.css, "js": variant.js}
                for variant in self.variants
            ],
            "sharedCss": self.shared_css,
            "sharedJs": self.shared_js,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> WorkingArtifact:
        variants = tuple(
            Variant(name=item.get("name", ""), css=item.get("css", ""), js=item.get("js", ""))
            for item in payload.get("variants", [])
        )
        return cls(
            variants=variants,
            shared_css=payload.get("sharedCss", ""),
            shared_js=payload.get("sharedJs", ""),
        )


@dataclass(frozen=True, slots=True)
class Snapshot:
    artifact: WorkingArtifact
    taken_at: str = field(default_factory=utc_now)


@dataclass(frozen=True, slots=True)
class PageElement:
    selector: str
    match_count: int
    alternatives: dict[str, int] = field(default_factory=dict)
    tag: str = ""
    text: str = ""


@dataclass(frozen=True, slots=True)
class PageContext:
    capture_id: str
    elements: tuple[PageElement, ...] = ()
    url: str = ""


@dataclass(frozen=True, slots=True)
class SelectorCandidate:
    selector: str
    match_count: int
    score: float
    alternatives: tuple[str, ...] = ()
    tag: str = ""
    text: str = ""
    valid: bool = False


@dataclass(frozen=True, slots=True)
class ValidationIssue:
    kind: IssueKind
    message: str
    severity: IssueSeverity = IssueSeverity.ERROR
    suggestion: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": str(self.kind),
            "severity": str(self.severity),
            "message": self.message,
            "suggestion": self.suggestion,
        }


@dataclass(frozen=True, slots=True)
class ValidationResult:
    passed: bool
    issues: tuple[ValidationIssue, ...] = ()
    confidence: int = 0

    @property
    def errors(self) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.severity is IssueSeverity.ERROR]

    @property
    def warnings(self) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.severity is IssueSeverity.WARNING]


@dataclass(frozen=True, slots=True)
class ConversationTurn:
    role: str
    content: str


@dataclass(frozen=True, slots=True)
class ClarificationOption:
    label: str
    strategy: Strategy


@dataclass(frozen=True, slots=True)
class ClarificationQuestion:
    message: str
    options: tuple[ClarificationOption, ...]


@dataclass(frozen=True, slots=True)
class IntentDecision:
    strategy: Strategy | None
    needs_clarification: bool
    question: ClarificationQuestion | None = None
    confidence: float = 0.0
    reasoning: str = ""


@dataclass(frozen=True, slots=True)
class GenerationPrompt:
    """Structured request handed to the external generator."""

    request: str
    strategy: Strategy
    working_artifact: WorkingArtifact
    allowed_selectors: tuple[str, ...]
    candidates: tuple[SelectorCandidate, ...] = ()
    prior_attempts: tuple[RefinementAttempt, ...] = ()
    feedback: str = ""
    attempt: int = 1


@dataclass(frozen=True, slots=True)
class RefinementAttempt:
    number: int
    prompt: GenerationPrompt
    validation: ValidationResult
    timestamp: str = field(default_factory=utc_now)


@dataclass(slots=True)
class RefinementResult:
    success: bool
    artifact: WorkingArtifact | None = None
    confidence: int | None = None
    diagnostics: list[RefinementAttempt] = field(default_factory=list)
    attempts: int = 0
    failure: Exception | None = None
    clarification: ClarificationQuestion | None = None

    def unresolved_issues(self) -> list[str]:
        if not self.diagnostics:
            return [str(self.failure)] if self.failure else []
        issues: list[str] = []
        for issue in self.diagnostics[-1].validation.errors:
            line = issue.message
            if issue.suggestion:
                line = f"{line} ({issue.suggestion})"
            issues.append(line)
        return issues


@dataclass(frozen=True, slots=True)
class Defect:
    severity: DefectSeverity
    type: str
    description: str
    suggested_fix: str = ""

    def to_dict(self) -> dict[str, str]:
        return {
            "severity": str(self.severity),
            "type": self.type,
            "description": self.description,
            "suggestedFix": self.suggested_fix,
        }


@dataclass(slots=True)
class InspectionIteration:
    number: int
    status: InspectionStatus
    defects: list[Defect] = field(default_factory=list)
    should_continue: bool = False
    goal_accomplished: bool = False
    reasoning: str = ""
    pre_screened: bool = False
    discarded_defects: list[Defect] = field(default_factory=list)
    stop_reason: StopReason | None = None
    timestamp: str = field(default_factory=utc_now)


@dataclass(slots=True)
class InspectionReport:
    final_status: InspectionStatus
    iterations: list[InspectionIteration]
    final_artifact: WorkingArtifact
    stop_reason: StopReason | None = None
    refinements: list[RefinementResult] = field(default_factory=list)
