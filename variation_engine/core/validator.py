from __future__ import annotations

import logging
from typing import Collection

from variation_engine.config.schema import GenerationSettings
from variation_engine.core.metadata import (
    IssueKind,
    IssueSeverity,
    ValidationIssue,
    ValidationResult,
    WorkingArtifact,
)
from variation_engine.utils.code_scan import (
    artifact_selectors,
    brace_balance,
    closest_selector,
    javascript_syntax_errors,
    normalize_selector,
    unguarded_repeated_selectors,
)

logger = logging.getLogger(__name__)


class StaticCodeValidator:
    """Pattern-based gates a generated artifact must pass before commit."""

    def __init__(self, settings: GenerationSettings | None = None) -> None:
        self.settings = settings or GenerationSettings()

    def validate(
        self,
        artifact: WorkingArtifact,
        known_selectors: Collection[str],
        previous_artifact: WorkingArtifact | None = None,
        *,
        preserved_selectors: Collection[str] | None = None,
        extra_issues: Collection[ValidationIssue] = (),
    ) -> ValidationResult:
        issues: list[ValidationIssue] = []
        issues.extend(self.check_selectors(artifact, known_selectors, preserved_selectors))
        issues.extend(self.check_syntax(artifact))
        if previous_artifact is not None:
            issues.extend(self.check_conflicts(artifact, previous_artifact))
        issues.extend(self.check_idempotency(artifact))
        issues.extend(extra_issues)
        return self.summarize(issues)

    def summarize(self, issues: Collection[ValidationIssue]) -> ValidationResult:
        ordered = tuple(issues)
        errors = sum(1 for issue in ordered if issue.severity is IssueSeverity.ERROR)
        warnings = len(ordered) - errors
        passed = errors == 0
        confidence = max(0, 100 - self.settings.warning_penalty * warnings) if passed else 0
        logger.debug(
            "Validation %s: %d error(s), %d warning(s), confidence %d",
            "passed" if passed else "failed",
            errors,
            warnings,
            confidence,
        )
        return ValidationResult(passed=passed, issues=ordered, confidence=confidence)

    def check_selectors(
        self,
        artifact: WorkingArtifact,
        known_selectors: Collection[str],
        preserved_selectors: Collection[str] | None = None,
    ) -> list[ValidationIssue]:
        always_allowed = {normalize_selector(item) for item in self.settings.always_allowed_selectors}
        known = {normalize_selector(item) for item in known_selectors}
        if not known and preserved_selectors is None:
            return [
                ValidationIssue(
                    kind=IssueKind.NO_ELEMENT_SET,
                    severity=IssueSeverity.WARNING,
                    message="No element set available for selector validation",
                )
            ]
        preserved = (
            {normalize_selector(item) for item in preserved_selectors}
            if preserved_selectors is not None
            else None
        )
        issues: list[ValidationIssue] = []
        for selector in artifact_selectors(artifact):
            if selector in always_allowed:
                continue
            if preserved is not None:
                if selector in preserved:
                    continue
                if selector in known:
                    issues.append(
                        ValidationIssue(
                            kind=IssueKind.SELECTOR_NOT_PRESERVED,
                            message=f'Selector "{selector}" is not used by the current working code',
                            suggestion=_did_you_mean(selector, preserved)
                            or "Only modify the selectors already in the working code",
                        )
                    )
                    continue
            if selector in known:
                continue
            pool = preserved if preserved is not None else known
            issues.append(
                ValidationIssue(
                    kind=IssueKind.SELECTOR_NOT_FOUND,
                    message=f'Selector "{selector}" not found in the known element set',
                    suggestion=_did_you_mean(selector, pool)
                    or "Use a selector from the known element set",
                )
            )
        return issues

    def check_syntax(self, artifact: WorkingArtifact) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        for label, css, js in _sources(artifact):
            opened, closed = brace_balance(css)
            if opened != closed:
                issues.append(
                    ValidationIssue(
                        kind=IssueKind.CSS_SYNTAX,
                        message=f"{label} CSS has mismatched braces: {opened} open, {closed} close",
                        suggestion="Balance every '{' with a '}'",
                    )
                )
            for message in javascript_syntax_errors(js):
                issues.append(
                    ValidationIssue(
                        kind=IssueKind.JS_SYNTAX,
                        message=f"{label} JavaScript syntax error: {message}",
                        suggestion="Fix syntax errors before applying",
                    )
                )
        return issues

    def check_conflicts(
        self, artifact: WorkingArtifact, previous_artifact: WorkingArtifact
    ) -> list[ValidationIssue]:
        previous = set(artifact_selectors(previous_artifact))
        overlap = [selector for selector in artifact_selectors(artifact) if selector in previous]
        if not overlap:
            return []
        return [
            ValidationIssue(
                kind=IssueKind.SELECTOR_CONFLICT,
                severity=IssueSeverity.WARNING,
                message=f"These selectors appear in both old and new code: {', '.join(overlap)}",
                suggestion="This may cause conflicts. Review carefully.",
            )
        ]

    def check_idempotency(self, artifact: WorkingArtifact) -> list[ValidationIssue]:
        return [
            ValidationIssue(
                kind=IssueKind.DUPLICATE_RISK,
                severity=IssueSeverity.WARNING,
                message=(
                    f'Selector "{selector}" is queried {count} times without a marker guard; '
                    "may create duplicate elements on repeated execution"
                ),
                suggestion=(
                    "Start with: if (element.dataset.varApplied) return; "
                    "then set element.dataset.varApplied = '1';"
                ),
            )
            for selector, count in unguarded_repeated_selectors(artifact).items()
        ]


def _did_you_mean(selector: str, pool: Collection[str]) -> str | None:
    match = closest_selector(selector, pool)
    return f'Did you mean "{match}"?' if match else None


def _sources(artifact: WorkingArtifact) -> list[tuple[str, str, str]]:
    sources = [("Shared", artifact.shared_css, artifact.shared_js)]
    sources.extend(
        (variant.name or f"Variation {index}", variant.css, variant.js)
        for index, variant in enumerate(artifact.variants, start=1)
    )
    return sources
