from __future__ import annotations

import copy
import logging
import threading
from dataclasses import dataclass
from enum import StrEnum
from typing import Collection, Sequence

from variation_engine.config.schema import GenerationSettings
from variation_engine.core.collaborators import ArtifactGenerator, RuntimeProbe
from variation_engine.core.exceptions import (
    ExhaustionFailure,
    GenerationCallFailure,
    LLMRequestError,
    ResponseSchemaError,
    SessionCancelled,
    ValidationFailure,
)
from variation_engine.core.metadata import (
    GenerationPrompt,
    IssueKind,
    IssueSeverity,
    RefinementAttempt,
    RefinementResult,
    SelectorCandidate,
    Snapshot,
    Strategy,
    ValidationIssue,
    ValidationResult,
    WorkingArtifact,
)
from variation_engine.core.validator import StaticCodeValidator
from variation_engine.logging.audit import SessionAuditLogger
from variation_engine.utils.code_scan import artifact_selectors

logger = logging.getLogger(__name__)


class WorkingArtifactStore:
    """Holds the working artifact and the snapshot it can roll back to."""

    def __init__(self, initial: WorkingArtifact | None = None) -> None:
        self._current = initial or WorkingArtifact.empty()
        self._snapshot: Snapshot | None = None

    @property
    def current(self) -> WorkingArtifact:
        return self._current

    @property
    def last_snapshot(self) -> Snapshot | None:
        return self._snapshot

    def snapshot(self) -> Snapshot:
        self._snapshot = Snapshot(artifact=copy.deepcopy(self._current))
        return self._snapshot

    def commit(self, artifact: WorkingArtifact) -> None:
        self._current = artifact

    def restore(self) -> WorkingArtifact:
        if self._snapshot is not None:
            self._current = self._snapshot.artifact
        return self._current


class LoopState(StrEnum):
    IDLE = "idle"
    ATTEMPTING = "attempting"
    VALIDATING = "validating"
    RETRYING = "retrying"
    COMMITTED = "committed"
    EXHAUSTED = "exhausted"
    ROLLED_BACK = "rolled-back"


TRANSITIONS: dict[LoopState, frozenset[LoopState]] = {
    LoopState.IDLE: frozenset({LoopState.ATTEMPTING, LoopState.ROLLED_BACK}),
    LoopState.ATTEMPTING: frozenset(
        {LoopState.VALIDATING, LoopState.RETRYING, LoopState.EXHAUSTED, LoopState.ROLLED_BACK}
    ),
    LoopState.VALIDATING: frozenset(
        {LoopState.COMMITTED, LoopState.RETRYING, LoopState.EXHAUSTED, LoopState.ROLLED_BACK}
    ),
    LoopState.RETRYING: frozenset({LoopState.ATTEMPTING, LoopState.ROLLED_BACK}),
    LoopState.EXHAUSTED: frozenset({LoopState.ROLLED_BACK}),
    LoopState.COMMITTED: frozenset({LoopState.IDLE}),
    LoopState.ROLLED_BACK: frozenset({LoopState.IDLE}),
}


@dataclass(frozen=True, slots=True)
class SelectorConstraints:
    strategy: Strategy
    known: frozenset[str]
    preserved: frozenset[str] | None
    previous: WorkingArtifact | None

    @property
    def allowed(self) -> tuple[str, ...]:
        return tuple(sorted(self.preserved if self.preserved is not None else self.known))


def resolve_constraints(
    strategy: Strategy, working: WorkingArtifact, known_selectors: Collection[str]
) -> SelectorConstraints:
    """Maps an intent strategy onto the selector sets the validator enforces."""

    working_selectors = frozenset(artifact_selectors(working))
    known = frozenset(known_selectors)
    if strategy is Strategy.PRESERVE_SELECTORS:
        if working_selectors:
            return SelectorConstraints(strategy, known | working_selectors, working_selectors, None)
        logger.info("Nothing to preserve in the working artifact, using new elements instead")
        strategy = Strategy.USE_NEW_ELEMENTS
    if strategy is Strategy.USE_NEW_ELEMENTS:
        previous = None if working.is_empty else working
        return SelectorConstraints(strategy, known | working_selectors, None, previous)
    return SelectorConstraints(strategy, known, None, None)


class GenerationRetryLoop:
    """Drives the generator through bounded, validated attempts.

    The working artifact changes only at a commit. Exhaustion, cancellation
    and unexpected collaborator errors all restore the snapshot taken when
    :meth:`run` started.
    """

    def __init__(
        self,
        generator: ArtifactGenerator,
        store: WorkingArtifactStore,
        validator: StaticCodeValidator | None = None,
        probe: RuntimeProbe | None = None,
        settings: GenerationSettings | None = None,
        audit_logger: SessionAuditLogger | None = None,
    ) -> None:
        self.generator = generator
        self.store = store
        self.settings = settings or GenerationSettings()
        self.validator = validator or StaticCodeValidator(self.settings)
        self.probe = probe
        self.audit_logger = audit_logger
        self.state = LoopState.IDLE
        self.transitions: list[tuple[LoopState, LoopState]] = []
        self.history: list[RefinementAttempt] = []

    def _transition(self, target: LoopState) -> None:
        if target not in TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal refinement transition {self.state} -> {target}")
        self.transitions.append((self.state, target))
        self.state = target

    def run(
        self,
        request: str,
        strategy: Strategy,
        known_selectors: Collection[str],
        candidates: Sequence[SelectorCandidate] = (),
        feedback: str = "",
        cancel_event: threading.Event | None = None,
    ) -> RefinementResult:
        self.state = LoopState.IDLE
        self.transitions = []
        self.history = []
        snapshot = self.store.snapshot()
        constraints = resolve_constraints(strategy, snapshot.artifact, known_selectors)
        logger.info(
            "Refinement started with %s (%d allowed selectors)",
            constraints.strategy,
            len(constraints.allowed),
        )
        try:
            result = self._run_attempts(request, constraints, candidates, feedback, cancel_event)
        except ExhaustionFailure as exc:
            logger.warning("%s; restoring snapshot from %s", exc, snapshot.taken_at)
            result = self._rollback(exc)
        except SessionCancelled as exc:
            logger.info("Refinement cancelled; restoring snapshot from %s", snapshot.taken_at)
            result = self._rollback(exc)
        except Exception as exc:  # noqa: BLE001 - any collaborator error must end in a rollback.
            logger.exception("Refinement aborted by an unexpected error")
            result = self._rollback(exc)
        if self.audit_logger is not None:
            self.audit_logger.record_refinement(result, constraints.strategy, request)
        return result

    def _run_attempts(
        self,
        request: str,
        constraints: SelectorConstraints,
        candidates: Sequence[SelectorCandidate],
        feedback: str,
        cancel_event: threading.Event | None,
    ) -> RefinementResult:
        max_attempts = self.settings.max_attempts
        for number in range(1, max_attempts + 1):
            _check_cancelled(cancel_event)
            self._transition(LoopState.ATTEMPTING)
            prompt = GenerationPrompt(
                request=request,
                strategy=constraints.strategy,
                working_artifact=self.store.current,
                allowed_selectors=constraints.allowed,
                candidates=tuple(candidates[: self.settings.max_prompt_elements]),
                prior_attempts=tuple(self.history),
                feedback=feedback,
                attempt=number,
            )
            try:
                artifact, validation = self._attempt(prompt, constraints)
            except GenerationCallFailure as exc:
                logger.warning("Attempt %d/%d: generator call failed: %s", number, max_attempts, exc)
                validation = self.validator.summarize([_call_failure_issue(exc)])
            except ValidationFailure as exc:
                logger.info("Attempt %d/%d rejected: %s", number, max_attempts, exc)
                validation = exc.result
            else:
                _check_cancelled(cancel_event)
                self.store.commit(artifact)
                self._transition(LoopState.COMMITTED)
                logger.info(
                    "Attempt %d/%d committed with confidence %d",
                    number,
                    max_attempts,
                    validation.confidence,
                )
                self.history = []
                return RefinementResult(
                    success=True,
                    artifact=artifact,
                    confidence=validation.confidence,
                    attempts=number,
                )
            self.history.append(RefinementAttempt(number=number, prompt=prompt, validation=validation))
            if number < max_attempts:
                self._transition(LoopState.RETRYING)
        self._transition(LoopState.EXHAUSTED)
        raise ExhaustionFailure(self.history)

    def _attempt(
        self, prompt: GenerationPrompt, constraints: SelectorConstraints
    ) -> tuple[WorkingArtifact, ValidationResult]:
        try:
            artifact = self.generator.generate(prompt)
        except (LLMRequestError, ResponseSchemaError) as exc:
            raise GenerationCallFailure(str(exc)) from exc
        self._transition(LoopState.VALIDATING)
        validation = self.validator.validate(
            artifact,
            constraints.known,
            constraints.previous,
            preserved_selectors=constraints.preserved,
        )
        if validation.passed:
            runtime_issues = self._runtime_issues(artifact)
            if runtime_issues:
                validation = self.validator.summarize([*validation.issues, *runtime_issues])
        if not validation.passed:
            raise ValidationFailure(validation)
        return artifact, validation

    def _runtime_issues(self, artifact: WorkingArtifact) -> list[ValidationIssue]:
        if self.probe is None:
            return []
        try:
            errors = self.probe.probe(artifact)
        except Exception as exc:  # noqa: BLE001 - an unavailable probe only lowers confidence.
            logger.warning("Runtime probe unavailable: %s", exc)
            return [
                ValidationIssue(
                    kind=IssueKind.RUNTIME_PROBE_UNAVAILABLE,
                    severity=IssueSeverity.WARNING,
                    message=f"Runtime check could not run: {exc}",
                )
            ]
        return [
            ValidationIssue(
                kind=IssueKind.RUNTIME_ERROR,
                message=f"Runtime error: {error}",
                suggestion="Check that every element exists before using it",
            )
            for error in errors or []
        ]

    def _rollback(self, failure: Exception) -> RefinementResult:
        self.store.restore()
        self._transition(LoopState.ROLLED_BACK)
        diagnostics = list(failure.attempts) if isinstance(failure, ExhaustionFailure) else list(self.history)
        return RefinementResult(
            success=False,
            artifact=self.store.current,
            diagnostics=diagnostics,
            attempts=len(diagnostics),
            failure=failure,
        )


def _check_cancelled(cancel_event: threading.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise SessionCancelled("Refinement cancelled by caller")


def _call_failure_issue(exc: Exception) -> ValidationIssue:
    return ValidationIssue(
        kind=IssueKind.GENERATION_FAILED,
        message=f"Generator call failed: {exc}",
        suggestion="Return one complete JSON object with variants, sharedCss and sharedJs",
    )
