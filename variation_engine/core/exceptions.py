from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from variation_engine.core.metadata import RefinementAttempt, ValidationResult


class EngineError(RuntimeError):
    """Base class for refinement and inspection failures."""


class LLMRequestError(EngineError):
    """Raised when a provider call cannot be completed."""


class ResponseSchemaError(EngineError):
    """Raised when a model response is not the JSON shape we asked for."""


class GenerationCallFailure(EngineError):
    """Raised when the generator call fails or returns an unusable artifact."""


class ValidationFailure(EngineError):
    """Raised when a generated artifact does not pass the validation gates."""

    def __init__(self, result: ValidationResult) -> None:
        self.result = result
        messages = "; ".join(issue.message for issue in result.errors)
        super().__init__(messages or "validation failed")


class ExhaustionFailure(EngineError):
    """Raised when the attempt budget is spent without a passing artifact."""

    def __init__(self, attempts: list[RefinementAttempt]) -> None:
        self.attempts = list(attempts)
        super().__init__(f"Code validation failed after {len(self.attempts)} attempts")


class InspectionParseFailure(EngineError):
    """Raised when the vision critic's response cannot be parsed."""


class InspectionUnreachable(EngineError):
    """Raised when the vision critic service cannot be reached."""


class SessionBusyError(EngineError):
    """Raised when a second writer tries to enter an active session."""


class SessionCancelled(EngineError):
    """Raised when the caller abandons a session between attempts."""
