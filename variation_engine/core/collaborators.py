from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Sequence

from variation_engine.core.metadata import (
    ConversationTurn,
    Defect,
    GenerationPrompt,
    InspectionStatus,
    PageContext,
    WorkingArtifact,
)


@dataclass(slots=True)
class CriticVerdict:
    """A vision critic response after schema validation."""

    status: InspectionStatus
    goal_accomplished: bool
    defects: list[Defect] = field(default_factory=list)
    reasoning: str = ""
    should_continue: bool = True


@dataclass(slots=True)
class IntentAnalysis:
    intent_type: str
    confidence: float
    refinement_type: str = "incremental"
    reasoning: str = ""


class ArtifactGenerator(ABC):
    @abstractmethod
    def generate(self, prompt: GenerationPrompt) -> WorkingArtifact:
        """Returns a candidate artifact or raises GenerationCallFailure."""


class VisionCritic(ABC):
    @abstractmethod
    def inspect(
        self,
        request: str,
        before_png: bytes,
        after_png: bytes,
        prior_defects: Sequence[Defect],
        iteration: int,
    ) -> CriticVerdict:
        """Raises InspectionUnreachable or InspectionParseFailure on failure."""


class RuntimeProbe(ABC):
    @abstractmethod
    def probe(self, artifact: WorkingArtifact) -> list[str] | None:
        raise NotImplementedError


class PageContextProvider(ABC):
    @abstractmethod
    def capture(self) -> PageContext:
        raise NotImplementedError


class IntentAnalyzer(ABC):
    @abstractmethod
    def analyze(
        self,
        request: str,
        working_artifact: WorkingArtifact,
        history: Sequence[ConversationTurn],
    ) -> IntentAnalysis:
        raise NotImplementedError
