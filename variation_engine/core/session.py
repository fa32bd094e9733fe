from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Sequence

from variation_engine.config.schema import EngineConfig
from variation_engine.core.collaborators import (
    ArtifactGenerator,
    IntentAnalyzer,
    PageContextProvider,
    RuntimeProbe,
    VisionCritic,
)
from variation_engine.core.exceptions import SessionBusyError
from variation_engine.core.inspection import Renderer, VisualInspectionController
from variation_engine.core.intent import IntentClassifier
from variation_engine.core.metadata import (
    ConversationTurn,
    InspectionReport,
    PageContext,
    RefinementResult,
    Strategy,
    WorkingArtifact,
)
from variation_engine.core.refinement import GenerationRetryLoop, WorkingArtifactStore
from variation_engine.core.validator import StaticCodeValidator
from variation_engine.logging.artifacts import ArtifactManager
from variation_engine.logging.audit import SessionAuditLogger
from variation_engine.utils.scoring import SelectorConfidenceScorer

logger = logging.getLogger(__name__)


class RefinementSession:
    """Single-writer owner of one working artifact and its page context."""

    def __init__(
        self,
        generator: ArtifactGenerator,
        critic: VisionCritic | None = None,
        config: EngineConfig | None = None,
        *,
        initial_artifact: WorkingArtifact | None = None,
        page_context: PageContext | None = None,
        context_provider: PageContextProvider | None = None,
        probe: RuntimeProbe | None = None,
        analyzer: IntentAnalyzer | None = None,
        audit_logger: SessionAuditLogger | None = None,
        artifact_manager: ArtifactManager | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.store = WorkingArtifactStore(initial_artifact)
        self.scorer = SelectorConfidenceScorer(self.config.scoring)
        self.loop = GenerationRetryLoop(
            generator,
            self.store,
            StaticCodeValidator(self.config.generation),
            probe=probe,
            settings=self.config.generation,
            audit_logger=audit_logger,
        )
        self.classifier = IntentClassifier(self.config.intent, analyzer)
        self.controller = (
            VisualInspectionController(critic, self.config.inspection, audit_logger, artifact_manager)
            if critic is not None
            else None
        )
        self.context_provider = context_provider
        self.artifact_manager = artifact_manager
        self.page_context: PageContext | None = None
        self._lock = threading.Lock()
        self._cancel_event = threading.Event()
        if page_context is not None:
            self.update_page_context(page_context)

    @property
    def working_artifact(self) -> WorkingArtifact:
        return self.store.current

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def update_page_context(self, context: PageContext | None = None) -> PageContext:
        if context is None:
            if self.context_provider is None:
                raise ValueError("No page context given and no provider configured")
            context = self.context_provider.capture()
        self.page_context = context
        self.scorer.observe_capture(context)
        return context

    def cancel(self) -> None:
        logger.info("Cancellation requested")
        self._cancel_event.set()

    def refine(self, request: str, history: Sequence[ConversationTurn] = ()) -> RefinementResult:
        with self._exclusive():
            decision = self.classifier.classify(request, self.store.current, history)
            if decision.needs_clarification:
                return RefinementResult(
                    success=False,
                    artifact=self.store.current,
                    clarification=decision.question,
                )
            return self._refine(request, decision.strategy)

    def refine_with_strategy(self, request: str, strategy: Strategy) -> RefinementResult:
        with self._exclusive():
            return self._refine(request, strategy)

    def inspect(self, request: str, before_png: bytes, render: Renderer) -> InspectionReport:
        if self.controller is None:
            raise ValueError("Inspection needs a vision critic")
        with self._exclusive():
            return self.controller.run(
                request,
                before_png,
                self.store.current,
                render,
                lambda feedback: self._refine(request, Strategy.USE_NEW_ELEMENTS, feedback),
                self._cancel_event,
            )

    def _refine(self, request: str, strategy: Strategy, feedback: str = "") -> RefinementResult:
        context = self.page_context
        if context is None and self.context_provider is not None:
            context = self.update_page_context()
        known = self.scorer.known_selectors(context) if context else set()
        candidates = self.scorer.candidates(context) if context else []
        result = self.loop.run(
            request,
            strategy,
            known,
            candidates,
            feedback=feedback,
            cancel_event=self._cancel_event,
        )
        if result.success and result.artifact is not None and self.artifact_manager is not None:
            self.artifact_manager.write_artifact(result.artifact)
        return result

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        if not self._lock.acquire(blocking=False):
            raise SessionBusyError("Another refinement or inspection is already running on this session")
        self._cancel_event.clear()
        try:
            yield
        finally:
            self._lock.release()
