from __future__ import annotations

import logging
import threading
from typing import Callable, Sequence

from variation_engine.config.schema import InspectionSettings
from variation_engine.core.collaborators import CriticVerdict, VisionCritic
from variation_engine.core.exceptions import InspectionParseFailure, InspectionUnreachable
from variation_engine.core.metadata import (
    Defect,
    DefectSeverity,
    InspectionIteration,
    InspectionReport,
    InspectionStatus,
    RefinementResult,
    StopReason,
    WorkingArtifact,
)
from variation_engine.logging.artifacts import ArtifactManager
from variation_engine.logging.audit import SessionAuditLogger
from variation_engine.utils.code_scan import unguarded_repeated_selectors
from variation_engine.utils.defects import compile_patterns, defects_repeated, filter_dangerous

logger = logging.getLogger(__name__)

Renderer = Callable[[WorkingArtifact], bytes]
Refiner = Callable[[str], RefinementResult]


def decide_termination(
    number: int,
    status: InspectionStatus,
    defects: Sequence[Defect],
    critic_should_continue: bool,
    previous_defects: Sequence[Defect] | None,
    settings: InspectionSettings | None = None,
) -> StopReason | None:
    """Returns why inspection stops after this iteration, or None to continue.

    Rules are checked in a fixed order and the first match wins.
    """
    settings = settings or InspectionSettings()
    if status is InspectionStatus.PASS:
        return StopReason.PASSED
    if number >= 2 and previous_defects and defects_repeated(defects, previous_defects, settings):
        return StopReason.REPEATED_DEFECTS
    if number >= settings.max_iterations:
        return StopReason.MAX_ITERATIONS
    if not critic_should_continue:
        return StopReason.CRITIC_STOPPED
    return None


def feedback_block(number: int, defects: Sequence[Defect]) -> str:
    lines = [
        f"VISUAL QA FEEDBACK (iteration {number}):",
        "The rendered result still has these problems. Apply every mandatory change below.",
        "",
    ]
    for index, defect in enumerate(defects, start=1):
        tag = "CRITICAL" if defect.severity is DefectSeverity.CRITICAL else "MAJOR"
        lines.append(f"{index}. [{tag}] {defect.type}: {defect.description}")
        if defect.suggested_fix:
            lines.append(f"   MANDATORY CSS/JS CHANGE: {defect.suggested_fix}")
    return "\n".join(lines)


class VisualInspectionController:
    """Runs the bounded screenshot review cycle around a vision critic."""

    def __init__(
        self,
        critic: VisionCritic,
        settings: InspectionSettings | None = None,
        audit_logger: SessionAuditLogger | None = None,
        artifact_manager: ArtifactManager | None = None,
    ) -> None:
        self.critic = critic
        self.settings = settings or InspectionSettings()
        self.audit_logger = audit_logger
        self.artifact_manager = artifact_manager
        self._patterns = compile_patterns(self.settings.dangerous_fix_patterns)

    def pre_screen(self, before_png: bytes, after_png: bytes, artifact: WorkingArtifact) -> CriticVerdict | None:
        if before_png == after_png:
            logger.info("Screenshots are identical, skipping the vision critic")
            return CriticVerdict(
                status=InspectionStatus.GOAL_NOT_MET,
                goal_accomplished=False,
                defects=[
                    Defect(
                        severity=DefectSeverity.CRITICAL,
                        type="element-missing",
                        description="Screenshots are identical - no changes were applied to the page",
                        suggested_fix="Verify selectors exist and JavaScript executed without errors",
                    )
                ],
                reasoning="Before and after screenshots are byte-identical",
                should_continue=True,
            )
        repeated = unguarded_repeated_selectors(artifact)
        if repeated:
            selectors = ", ".join(sorted(repeated))
            logger.info("Unguarded repeated selectors (%s), skipping the vision critic", selectors)
            return CriticVerdict(
                status=InspectionStatus.CRITICAL_DEFECT,
                goal_accomplished=False,
                defects=[
                    Defect(
                        severity=DefectSeverity.CRITICAL,
                        type="potential-duplication",
                        description=(
                            f"Code queries {selectors} repeatedly without a marker guard "
                            "and may create duplicate elements on repeated execution"
                        ),
                        suggested_fix=(
                            "Start the JavaScript with if (element.dataset.varApplied) return; "
                            "and set element.dataset.varApplied = '1' after the change"
                        ),
                    )
                ],
                reasoning="Static scan found a duplication risk",
                should_continue=True,
            )
        return None

    def inspect_once(
        self,
        number: int,
        request: str,
        before_png: bytes,
        after_png: bytes,
        artifact: WorkingArtifact,
        prior_defects: Sequence[Defect] = (),
    ) -> tuple[InspectionIteration, bool]:
        """Runs one iteration; also returns the critic's own continue flag."""

        if self.artifact_manager is not None:
            self.artifact_manager.write_screenshots(number, before_png, after_png)
        verdict = self.pre_screen(before_png, after_png, artifact)
        pre_screened = verdict is not None
        if verdict is None:
            verdict = self._ask_critic(number, request, before_png, after_png, prior_defects)

        kept, discarded = filter_dangerous(verdict.defects, self._patterns)
        for defect in discarded:
            logger.warning(
                "Discarded dangerous suggestion in iteration %d: %s", number, defect.suggested_fix
            )
            if self.audit_logger is not None:
                self.audit_logger.record_discarded(number, defect)
        status = verdict.status
        goal_accomplished = verdict.goal_accomplished
        if discarded and not kept:
            logger.info("All defects in iteration %d were dangerous, treating as PASS", number)
            status = InspectionStatus.PASS
            goal_accomplished = True

        iteration = InspectionIteration(
            number=number,
            status=status,
            defects=kept,
            should_continue=verdict.should_continue,
            goal_accomplished=goal_accomplished,
            reasoning=verdict.reasoning,
            pre_screened=pre_screened,
            discarded_defects=discarded,
        )
        return iteration, verdict.should_continue

    def _ask_critic(
        self,
        number: int,
        request: str,
        before_png: bytes,
        after_png: bytes,
        prior_defects: Sequence[Defect],
    ) -> CriticVerdict:
        try:
            return self.critic.inspect(request, before_png, after_png, prior_defects, number)
        except (InspectionParseFailure, InspectionUnreachable) as exc:
            logger.warning("Vision critic failed in iteration %d: %s", number, exc)
            reason = str(exc)
        except Exception as exc:  # noqa: BLE001 - a broken critic ends inspection, never the session.
            logger.exception("Vision critic raised unexpectedly in iteration %d", number)
            reason = f"{type(exc).__name__}: {exc}"
        return CriticVerdict(
            status=InspectionStatus.ERROR,
            goal_accomplished=False,
            reasoning=reason,
            should_continue=False,
        )

    def run(
        self,
        request: str,
        before_png: bytes,
        artifact: WorkingArtifact,
        render: Renderer,
        refine: Refiner,
        cancel_event: threading.Event | None = None,
    ) -> InspectionReport:
        """Inspects ``artifact`` and feeds defects back through ``refine``.

        ``render`` turns an artifact into an after-screenshot and ``refine``
        runs a corrective generation pass from a feedback block.
        """
        report = InspectionReport(
            final_status=InspectionStatus.ERROR,
            iterations=[],
            final_artifact=artifact,
        )
        after_png = self._render(render, artifact, 1, report)
        if after_png is None:
            return report
        previous_defects: list[Defect] | None = None
        for number in range(1, self.settings.max_iterations + 1):
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Inspection cancelled before iteration %d", number)
                report.stop_reason = StopReason.CANCELLED
                break
            iteration, critic_should_continue = self.inspect_once(
                number, request, before_png, after_png, report.final_artifact, previous_defects or ()
            )
            stop = decide_termination(
                number,
                iteration.status,
                iteration.defects,
                critic_should_continue,
                previous_defects,
                self.settings,
            )
            iteration.stop_reason = stop
            iteration.should_continue = stop is None
            report.iterations.append(iteration)
            report.final_status = iteration.status
            logger.info(
                "Inspection iteration %d: %s with %d defect(s), %s",
                number,
                iteration.status,
                len(iteration.defects),
                f"stopping ({stop})" if stop else "continuing",
            )
            if stop is not None:
                report.stop_reason = stop
                self._audit(iteration)
                break

            refinement = refine(feedback_block(number, iteration.defects))
            report.refinements.append(refinement)
            if not refinement.success or refinement.artifact is None:
                logger.warning("Corrective refinement after iteration %d failed, keeping last artifact", number)
                iteration.stop_reason = StopReason.REFINEMENT_FAILED
                iteration.should_continue = False
                report.stop_reason = StopReason.REFINEMENT_FAILED
                self._audit(iteration)
                break
            self._audit(iteration)
            report.final_artifact = refinement.artifact
            after_png = self._render(render, refinement.artifact, number + 1, report)
            if after_png is None:
                break
            previous_defects = iteration.defects
        return report

    def _render(
        self, render: Renderer, artifact: WorkingArtifact, number: int, report: InspectionReport
    ) -> bytes | None:
        """Screenshot for iteration ``number``; a failure is recorded as a final ERROR iteration."""

        try:
            return render(artifact)
        except Exception as exc:  # noqa: BLE001 - a broken renderer ends inspection, never the session.
            logger.exception("Rendering for inspection iteration %d failed", number)
            iteration = InspectionIteration(
                number=number,
                status=InspectionStatus.ERROR,
                should_continue=False,
                reasoning=f"Render failed: {type(exc).__name__}: {exc}",
                stop_reason=StopReason.RENDER_FAILED,
            )
            report.iterations.append(iteration)
            report.final_status = InspectionStatus.ERROR
            report.stop_reason = StopReason.RENDER_FAILED
            self._audit(iteration)
            return None

    def _audit(self, iteration: InspectionIteration) -> None:
        if self.audit_logger is not None:
            self.audit_logger.record_iteration(iteration)
