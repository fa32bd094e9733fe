from __future__ import annotations

import pytest

from tests.helpers import (
    ScriptedCritic,
    ScriptedGenerator,
    SequenceRenderer,
    StaticContextProvider,
    artifact,
    defect,
    verdict,
)
from variation_engine.core.exceptions import SessionBusyError, SessionCancelled
from variation_engine.core.metadata import InspectionStatus, StopReason, Strategy, WorkingArtifact
from variation_engine.core.session import RefinementSession

RED = artifact(css="#cta { background: #c91919 !important; }")
BIGGER = artifact(css="#cta { background: #c91919 !important; font-size: 2rem !important; }")
TWO_SELECTORS = artifact(css="#cta { background: red; } .hero-title { color: navy; }")


def test_unresolved_pronoun_returns_question_without_generating(page_context):
    generator = ScriptedGenerator(RED)
    session = RefinementSession(generator, initial_artifact=TWO_SELECTORS, page_context=page_context)
    result = session.refine("make it bigger")
    assert not result.success
    assert result.clarification is not None
    assert len(result.clarification.options) == 3
    assert generator.prompts == []
    assert session.working_artifact == TWO_SELECTORS


def test_refine_commits_and_stores_artifact(page_context, artifact_manager, audit_logger):
    session = RefinementSession(
        ScriptedGenerator(RED),
        page_context=page_context,
        artifact_manager=artifact_manager,
        audit_logger=audit_logger,
    )
    result = session.refine("Make the CTA button red")
    assert result.success
    assert session.working_artifact == RED
    assert len(list(artifact_manager.artifact_root.glob("*_committed.json"))) == 1
    assert audit_logger.read_events("refinement")[0]["strategy"] == "USE_NEW_ELEMENTS"


def test_follow_up_on_single_element_preserves_selectors(page_context):
    generator = ScriptedGenerator(RED, BIGGER)
    session = RefinementSession(generator, page_context=page_context)
    assert session.refine("Make the CTA button red").success
    result = session.refine("make it bigger")
    assert result.success
    assert generator.prompts[1].strategy is Strategy.PRESERVE_SELECTORS
    assert generator.prompts[1].allowed_selectors == ("#cta",)
    assert generator.prompts[1].working_artifact == RED
    assert session.working_artifact == BIGGER


def test_explicit_strategy_skips_classification(page_context):
    generator = ScriptedGenerator(RED)
    session = RefinementSession(generator, initial_artifact=TWO_SELECTORS, page_context=page_context)
    result = session.refine_with_strategy("make it bigger", Strategy.FULL_REWRITE)
    assert result.success
    assert generator.prompts[0].strategy is Strategy.FULL_REWRITE


def test_second_writer_is_rejected_while_busy(page_context):
    rejected: list[SessionBusyError] = []
    observed_busy: list[bool] = []
    holder: list[RefinementSession] = []

    def reenter(prompt):
        observed_busy.append(holder[0].busy)
        try:
            holder[0].refine("Make the hero title navy")
        except SessionBusyError as exc:
            rejected.append(exc)

    session = RefinementSession(ScriptedGenerator(RED, on_generate=reenter), page_context=page_context)
    holder.append(session)
    result = session.refine("Make the CTA button red")
    assert result.success
    assert observed_busy == [True]
    assert len(rejected) == 1
    assert not session.busy


def test_cancel_rolls_back_and_next_request_starts_clean(page_context):
    holder: list[RefinementSession] = []
    generator = ScriptedGenerator(
        RED,
        on_generate=lambda prompt: holder[0].cancel() if len(generator.prompts) == 1 else None,
    )
    session = RefinementSession(generator, initial_artifact=TWO_SELECTORS, page_context=page_context)
    holder.append(session)
    cancelled = session.refine_with_strategy("Make the CTA button red", Strategy.USE_NEW_ELEMENTS)
    assert not cancelled.success
    assert isinstance(cancelled.failure, SessionCancelled)
    assert session.working_artifact == TWO_SELECTORS
    retried = session.refine_with_strategy("Make the CTA button red", Strategy.USE_NEW_ELEMENTS)
    assert retried.success
    assert session.working_artifact == RED


def test_inspection_feeds_defects_back_into_refinement(page_context, audit_logger):
    critic = ScriptedCritic(
        verdict("CRITICAL_DEFECT", [defect("CTA text unreadable", fix="#cta { color: #ffffff !important; }")]),
        verdict("PASS", goal_accomplished=True),
    )
    generator = ScriptedGenerator(RED, BIGGER)
    session = RefinementSession(generator, critic, page_context=page_context, audit_logger=audit_logger)
    assert session.refine("Make the CTA button red").success
    renderer = SequenceRenderer()
    report = session.inspect("Make the CTA button red", b"before", renderer)
    assert report.final_status is InspectionStatus.PASS
    assert report.stop_reason is StopReason.PASSED
    assert report.final_artifact == BIGGER
    assert session.working_artifact == BIGGER
    assert generator.prompts[1].strategy is Strategy.USE_NEW_ELEMENTS
    assert "VISUAL QA FEEDBACK (iteration 1):" in generator.prompts[1].feedback
    assert renderer.rendered == [RED, BIGGER]
    assert len(audit_logger.read_events("inspection_iteration")) == 2


def test_inspection_requires_a_critic(page_context):
    session = RefinementSession(ScriptedGenerator(RED), page_context=page_context)
    with pytest.raises(ValueError):
        session.inspect("Make the CTA button red", b"before", SequenceRenderer())


def test_page_context_comes_from_provider_on_demand():
    provider = StaticContextProvider()
    session = RefinementSession(ScriptedGenerator(RED), context_provider=provider)
    assert session.page_context is None
    assert session.refine("Make the CTA button red").success
    assert provider.captures == 1
    refreshed = session.update_page_context()
    assert refreshed.capture_id == "capture-2"
    assert session.page_context is refreshed


def test_update_without_context_or_provider_fails():
    session = RefinementSession(ScriptedGenerator(RED), initial_artifact=WorkingArtifact.empty())
    with pytest.raises(ValueError):
        session.update_page_context()


def test_inspection_survives_a_crashing_renderer(page_context):
    def render(working):
        raise RuntimeError("browser crashed")

    critic = ScriptedCritic(verdict("PASS", goal_accomplished=True))
    session = RefinementSession(ScriptedGenerator(RED), critic, page_context=page_context)
    assert session.refine("Make the CTA button red").success
    report = session.inspect("Make the CTA button red", b"before", render)
    assert report.final_status is InspectionStatus.ERROR
    assert report.stop_reason is StopReason.RENDER_FAILED
    assert session.working_artifact == RED
    assert not session.busy
