from __future__ import annotations

import threading

from tests.helpers import ScriptedCritic, SequenceRenderer, artifact, defect, verdict
from variation_engine.config.schema import InspectionSettings
from variation_engine.core.exceptions import InspectionParseFailure, InspectionUnreachable
from variation_engine.core.inspection import VisualInspectionController, decide_termination, feedback_block
from variation_engine.core.metadata import InspectionStatus, RefinementResult, StopReason

CLEAN = artifact(css="#cta { background: #c91919 !important; }")
BEFORE = b"before-png"


def refine_to(*artifacts):
    calls: list[str] = []
    queue = list(artifacts)

    def refine(feedback: str) -> RefinementResult:
        calls.append(feedback)
        produced = queue.pop(0) if queue else CLEAN
        return RefinementResult(success=True, artifact=produced, confidence=100, attempts=1)

    return refine, calls


def test_identical_screenshots_skip_the_critic():
    critic = ScriptedCritic(verdict("PASS"))
    controller = VisualInspectionController(critic)
    iteration, should_continue = controller.inspect_once(1, "Make the CTA red", BEFORE, BEFORE, CLEAN)
    assert iteration.status is InspectionStatus.GOAL_NOT_MET
    assert iteration.pre_screened
    assert critic.calls == []
    assert len(iteration.defects) == 1
    assert iteration.defects[0].severity == "critical"
    assert iteration.defects[0].description == "Screenshots are identical - no changes were applied to the page"
    assert should_continue


def test_unguarded_repeats_are_flagged_without_the_critic():
    critic = ScriptedCritic(verdict("PASS"))
    js = "document.querySelector('.btn').textContent = 'A';\ndocument.querySelector('.btn').style.color = 'red';"
    iteration, _ = VisualInspectionController(critic).inspect_once(1, "Relabel", BEFORE, b"after", artifact(js=js))
    assert iteration.status is InspectionStatus.CRITICAL_DEFECT
    assert iteration.defects[0].type == "potential-duplication"
    assert critic.calls == []


def test_repeated_defects_stop_before_max_iterations():
    critic = ScriptedCritic(
        verdict("CRITICAL_DEFECT", [defect("button duplicated")]),
        verdict("CRITICAL_DEFECT", [defect("Button duplicated again")]),
        verdict("PASS"),
    )
    controller = VisualInspectionController(critic, InspectionSettings(max_iterations=5))
    refine, calls = refine_to()
    report = controller.run("Add a lock icon", BEFORE, CLEAN, SequenceRenderer(), refine)
    assert len(report.iterations) == 2
    assert report.stop_reason is StopReason.REPEATED_DEFECTS
    assert report.iterations[-1].stop_reason is StopReason.REPEATED_DEFECTS
    assert len(calls) == 1
    assert critic.calls[1]["prior_defects"][0].description == "button duplicated"


def test_repeated_defects_take_priority_over_max_iterations():
    critic = ScriptedCritic(
        verdict("CRITICAL_DEFECT", [defect("button duplicated")]),
        verdict("CRITICAL_DEFECT", [defect("Button duplicated again")]),
    )
    controller = VisualInspectionController(critic, InspectionSettings(max_iterations=2))
    refine, _ = refine_to()
    report = controller.run("Add a lock icon", BEFORE, CLEAN, SequenceRenderer(), refine)
    assert report.stop_reason is StopReason.REPEATED_DEFECTS


def test_iterations_are_bounded_even_when_critic_wants_more():
    descriptions = [
        "Heading overlaps banner",
        "Footer text unreadable",
        "Logo image missing",
        "Price label misaligned",
        "Checkout link invisible",
    ]
    critic = ScriptedCritic(
        *(verdict("CRITICAL_DEFECT", [defect(text)], should_continue=True) for text in descriptions)
    )
    for limit in (1, 2, 4):
        critic.calls.clear()
        controller = VisualInspectionController(critic, InspectionSettings(max_iterations=limit))
        refine, calls = refine_to()
        report = controller.run("Restyle the hero", BEFORE, CLEAN, SequenceRenderer(), refine)
        assert len(report.iterations) == limit
        assert report.stop_reason is StopReason.MAX_ITERATIONS
        assert report.final_status is InspectionStatus.CRITICAL_DEFECT
        assert len(calls) == limit - 1


def test_dangerous_suggestions_never_survive(audit_logger):
    dangerous = defect("Banner covers navigation", fix="Add margin-top: 60px to the header so the banner fits")
    css_dangerous = defect("Banner overlaps menu", fix="nav { margin-top: 50px !important; }")
    safe = defect("CTA text unreadable", fix=".btn { color: #ffffff !important; }")
    critic = ScriptedCritic(verdict("CRITICAL_DEFECT", [dangerous, css_dangerous, safe]))
    controller = VisualInspectionController(critic, audit_logger=audit_logger)
    iteration, _ = controller.inspect_once(1, "Add a fixed banner", BEFORE, b"after", CLEAN)
    assert iteration.defects == [safe]
    assert iteration.discarded_defects == [dangerous, css_dangerous]
    assert iteration.status is InspectionStatus.CRITICAL_DEFECT
    events = audit_logger.read_events("dangerous_suggestion_discarded")
    assert [event["defect"]["suggestedFix"] for event in events] == [
        dangerous.suggested_fix,
        css_dangerous.suggested_fix,
    ]


def test_only_dangerous_defects_promote_to_pass():
    critic = ScriptedCritic(
        verdict("MAJOR_DEFECT", [defect("Header too close", fix="Set position: absolute on .primary-nav")])
    )
    controller = VisualInspectionController(critic)
    refine, calls = refine_to()
    report = controller.run("Add a fixed banner", BEFORE, CLEAN, SequenceRenderer(), refine)
    assert report.final_status is InspectionStatus.PASS
    assert report.stop_reason is StopReason.PASSED
    assert report.iterations[0].defects == []
    assert calls == []


def test_unreachable_critic_is_terminal_error():
    critic = ScriptedCritic(InspectionUnreachable("LLM request timed out after 30s"))
    refine, calls = refine_to()
    report = VisualInspectionController(critic).run("Make the CTA red", BEFORE, CLEAN, SequenceRenderer(), refine)
    assert report.final_status is InspectionStatus.ERROR
    assert report.stop_reason is StopReason.CRITIC_STOPPED
    assert report.iterations[0].should_continue is False
    assert len(critic.calls) == 1
    assert calls == []


def test_unparseable_critic_is_terminal_error():
    critic = ScriptedCritic(InspectionParseFailure("CriticPayload rejected"))
    iteration, should_continue = VisualInspectionController(critic).inspect_once(
        1, "Make the CTA red", BEFORE, b"after", CLEAN
    )
    assert iteration.status is InspectionStatus.ERROR
    assert should_continue is False


def test_feedback_reaches_next_refinement_and_new_render():
    fixed = artifact(css="#cta { background: #c91919 !important; color: #fff !important; }")
    critic = ScriptedCritic(
        verdict("CRITICAL_DEFECT", [defect("CTA text unreadable", fix=".btn { color: #ffffff !important; }")]),
        verdict("PASS", goal_accomplished=True),
    )
    renderer = SequenceRenderer()
    refine, calls = refine_to(fixed)
    report = VisualInspectionController(critic, InspectionSettings(max_iterations=3)).run(
        "Make the CTA red", BEFORE, CLEAN, renderer, refine
    )
    assert report.final_status is InspectionStatus.PASS
    assert report.final_artifact == fixed
    assert renderer.rendered == [CLEAN, fixed]
    assert "[CRITICAL] layout: CTA text unreadable" in calls[0]
    assert "MANDATORY CSS/JS CHANGE: .btn { color: #ffffff !important; }" in calls[0]
    assert critic.calls[1]["after"] == b"after2"
    assert len(report.refinements) == 1


def test_failed_corrective_refinement_keeps_last_artifact():
    critic = ScriptedCritic(verdict("CRITICAL_DEFECT", [defect("CTA text unreadable")]))

    def refine(feedback: str) -> RefinementResult:
        return RefinementResult(success=False, artifact=CLEAN, attempts=3)

    report = VisualInspectionController(critic, InspectionSettings(max_iterations=3)).run(
        "Make the CTA red", BEFORE, CLEAN, SequenceRenderer(), refine
    )
    assert report.stop_reason is StopReason.REFINEMENT_FAILED
    assert report.final_artifact == CLEAN
    assert len(report.iterations) == 1
    assert report.iterations[0].should_continue is False


def test_cancelled_inspection_stops_between_iterations():
    cancel = threading.Event()
    critic = ScriptedCritic(verdict("CRITICAL_DEFECT", [defect("CTA text unreadable")]))

    def refine(feedback: str) -> RefinementResult:
        cancel.set()
        return RefinementResult(success=True, artifact=CLEAN, attempts=1)

    report = VisualInspectionController(critic, InspectionSettings(max_iterations=3)).run(
        "Make the CTA red", BEFORE, CLEAN, SequenceRenderer(), refine, cancel
    )
    assert len(report.iterations) == 1
    assert report.stop_reason is StopReason.CANCELLED


def test_screenshots_are_stored_per_iteration(artifact_manager):
    critic = ScriptedCritic(verdict("PASS", goal_accomplished=True))
    controller = VisualInspectionController(critic, artifact_manager=artifact_manager)
    controller.inspect_once(1, "Make the CTA red", BEFORE, b"after", CLEAN)
    stored = sorted(path.name for path in artifact_manager.screenshot_root.iterdir())
    assert len(stored) == 2
    assert stored[0].endswith("_iter1_after.png")
    assert stored[1].endswith("_iter1_before.png")


def test_termination_rule_order():
    settings = InspectionSettings(max_iterations=2)
    repeated = [defect("button duplicated")]
    assert decide_termination(5, InspectionStatus.PASS, [], False, repeated, settings) is StopReason.PASSED
    assert (
        decide_termination(2, InspectionStatus.CRITICAL_DEFECT, repeated, True, repeated, settings)
        is StopReason.REPEATED_DEFECTS
    )
    assert (
        decide_termination(2, InspectionStatus.CRITICAL_DEFECT, [defect("Footer text unreadable")], False, repeated, settings)
        is StopReason.MAX_ITERATIONS
    )
    assert decide_termination(1, InspectionStatus.MAJOR_DEFECT, repeated, False, None, settings) is StopReason.CRITIC_STOPPED
    assert decide_termination(1, InspectionStatus.MAJOR_DEFECT, repeated, True, None, settings) is None
    assert (
        decide_termination(1, InspectionStatus.MAJOR_DEFECT, repeated, True, repeated, settings) is None
    )


def test_feedback_block_tags_severity():
    block = feedback_block(
        2,
        [
            defect("CTA text unreadable", fix=".btn { color: #fff !important; }"),
            defect("Spacing uneven", fix="", severity="major", kind="spacing"),
        ],
    )
    assert block.startswith("VISUAL QA FEEDBACK (iteration 2):")
    assert "1. [CRITICAL] layout: CTA text unreadable" in block
    assert "   MANDATORY CSS/JS CHANGE: .btn { color: #fff !important; }" in block
    assert "2. [MAJOR] spacing: Spacing uneven" in block
    assert block.count("MANDATORY") == 1


def failing_renderer(fail_on: int):
    rendered: list = []

    def render(working):
        rendered.append(working)
        if len(rendered) == fail_on:
            raise RuntimeError("browser crashed")
        return b"after" + str(len(rendered)).encode("ascii")

    return render, rendered


def test_initial_render_failure_ends_with_error_report(audit_logger):
    critic = ScriptedCritic(verdict("PASS"))
    render, _ = failing_renderer(fail_on=1)
    refine, calls = refine_to()
    report = VisualInspectionController(critic, audit_logger=audit_logger).run(
        "Make the CTA red", BEFORE, CLEAN, render, refine
    )
    assert report.final_status is InspectionStatus.ERROR
    assert report.stop_reason is StopReason.RENDER_FAILED
    assert report.final_artifact == CLEAN
    assert len(report.iterations) == 1
    assert report.iterations[0].should_continue is False
    assert "browser crashed" in report.iterations[0].reasoning
    assert critic.calls == []
    assert calls == []
    assert audit_logger.read_events("inspection_iteration")[0]["stop_reason"] == "render-failed"


def test_render_failure_after_refinement_keeps_committed_artifact():
    fixed = artifact(css="#cta { background: #c91919 !important; color: #fff !important; }")
    critic = ScriptedCritic(verdict("CRITICAL_DEFECT", [defect("CTA text unreadable")]))
    render, rendered = failing_renderer(fail_on=2)
    refine, calls = refine_to(fixed)
    report = VisualInspectionController(critic, InspectionSettings(max_iterations=3)).run(
        "Make the CTA red", BEFORE, CLEAN, render, refine
    )
    assert len(calls) == 1
    assert rendered == [CLEAN, fixed]
    assert report.final_artifact == fixed
    assert report.stop_reason is StopReason.RENDER_FAILED
    assert [iteration.status for iteration in report.iterations] == [
        InspectionStatus.CRITICAL_DEFECT,
        InspectionStatus.ERROR,
    ]
    assert report.iterations[1].number == 2
    assert report.iterations[1].should_continue is False
    assert len(critic.calls) == 1
