from __future__ import annotations

from contextlib import contextmanager
from typing import Callable, Iterator, Sequence

import pytest
from selenium.common.exceptions import WebDriverException

from variation_engine.config.schema import BrowserSettings
from variation_engine.core.browser import BrowserSession
from variation_engine.core.collaborators import (
    ArtifactGenerator,
    CriticVerdict,
    IntentAnalysis,
    IntentAnalyzer,
    PageContextProvider,
    RuntimeProbe,
    VisionCritic,
)
from variation_engine.core.metadata import (
    ConversationTurn,
    Defect,
    DefectSeverity,
    GenerationPrompt,
    InspectionStatus,
    PageContext,
    PageElement,
    Variant,
    WorkingArtifact,
)


def artifact(css: str = "", js: str = "", shared_css: str = "", shared_js: str = "") -> WorkingArtifact:
    return WorkingArtifact(
        variants=(Variant(name="Variation 1", css=css, js=js),),
        shared_css=shared_css,
        shared_js=shared_js,
    )


def defect(description: str, fix: str = "Adjust the CSS rule", severity: str = "critical", kind: str = "layout") -> Defect:
    return Defect(
        severity=DefectSeverity(severity),
        type=kind,
        description=description,
        suggested_fix=fix,
    )


def verdict(
    status: str,
    defects: Sequence[Defect] = (),
    should_continue: bool | None = None,
    goal_accomplished: bool = False,
) -> CriticVerdict:
    return CriticVerdict(
        status=InspectionStatus(status),
        goal_accomplished=goal_accomplished,
        defects=list(defects),
        reasoning="scripted",
        should_continue=status != "PASS" if should_continue is None else should_continue,
    )


def build_page_context(capture_id: str = "capture-1") -> PageContext:
    return PageContext(
        capture_id=capture_id,
        url="https://shop.example.com/",
        elements=(
            PageElement(
                selector="#cta",
                match_count=1,
                alternatives={".btn-primary": 2, "a.btn.btn-primary": 2},
                tag="a",
                text="Buy now",
            ),
            PageElement(selector=".btn", match_count=12, tag="a", text="Shop"),
            PageElement(
                selector=".hero-title",
                match_count=1,
                alternatives={"h1": 1},
                tag="h1",
                text="Summer sale",
            ),
            PageElement(selector="div", match_count=300, tag="div"),
            PageElement(selector=".ghost", match_count=0, tag="span"),
        ),
    )


class ScriptedGenerator(ArtifactGenerator):
    """Replays artifacts or raises exceptions in order, repeating the last one."""

    def __init__(self, *outcomes, on_generate: Callable[[GenerationPrompt], None] | None = None) -> None:
        self.outcomes = list(outcomes)
        self.prompts: list[GenerationPrompt] = []
        self.on_generate = on_generate

    def generate(self, prompt: GenerationPrompt) -> WorkingArtifact:
        self.prompts.append(prompt)
        if self.on_generate is not None:
            self.on_generate(prompt)
        index = min(len(self.prompts), len(self.outcomes)) - 1
        outcome = self.outcomes[index]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class ScriptedCritic(VisionCritic):
    def __init__(self, *outcomes) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[dict] = []

    def inspect(self, request, before_png, after_png, prior_defects, iteration) -> CriticVerdict:
        self.calls.append(
            {
                "request": request,
                "before": before_png,
                "after": after_png,
                "prior_defects": list(prior_defects),
                "iteration": iteration,
            }
        )
        index = min(len(self.calls), len(self.outcomes)) - 1
        outcome = self.outcomes[index]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class StubProbe(RuntimeProbe):
    def __init__(self, errors: list[str] | None = None, failure: Exception | None = None) -> None:
        self.errors = errors
        self.failure = failure
        self.probed: list[WorkingArtifact] = []

    def probe(self, artifact: WorkingArtifact) -> list[str] | None:
        self.probed.append(artifact)
        if self.failure is not None:
            raise self.failure
        return self.errors


class StubAnalyzer(IntentAnalyzer):
    def __init__(self, analysis: IntentAnalysis | None = None, failure: Exception | None = None) -> None:
        self.analysis = analysis
        self.failure = failure
        self.calls: list[tuple[str, list[ConversationTurn]]] = []

    def analyze(self, request, working_artifact, history) -> IntentAnalysis:
        self.calls.append((request, list(history)))
        if self.failure is not None:
            raise self.failure
        return self.analysis


class StaticContextProvider(PageContextProvider):
    def __init__(self) -> None:
        self.captures = 0

    def capture(self) -> PageContext:
        self.captures += 1
        return build_page_context(f"capture-{self.captures}")


class SequenceRenderer:
    """Returns a different fake PNG for every render call."""

    def __init__(self, prefix: bytes = b"after") -> None:
        self.prefix = prefix
        self.rendered: list[WorkingArtifact] = []

    def __call__(self, working: WorkingArtifact) -> bytes:
        self.rendered.append(working)
        return self.prefix + str(len(self.rendered)).encode("ascii")


@contextmanager
def managed_driver(browser_name: str = "chrome") -> Iterator[object]:
    session = BrowserSession(BrowserSettings(name=browser_name, settle_seconds=0))
    try:
        driver = session.start()
    except WebDriverException as exc:
        pytest.skip(f"WebDriver could not start for {browser_name}: {exc}")
    try:
        yield driver
    finally:
        driver.quit()
