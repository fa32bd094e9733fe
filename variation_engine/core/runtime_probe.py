from __future__ import annotations

import logging

from variation_engine.config.schema import BrowserSettings
from variation_engine.core.collaborators import RuntimeProbe
from variation_engine.core.dom_monitor import DomMonitor
from variation_engine.core.metadata import WorkingArtifact
from variation_engine.utils.wait import settle, wait_for_document_ready

logger = logging.getLogger(__name__)

APPLY_SCRIPT = r"""
const css = arguments[0];
const js = arguments[1];
const label = arguments[2];
if (!window.__variation_errors__) window.__variation_errors__ = [];
if (!window.__variation_error_hook__) {
  window.addEventListener("error", (event) => {
    window.__variation_errors__.push(event.message || String(event.error));
  });
  window.__variation_error_hook__ = true;
}
if (css && css.trim()) {
  const style = document.createElement("style");
  style.setAttribute("data-variation-style", label);
  style.textContent = css;
  document.head.appendChild(style);
}
if (js && js.trim()) {
  try {
    new Function(js)();
  } catch (error) {
    window.__variation_errors__.push(`${label}: ${error && error.message ? error.message : String(error)}`);
  }
}
return window.__variation_errors__.splice(0);
"""

COLLECT_ERRORS_SCRIPT = "return (window.__variation_errors__ || []).splice(0);"


class SeleniumRuntimeProbe(RuntimeProbe):
    """Executes artifacts in a real page to catch runtime and repeat-run errors."""

    def __init__(
        self,
        driver,
        url: str,
        settings: BrowserSettings | None = None,
        monitor: DomMonitor | None = None,
    ) -> None:
        self.driver = driver
        self.url = url
        self.settings = settings or BrowserSettings()
        self.monitor = monitor or DomMonitor()

    def probe(self, artifact: WorkingArtifact) -> list[str]:
        errors: list[str] = []
        for label, css, js in _execution_plan(artifact):
            self._load()
            errors.extend(self._apply(artifact.shared_css, artifact.shared_js, "Shared"))
            errors.extend(self._apply(css, js, label))
            settle(self.settings.settle_seconds)
            errors.extend(self.driver.execute_script(COLLECT_ERRORS_SCRIPT) or [])
            errors.extend(self._repeat_check(label, f"{artifact.shared_js}\n{js}"))
        if errors:
            logger.info("Runtime probe found %d error(s)", len(errors))
        return errors

    def render(self, artifact: WorkingArtifact | None) -> bytes:
        """Screenshot of the page with the first variant applied."""

        self._load()
        if artifact is not None:
            self._apply(artifact.shared_css, artifact.shared_js, "Shared")
            plan = _execution_plan(artifact)
            if artifact.variants:
                label, css, js = plan[0]
                self._apply(css, js, label)
            settle(self.settings.settle_seconds)
        return self.driver.get_screenshot_as_png()

    def _load(self) -> None:
        self.driver.get(self.url)
        if not wait_for_document_ready(self.driver, self.settings.page_load_timeout_seconds):
            logger.warning("Page %s did not finish loading", self.url)
        settle(self.settings.settle_seconds)

    def _apply(self, css: str, js: str, label: str) -> list[str]:
        if not css.strip() and not js.strip():
            return []
        return list(self.driver.execute_script(APPLY_SCRIPT, css, js, label) or [])

    def _repeat_check(self, label: str, js: str) -> list[str]:
        if not js.strip():
            return []
        self.monitor.install(self.driver)
        errors = self._apply("", js, f"{label} (repeat)")
        added = self.monitor.flush_added(self.driver)
        if added:
            tags = ", ".join(sorted({item.get("tag", "?") for item in added}))
            errors.append(
                f"{label}: running the code twice added {len(added)} more element(s) ({tags}); "
                "it is not idempotent"
            )
        return errors


def _execution_plan(artifact: WorkingArtifact) -> list[tuple[str, str, str]]:
    if not artifact.variants:
        return [("Shared", "", "")]
    return [
        (variant.name or f"Variation {index}", variant.css, variant.js)
        for index, variant in enumerate(artifact.variants, start=1)
    ]
