from __future__ import annotations

INSTALL_MONITOR_SCRIPT = r"""
window.__variation_added__ = [];
if (window.__variation_observer__) {
  window.__variation_observer__.disconnect();
}
window.__variation_observer__ = new MutationObserver((mutations) => {
  for (const mutation of mutations) {
    for (const node of mutation.addedNodes) {
      if (!(node instanceof Element)) continue;
      window.__variation_added__.push({
        tag: node.tagName.toLowerCase(),
        id: node.id || "",
        className: typeof node.className === "string" ? node.className : "",
        parentTag: mutation.target && mutation.target.tagName ? mutation.target.tagName.toLowerCase() : "",
      });
    }
  }
});
window.__variation_observer__.observe(document, { childList: true, subtree: true });
"""

FLUSH_ADDED_SCRIPT = """
const done = arguments[arguments.length - 1];
setTimeout(() => {
  const added = window.__variation_added__ || [];
  if (window.__variation_observer__) {
    window.__variation_observer__.disconnect();
    window.__variation_observer__ = null;
  }
  window.__variation_added__ = [];
  done(added);
}, 0);
"""


class DomMonitor:
    """Records element insertions between install and flush."""

    def install(self, driver) -> None:
        driver.execute_script(INSTALL_MONITOR_SCRIPT)

    def flush_added(self, driver) -> list[dict]:
        return driver.execute_async_script(FLUSH_ADDED_SCRIPT) or []
