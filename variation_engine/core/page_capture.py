from __future__ import annotations

import logging
import uuid

from variation_engine.core.collaborators import PageContextProvider
from variation_engine.core.metadata import PageContext, PageElement

logger = logging.getLogger(__name__)

COLLECT_ELEMENTS_SCRIPT = r"""
const limit = arguments[0];
const includeNode = (node) => {
  const tag = node.tagName.toLowerCase();
  if (["script", "style", "meta", "link", "noscript", "template", "br"].includes(tag)) return false;
  if (["a", "button", "input", "select", "textarea", "img", "h1", "h2", "h3", "h4",
       "label", "form", "nav", "header", "footer", "section"].includes(tag)) return true;
  if (node.id || node.hasAttribute("role") || node.hasAttribute("data-testid")) return true;
  return false;
};

const isVisible = (node) => {
  const rect = node.getBoundingClientRect();
  const style = window.getComputedStyle(node);
  return rect.width > 0 && rect.height > 0 && style.visibility !== "hidden" && style.display !== "none";
};

const count = (selector) => {
  try {
    return document.querySelectorAll(selector).length;
  } catch (error) {
    return 0;
  }
};

const selectorsFor = (node) => {
  const tag = node.tagName.toLowerCase();
  const options = [];
  if (node.id) options.push(`#${CSS.escape(node.id)}`);
  const testId = node.getAttribute("data-testid");
  if (testId) options.push(`[data-testid="${testId}"]`);
  const name = node.getAttribute("name");
  if (name) options.push(`${tag}[name="${name}"]`);
  const classes = Array.from(node.classList).slice(0, 3).map((item) => CSS.escape(item));
  if (classes.length) {
    options.push(`.${classes[0]}`);
    options.push(`${tag}.${classes.join(".")}`);
  }
  const parent = node.parentElement;
  if (parent && parent !== document.body) {
    const parentPart = parent.id
      ? `#${CSS.escape(parent.id)}`
      : parent.tagName.toLowerCase() + (parent.classList.length ? `.${CSS.escape(parent.classList[0])}` : "");
    options.push(`${parentPart} > ${tag}`);
  }
  options.push(tag);
  return Array.from(new Set(options));
};

const items = [];
for (const node of document.body.querySelectorAll("*")) {
  if (items.length >= limit) break;
  if (!includeNode(node) || !isVisible(node)) continue;
  const options = selectorsFor(node);
  const alternatives = {};
  for (const selector of options) alternatives[selector] = count(selector);
  items.push({
    selector: options[0],
    match_count: alternatives[options[0]],
    alternatives: alternatives,
    tag: node.tagName.toLowerCase(),
    text: (node.innerText || node.value || node.getAttribute("alt") || "").trim().slice(0, 120),
  });
}
return items;
"""


class SeleniumPageContextProvider(PageContextProvider):
    """Catalogues visible page elements with live selector match counts."""

    def __init__(self, driver, max_elements: int = 150) -> None:
        self.driver = driver
        self.max_elements = max_elements

    def capture(self) -> PageContext:
        raw_elements = self.driver.execute_script(COLLECT_ELEMENTS_SCRIPT, self.max_elements) or []
        elements = tuple(
            PageElement(
                selector=item.get("selector", ""),
                match_count=int(item.get("match_count", 0)),
                alternatives={
                    str(selector): int(count) for selector, count in (item.get("alternatives") or {}).items()
                },
                tag=item.get("tag", ""),
                text=item.get("text", ""),
            )
            for item in raw_elements
            if item.get("selector")
        )
        context = PageContext(
            capture_id=uuid.uuid4().hex,
            elements=elements,
            url=self.driver.current_url,
        )
        logger.info("Captured %d elements from %s", len(elements), context.url)
        return context
