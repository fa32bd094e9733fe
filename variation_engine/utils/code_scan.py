from __future__ import annotations

import re
from collections import Counter
from typing import Iterable, Iterator

import tree_sitter_javascript
from tree_sitter import Language, Node, Parser

from variation_engine.core.metadata import WorkingArtifact

JS_LANGUAGE = Language(tree_sitter_javascript.language())

_CSS_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_PSEUDO = re.compile(r"::?[a-zA-Z-]+(?:\([^)]*\))?")
_WHITESPACE = re.compile(r"\s+")
_GROUPING_AT_RULES = ("@media", "@supports", "@container", "@layer", "@document")

_JS_SELECTOR_CALL = re.compile(
    r"\b(?:querySelector(?:All)?|closest|matches|waitForElement)\(\s*(['\"`])(?P<selector>.+?)\1"
)
_CREATED_VAR = re.compile(r"(?:const|let|var)\s+(\w+)\s*=\s*document\.createElement\b")
_CLASS_NAME = re.compile(r"(\w+)\.className\s*=\s*['\"]([^'\"]+)['\"]")
_CLASS_LIST_ADD = re.compile(r"(\w+)\.classList\.add\(([^)]*)\)")
_ELEMENT_ID = re.compile(r"(\w+)\.id\s*=\s*['\"]([^'\"]+)['\"]")
_STRING_LITERAL = re.compile(r"['\"]([^'\"]+)['\"]")
_DATASET_WRITE = re.compile(r"\.dataset\.(\w+)\s*=")
_SET_DATA_ATTRIBUTE = re.compile(r"setAttribute\(\s*['\"](data-[\w-]+)['\"]")
_DATA_ATTRIBUTE = re.compile(r"\[(data-[\w-]+)")
_SELECTOR_TOKEN = re.compile(r"[.#][\w-]+")

_GUARD = re.compile(r"\bif\s*\((?P<condition>.{0,240}?)\)\s*\{?\s*(?:return|continue)\b", re.DOTALL)
_MARKER_CHECK = re.compile(
    r"dataset\.\w+|hasAttribute\s*\(|getAttribute\s*\(\s*['\"]data-|\[data-[\w-]+|getElementById\s*\("
)


def normalize_selector(selector: str) -> str:
    collapsed = _WHITESPACE.sub(" ", selector.strip())
    stripped = _PSEUDO.sub("", collapsed).strip()
    return stripped or collapsed


def extract_css_selectors(css: str) -> list[str]:
    """Returns rule selectors in source order, one entry per comma branch."""

    source = _CSS_COMMENT.sub("", css)
    selectors: list[str] = []
    buffer: list[str] = []
    index = 0
    while index < len(source):
        char = source[index]
        if char == "{":
            prelude = "".join(buffer).strip()
            buffer = []
            if prelude.startswith("@") and not prelude.startswith(_GROUPING_AT_RULES):
                index = _skip_block(source, index)
                continue
            if not prelude.startswith("@"):
                selectors.extend(
                    normalize_selector(part) for part in _split_selector_list(prelude) if part.strip()
                )
                index = _skip_block(source, index)
                continue
        elif char in "};":
            buffer = []
        else:
            buffer.append(char)
        index += 1
    return selectors


def _skip_block(source: str, open_index: int) -> int:
    depth = 0
    for index in range(open_index, len(source)):
        if source[index] == "{":
            depth += 1
        elif source[index] == "}":
            depth -= 1
            if depth == 0:
                return index + 1
    return len(source)


def _split_selector_list(prelude: str) -> list[str]:
    parts: list[str] = []
    depth = 0
    current: list[str] = []
    for char in prelude:
        if char in "([":
            depth += 1
        elif char in ")]":
            depth -= 1
        if char == "," and depth == 0:
            parts.append("".join(current))
            current = []
            continue
        current.append(char)
    parts.append("".join(current))
    return parts


def js_selector_references(js: str) -> list[str]:
    """Returns every selector string passed to a DOM query call, with repeats."""

    references: list[str] = []
    for match in _JS_SELECTOR_CALL.finditer(js):
        selector = match.group("selector")
        if "${" in selector:
            continue
        references.append(normalize_selector(selector))
    return references


def dynamic_tokens(js: str) -> set[str]:
    """Class, id and data-attribute tokens the code creates itself."""

    created = set(_CREATED_VAR.findall(js))
    tokens: set[str] = set()
    for variable, class_names in _CLASS_NAME.findall(js):
        if variable in created:
            tokens.update(f".{name}" for name in class_names.split() if name)
    for variable, arguments in _CLASS_LIST_ADD.findall(js):
        if variable in created:
            tokens.update(f".{name}" for name in _STRING_LITERAL.findall(arguments))
    for variable, element_id in _ELEMENT_ID.findall(js):
        if variable in created:
            tokens.add(f"#{element_id}")
    for name in _DATASET_WRITE.findall(js):
        tokens.add("data-" + re.sub(r"([A-Z])", lambda m: "-" + m.group(1).lower(), name))
    tokens.update(_SET_DATA_ATTRIBUTE.findall(js))
    return tokens


def is_dynamic_selector(selector: str, tokens: set[str]) -> bool:
    if not tokens:
        return False
    if any(token in tokens for token in _SELECTOR_TOKEN.findall(selector)):
        return True
    return any(attribute in tokens for attribute in _DATA_ATTRIBUTE.findall(selector))


def artifact_selectors(artifact: WorkingArtifact) -> list[str]:
    """Unique selectors referenced by the artifact, minus ones it creates."""

    tokens: set[str] = set()
    for js in artifact.js_sources():
        tokens |= dynamic_tokens(js)
    found: dict[str, None] = {}
    for css in artifact.css_sources():
        for selector in extract_css_selectors(css):
            found.setdefault(selector)
    for js in artifact.js_sources():
        for selector in js_selector_references(js):
            found.setdefault(selector)
    return [selector for selector in found if not is_dynamic_selector(selector, tokens)]


def has_marker_guard(js: str) -> bool:
    return any(_MARKER_CHECK.search(match.group("condition")) for match in _GUARD.finditer(js))


def execution_units(artifact: WorkingArtifact) -> list[tuple[str, str]]:
    """The JS that actually runs together: shared code plus each variant."""

    if not artifact.variants:
        return [("shared", artifact.shared_js)] if artifact.shared_js.strip() else []
    return [
        (variant.name or f"Variation {index}", f"{artifact.shared_js}\n{variant.js}")
        for index, variant in enumerate(artifact.variants, start=1)
    ]


def unguarded_repeated_selectors(artifact: WorkingArtifact) -> dict[str, int]:
    repeated: dict[str, int] = {}
    for _, js in execution_units(artifact):
        if has_marker_guard(js):
            continue
        for selector, count in Counter(js_selector_references(js)).items():
            if count > 1:
                repeated[selector] = max(count, repeated.get(selector, 0))
    return repeated


def brace_balance(css: str) -> tuple[int, int]:
    source = _CSS_COMMENT.sub("", css)
    return source.count("{"), source.count("}")


def javascript_syntax_errors(source: str) -> list[str]:
    """Parses ``source`` as a function body without executing it."""

    if not source.strip():
        return []
    wrapped = "function __variation__() {\n" + source + "\n}\n"
    tree = Parser(JS_LANGUAGE).parse(wrapped.encode("utf-8"))
    if not tree.root_node.has_error:
        return []
    last_line = source.count("\n") + 1
    messages: list[str] = []
    for node in _broken_nodes(tree.root_node):
        line = node.start_point[0]
        if node.is_missing:
            detail = f"missing {node.type!r}"
        else:
            snippet = (node.text or b"").decode("utf-8", errors="replace").strip()
            detail = f"unexpected {snippet[:40]!r}" if snippet else "unexpected token"
        if line > last_line:
            messages.append(f"Unexpected end of input ({detail})")
        else:
            messages.append(f"Line {max(line, 1)}: {detail}")
    return messages or ["JavaScript could not be parsed"]


def _broken_nodes(node: Node) -> Iterator[Node]:
    if node.is_error or node.is_missing:
        yield node
        return
    for child in node.children:
        if child.has_error or child.is_missing:
            yield from _broken_nodes(child)


def edit_distance(left: str, right: str) -> int:
    previous = list(range(len(right) + 1))
    for row, left_char in enumerate(left, start=1):
        current = [row]
        for column, right_char in enumerate(right, start=1):
            cost = 0 if left_char == right_char else 1
            current.append(min(previous[column] + 1, current[column - 1] + 1, previous[column - 1] + cost))
        previous = current
    return previous[-1]


def closest_selector(target: str, candidates: Iterable[str]) -> str | None:
    """Nearest candidate by edit distance, if closer than half the target's length."""

    closest: str | None = None
    best = len(target) * 0.5
    for candidate in sorted(candidates):
        distance = edit_distance(target, candidate)
        if distance < best:
            best = distance
            closest = candidate
    return closest
