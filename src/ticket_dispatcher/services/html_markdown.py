"""Render HTML email bodies as lightweight Markdown.

The output keeps paragraphs, line breaks, headings, lists, emphasis,
code blocks, links and images with alt text. Anything else is flattened to
its text content.
"""

from __future__ import annotations

import re
import warnings
from dataclasses import dataclass, field
from functools import partial
from typing import Callable, Iterator, Union

from bs4 import BeautifulSoup, MarkupResemblesLocatorWarning, XMLParsedAsHTMLWarning
from bs4.builder import ParserRejectedMarkup
from bs4.element import (
    NavigableString,
    PageElement,
    PreformattedString,
    Script,
    Stylesheet,
    Tag,
    TemplateString,
)

from ticket_dispatcher.services.errors import RenderError

UNORDERED = "ul"
ORDERED = "ol"

_WHITESPACE_RUN = re.compile(r"[ \t\r\n]+")
_BLANK_LINE_RUN = re.compile(r"\n{3,}")

# Comments, doctypes, CDATA and the bodies of script/style/template elements.
_NON_TEXT_STRINGS = (PreformattedString, Script, Stylesheet, TemplateString)

_Work = Union[PageElement, Callable[[], None]]


class MarkdownBuffer:
    def __init__(self) -> None:
        self._chunks: list[str] = []
        self._tail = ""

    def write(self, text: str) -> None:
        if not text:
            return
        self._chunks.append(text)
        self._tail = (self._tail + text)[-2:]

    def ensure_blank_line(self) -> None:
        if self._tail.endswith("\n\n"):
            return
        if self._tail.endswith("\n"):
            self.write("\n")
            return
        self.write("\n\n")

    def ensure_line_start(self) -> None:
        if self._tail and not self._tail.endswith("\n"):
            self.write("\n")

    def getvalue(self) -> str:
        return "".join(self._chunks)


@dataclass
class RenderState:
    out: MarkdownBuffer = field(default_factory=MarkdownBuffer)
    list_kinds: list[str] = field(default_factory=list)
    ordered_counters: list[int] = field(default_factory=list)


def render_html(html_text: str) -> str:
    """Convert an HTML document or fragment into Markdown text.

    Parsing is lenient: unclosed and misnested tags are accepted. RenderError
    is raised only when the parser rejects the markup outright.
    """
    try:
        soup = _parse(html_text)
    except ParserRejectedMarkup as exc:
        raise RenderError(f"unable to parse HTML body: {exc}") from exc

    state = RenderState()
    _walk(soup, state)
    markdown = state.out.getvalue().strip()
    return _BLANK_LINE_RUN.sub("\n\n", markdown)


def _parse(html_text: str) -> BeautifulSoup:
    # Short bodies such as a bare URL are legitimate email content.
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", MarkupResemblesLocatorWarning)
        warnings.simplefilter("ignore", XMLParsedAsHTMLWarning)
        return BeautifulSoup(html_text, "html.parser", on_duplicate_attribute="ignore")


def _walk(root: PageElement, state: RenderState) -> None:
    # Depth-first over an explicit stack so deeply nested markup cannot
    # exhaust the interpreter's recursion limit.
    stack: list[_Work] = [root]
    while stack:
        item = stack.pop()
        if isinstance(item, PageElement):
            stack.extend(reversed(_visit(item, state)))
        else:
            item()


def _visit(node: PageElement, state: RenderState) -> list[_Work]:
    if isinstance(node, NavigableString):
        if not isinstance(node, _NON_TEXT_STRINGS):
            state.out.write(_render_text(node))
        return []
    if not isinstance(node, Tag):
        return []

    handler = _TAG_HANDLERS.get((node.name or "").lower())
    if handler is None:
        return list(node.children)
    return handler(node, state)


def _render_text(node: NavigableString) -> str:
    text = str(node)
    if _inside_pre(node):
        return text
    return _WHITESPACE_RUN.sub(" ", text).rstrip(" ")


def _inside_pre(node: PageElement) -> bool:
    return node.find_parent("pre") is not None


def _text_strings(node: Tag) -> Iterator[str]:
    for descendant in node.descendants:
        if isinstance(descendant, NavigableString) and not isinstance(descendant, _NON_TEXT_STRINGS):
            yield str(descendant)


def _attr(node: Tag, name: str) -> str:
    value = node.get(name)
    if value is None:
        return ""
    if isinstance(value, list):
        return " ".join(value)
    return str(value)


def _line_break(node: Tag, state: RenderState) -> list[_Work]:
    state.out.write("\n")
    return []


def _block(node: Tag, state: RenderState) -> list[_Work]:
    state.out.ensure_blank_line()
    return [*node.children, state.out.ensure_blank_line]


def _heading_level(name: str) -> int:
    try:
        return int(name[1:])
    except ValueError:
        return 1


def _heading(node: Tag, state: RenderState) -> list[_Work]:
    state.out.ensure_blank_line()
    state.out.write("#" * _heading_level(node.name) + " ")
    return [*node.children, state.out.ensure_blank_line]


def _wrapped(opening: str, closing: str) -> Callable[[Tag, RenderState], list[_Work]]:
    def handler(node: Tag, state: RenderState) -> list[_Work]:
        state.out.write(opening)
        return [*node.children, partial(state.out.write, closing)]

    return handler


_strong = _wrapped(" **", "**")
_emphasis = _wrapped(" *", "*")
_inline_code = _wrapped(" `", "`")


def _code(node: Tag, state: RenderState) -> list[_Work]:
    if _inside_pre(node):
        return list(node.children)
    return _inline_code(node, state)


def _link(node: Tag, state: RenderState) -> list[_Work]:
    state.out.write(" ")
    text = "".join(_text_strings(node)).strip()
    href = _attr(node, "href").strip()
    if not href or href == text:
        state.out.write(text)
    else:
        state.out.write(f"{text} ({href})")
    return []


def _close_list(state: RenderState) -> None:
    kind = state.list_kinds.pop()
    if kind == ORDERED:
        state.ordered_counters.pop()
    state.out.ensure_blank_line()


def _unordered_list(node: Tag, state: RenderState) -> list[_Work]:
    state.list_kinds.append(UNORDERED)
    return [*node.children, partial(_close_list, state)]


def _ordered_list(node: Tag, state: RenderState) -> list[_Work]:
    state.list_kinds.append(ORDERED)
    state.ordered_counters.append(1)
    return [*node.children, partial(_close_list, state)]


def _list_item(node: Tag, state: RenderState) -> list[_Work]:
    prefix = "- "
    if state.list_kinds and state.list_kinds[-1] == ORDERED:
        prefix = f"{state.ordered_counters[-1]}. "
        state.ordered_counters[-1] += 1
    indent = "  " * max(len(state.list_kinds) - 1, 0)

    state.out.ensure_line_start()
    state.out.write(indent + prefix)
    return [*node.children, partial(state.out.write, "\n")]


def _preformatted(node: Tag, state: RenderState) -> list[_Work]:
    raw = "".join(_text_strings(node))
    if not raw.endswith("\n"):
        raw += "\n"
    state.out.ensure_blank_line()
    state.out.write("```\n")
    state.out.write(raw)
    state.out.write("```\n")
    state.out.ensure_blank_line()
    return []


def _image(node: Tag, state: RenderState) -> list[_Work]:
    alt = _attr(node, "alt")
    if alt:
        state.out.write(f" ![{alt}]({_attr(node, 'src')})")
    return []


_TAG_HANDLERS: dict[str, Callable[[Tag, RenderState], list[_Work]]] = {
    "br": _line_break,
    "p": _block,
    "div": _block,
    "h1": _heading,
    "h2": _heading,
    "h3": _heading,
    "h4": _heading,
    "h5": _heading,
    "h6": _heading,
    "b": _strong,
    "strong": _strong,
    "i": _emphasis,
    "em": _emphasis,
    "a": _link,
    "ul": _unordered_list,
    "ol": _ordered_list,
    "li": _list_item,
    "pre": _preformatted,
    "code": _code,
    "img": _image,
}
