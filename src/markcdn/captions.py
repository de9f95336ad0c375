"""Image caption resolution and rendering."""

from __future__ import annotations

import html
from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable

from markdown_it import MarkdownIt

from markcdn.models import Alt, ImageReference


@runtime_checkable
class CaptionCompiler(Protocol):
    """Turns caption markdown into HTML in two steps."""

    def parse(self, text: str) -> Any: ...

    def render(self, tree: Any) -> str: ...


class MarkdownCaptionCompiler:
    """Caption compiler backed by markdown-it-py.

    Captions are parsed as inline markdown so emphasis, code and links render
    without a wrapping paragraph inside ``<figcaption>``.
    """

    def __init__(self, md: MarkdownIt | None = None) -> None:
        self._md = md or MarkdownIt("commonmark")

    def parse(self, text: str) -> Any:
        return self._md.parseInline(text)

    def render(self, tree: Any) -> str:
        return self._md.renderer.render(tree, self._md.options, {})


def resolve_caption(
    reference: ImageReference,
    sources: Sequence[str],
    alt_override: Alt | None = None,
) -> str:
    """Pick the caption text for an image.

    Sources are tried in order; the first one with text wins. An
    intentionally empty alt ends the search with no caption.
    """
    override = alt_override or Alt.unset()
    for source in sources:
        if source == "title":
            if reference.title:
                return reference.title
        elif source == "alt":
            if reference.alt.is_empty or override.is_empty:
                return ""
            text = override.text_value or reference.alt.text_value
            if text:
                return text
    return ""


def render_caption(
    text: str,
    *,
    markdown: bool = False,
    compiler: CaptionCompiler | None = None,
) -> str:
    """Render caption text as HTML, escaping it unless markdown is enabled."""
    if not text:
        return ""
    if not markdown or compiler is None:
        return html.escape(text)
    return compiler.render(compiler.parse(text))
