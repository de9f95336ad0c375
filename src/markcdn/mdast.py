"""Minimal mdast document tree.

Markdown documents arrive as mdast JSON (the tree remark produces). This
module gives that tree a typed shape, a visitor that yields each node with
its ancestor chain, and the definition lookup used by image references.
Keys the pipeline does not use are kept in ``extra`` so a tree survives a
load/rewrite/dump cycle unchanged apart from the rewritten nodes.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any

_KNOWN_KEYS = ("type", "children", "url", "alt", "title", "identifier", "value")
_ANCHOR_OPEN_PATTERN = re.compile(r"<a ")


@dataclass
class Node:
    """A single mdast node."""

    type: str
    children: list[Node] = field(default_factory=list)
    url: str | None = None
    alt: str | None = None
    title: str | None = None
    identifier: str | None = None
    value: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Node:
        return cls(
            type=data["type"],
            children=[cls.from_dict(c) for c in data.get("children", [])],
            url=data.get("url"),
            alt=data.get("alt"),
            title=data.get("title"),
            identifier=data.get("identifier"),
            value=data.get("value"),
            extra={k: v for k, v in data.items() if k not in _KNOWN_KEYS},
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type}
        for key in ("url", "alt", "title", "identifier", "value"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        data.update(self.extra)
        if self.children:
            data["children"] = [c.to_dict() for c in self.children]
        return data

    def replace_with_html(self, html: str) -> None:
        """Turn this node into a raw HTML node in place."""
        self.type = "html"
        self.value = html
        self.children = []


def visit_with_ancestors(
    tree: Node,
    types: tuple[str, ...] | None = None,
) -> Iterator[tuple[Node, list[Node]]]:
    """Yield ``(node, ancestors)`` pairs in document order.

    Args:
        tree: Root node
        types: Only yield nodes of these types (all nodes if None)

    Yields:
        The node and the list of its ancestors, root first
    """
    stack: list[tuple[Node, list[Node]]] = [(tree, [])]
    while stack:
        node, ancestors = stack.pop()
        if types is None or node.type in types:
            yield node, ancestors
        chain = [*ancestors, node]
        for child in reversed(node.children):
            stack.append((child, chain))


def normalize_identifier(identifier: str) -> str:
    """Normalize a definition label the way CommonMark matches them."""
    return " ".join(identifier.split()).upper()


def get_definitions(tree: Node) -> Callable[[str], Node | None]:
    """Build the definition table of a document.

    The first definition of an identifier wins, as in CommonMark.

    Returns:
        Lookup function from identifier to ``definition`` node
    """
    table: dict[str, Node] = {}
    for node, _ in visit_with_ancestors(tree, ("definition",)):
        if node.identifier is None:
            continue
        table.setdefault(normalize_identifier(node.identifier), node)

    def lookup(identifier: str) -> Node | None:
        return table.get(normalize_identifier(identifier))

    return lookup


def _is_link_container(node: Node) -> bool:
    return any(
        child.type == "link"
        or (
            child.type in ("html", "jsx")
            and bool(_ANCHOR_OPEN_PATTERN.search(child.value or ""))
        )
        for child in node.children
    )


def is_descendant_of_link(ancestors: list[Node]) -> bool:
    """Check whether a node already sits inside a link.

    An ancestor counts as linking when it has a ``link`` child or an HTML
    child holding an anchor open tag (the opening half of ``<a>...</a>``
    wrapped around markdown).
    """
    return any(node.type == "link" or _is_link_container(node) for node in ancestors)
