"""Rewrite every eligible image of an mdast tree into responsive HTML."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Iterable
from pathlib import Path

from bs4 import BeautifulSoup, Tag
from loguru import logger

from markcdn.errors import ConfigurationError
from markcdn.markup import MarkupGenerator
from markcdn.mdast import Node, get_definitions, is_descendant_of_link, visit_with_ancestors
from markcdn.models import Alt, ImageReference
from markcdn.urls import is_relative_url, is_supported_extension, parse_image_url

_IMAGE_TYPES = ("image", "imageReference")
_HTML_TYPES = ("html", "jsx")


def is_eligible(url: str | None) -> bool:
    """Check whether an image URL points at a local file we can serve."""
    if not url:
        return False
    return is_relative_url(url) and is_supported_extension(parse_image_url(url).extension)


class DocumentRewriter:
    """Replace image nodes of a document with the generated markup.

    All images of a document are processed concurrently. A failure is logged
    and leaves that one node untouched; the other images are unaffected.
    """

    def __init__(self, generator: MarkupGenerator) -> None:
        self.generator = generator

    async def rewrite(self, tree: Node, document_dir: Path) -> list[Node]:
        """Rewrite a document tree in place.

        Args:
            tree: Root of the mdast tree
            document_dir: Directory relative image URLs are resolved against

        Returns:
            The nodes that were replaced, in document order
        """
        definitions = get_definitions(tree)
        units: list[tuple[Node, Awaitable[bool]]] = []

        for node, ancestors in visit_with_ancestors(tree, _IMAGE_TYPES + _HTML_TYPES):
            in_link = is_descendant_of_link(ancestors)
            if node.type == "image":
                reference = ImageReference(
                    url=node.url or "",
                    title=node.title,
                    alt=Alt.from_raw(node.alt),
                )
                units.append(
                    (node, self._rewrite_image(node, reference, document_dir, in_link))
                )
            elif node.type == "imageReference":
                definition = definitions(node.identifier or "")
                if definition is None:
                    logger.debug(f"No definition for image reference: {node.identifier}")
                    continue
                reference = ImageReference(url=definition.url or "", title=definition.title)
                units.append(
                    (
                        node,
                        self._rewrite_image(
                            node,
                            reference,
                            document_dir,
                            in_link,
                            alt_override=Alt.from_raw(node.alt),
                        ),
                    )
                )
            elif node.value:
                units.append((node, self._rewrite_html(node, document_dir, in_link)))

        results = await asyncio.gather(*(self._run_unit(n, u) for n, u in units))
        return [node for (node, _), replaced in zip(units, results) if replaced]

    async def rewrite_many(
        self, documents: Iterable[tuple[Node, Path]]
    ) -> list[list[Node]]:
        """Rewrite several documents concurrently, sharing uploads between them."""
        return list(
            await asyncio.gather(
                *(self.rewrite(tree, document_dir) for tree, document_dir in documents)
            )
        )

    async def _run_unit(self, node: Node, unit: Awaitable[bool]) -> bool:
        try:
            return await unit
        except ConfigurationError as e:
            logger.warning(f"Invalid image options, leaving {node.type} node untouched: {e}")
        except Exception as e:
            logger.warning(f"Failed to rewrite {node.type} node: {e}")
        return False

    async def _rewrite_image(
        self,
        node: Node,
        reference: ImageReference,
        document_dir: Path,
        in_link: bool,
        alt_override: Alt | None = None,
    ) -> bool:
        if not is_eligible(reference.url):
            return False

        markup = await self.generator.generate(
            reference,
            document_dir,
            in_link=in_link,
            alt_override=alt_override,
        )
        if markup is None:
            return False
        node.replace_with_html(markup)
        return True

    async def _rewrite_html(self, node: Node, document_dir: Path, in_link: bool) -> bool:
        soup = BeautifulSoup(node.value or "", "html.parser")
        replaced = 0

        for img in soup.find_all("img"):
            if not isinstance(img, Tag):
                continue
            src = img.get("src")
            if not isinstance(src, str) or not is_eligible(src):
                continue

            title = img.get("title")
            alt = img.get("alt")
            reference = ImageReference(
                url=src,
                title=title if isinstance(title, str) else None,
                alt=Alt.from_raw(alt if isinstance(alt, str) else None),
            )
            try:
                markup = await self.generator.generate(reference, document_dir, in_link=in_link)
            except ConfigurationError as e:
                logger.warning(f"Invalid image options, leaving <img src={src!r}> untouched: {e}")
                continue
            except Exception as e:
                logger.warning(f"Failed to rewrite <img src={src!r}>: {e}")
                continue
            if markup is None:
                continue
            img.replace_with(BeautifulSoup(markup, "html.parser"))
            replaced += 1

        if not replaced:
            return False
        node.type = "html"
        node.value = str(soup)
        return True
