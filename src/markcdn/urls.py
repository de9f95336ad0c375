"""URL helpers: image reference parsing and CDN URL compilation."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qsl

from markcdn.constants import NO_PROCESS_FLAG, SUPPORTED_EXTENSIONS

# scheme: (but not a Windows drive letter) or protocol-relative //host
_ABSOLUTE_URL_PATTERN = re.compile(r"^(?:[a-zA-Z][a-zA-Z\d+\-.]*:|//)")
_WINDOWS_DRIVE_PATTERN = re.compile(r"^[a-zA-Z]:\\")


@dataclass
class ImageUrl:
    """Parsed image reference.

    Attributes:
        url: Reference without query string or fragment
        extension: Lower-cased extension of the path ("" if none)
        query: Query parameters in order of appearance; bare flags map to ""
    """

    url: str
    extension: str
    query: dict[str, str] = field(default_factory=dict)

    @property
    def no_process(self) -> bool:
        """Whether the reference asks to skip CDN processing."""
        return NO_PROCESS_FLAG in self.query


def parse_image_url(reference: str) -> ImageUrl:
    """Split an image reference into path, extension and query operations.

    Never raises: malformed input yields a best-effort parse.

    Examples:
        >>> parse_image_url("./img/cat.JPG?noProcess").extension
        'jpg'
        >>> parse_image_url("./img/cat.png?crop=1:1").query
        {'crop': '1:1'}
    """
    reference = reference or ""
    url, _, query_string = reference.partition("?")
    url = url.split("#", 1)[0]
    query_string = query_string.split("#", 1)[0]

    query: dict[str, str] = {}
    for key, value in parse_qsl(query_string, keep_blank_values=True):
        query[key] = value

    last_segment = url.rsplit("/", 1)[-1]
    extension = ""
    if "." in last_segment.lstrip("."):
        extension = last_segment.rsplit(".", 1)[-1].lower()

    return ImageUrl(url=url, extension=extension, query=query)


def is_supported_extension(extension: str) -> bool:
    """Check an extension against the processable image formats."""
    return extension.lower() in SUPPORTED_EXTENSIONS


def is_relative_url(url: str) -> bool:
    """Check whether a URL points into the local site rather than elsewhere.

    Examples:
        >>> is_relative_url("./cat.png")
        True
        >>> is_relative_url("https://example.com/cat.png")
        False
        >>> is_relative_url("//cdn.example.com/cat.png")
        False
    """
    if _WINDOWS_DRIVE_PATTERN.match(url):
        return True
    return not _ABSOLUTE_URL_PATTERN.match(url)


def url_join(*parts: str) -> str:
    """Join URL pieces with exactly one slash between them.

    Empty pieces are skipped. The scheme's ``//`` is preserved and a
    trailing slash on the last piece is kept.

    Examples:
        >>> url_join("https://ucarecdn.com/", "/uuid/", "cat.png")
        'https://ucarecdn.com/uuid/cat.png'
        >>> url_join("https://ucarecdn.com/uuid", "/gif2video/-/format/mp4/")
        'https://ucarecdn.com/uuid/gif2video/-/format/mp4/'
    """
    pieces = [p for p in parts if p]
    if not pieces:
        return ""

    first = pieces[0]
    scheme = ""
    match = re.match(r"^([a-zA-Z][a-zA-Z\d+\-.]*:)?//", first)
    if match:
        scheme = match.group(0)
        first = first[len(scheme) :]
    pieces[0] = first

    trailing = pieces[-1].endswith("/")
    stripped = [p.strip("/") for p in pieces]
    joined = "/".join(p for p in stripped if p)
    if trailing and joined:
        joined += "/"
    return scheme + joined


def compile_cdn_url(
    src: str,
    file_name: str = "",
    operations: Mapping[str, Any] | None = None,
) -> str:
    """Compile a CDN transformation URL.

    Operations with falsy values are dropped; the rest become ``-/name/value``
    path segments in insertion order, followed by the file name.

    Examples:
        >>> compile_cdn_url(
        ...     "https://ucarecdn.com/uuid",
        ...     "cat.png",
        ...     {"quality": "smart", "format": "auto", "resize": None},
        ... )
        'https://ucarecdn.com/uuid/-/quality/smart/-/format/auto/cat.png'
    """
    segments = [
        f"{name}/{value}" for name, value in (operations or {}).items() if value
    ]
    ops = f"-/{'/-/'.join(segments)}" if segments else ""
    return url_join(src, ops, file_name)
