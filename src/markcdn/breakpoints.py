"""Responsive breakpoint calculation and srcset rendering."""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from markcdn.constants import CDN_MAX_DIMENSION
from markcdn.errors import ConfigurationError
from markcdn.urls import compile_cdn_url

Width = int | float


@dataclass(frozen=True)
class BreakpointSet:
    """Output widths for one image plus the matching ``sizes`` attribute."""

    widths: tuple[Width, ...]
    sizes: str


def _normalize(value: Width) -> Width:
    """Collapse whole floats to ints so 975.0 and 975 compare and print alike."""
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def format_number(value: Width) -> str:
    """Render a number without a redundant ``.0`` (``975``, ``162.5``)."""
    return str(_normalize(value))


def round_half_up(value: Width) -> int:
    """Round like a browser would (``162.5`` -> ``163``)."""
    return math.floor(value + 0.5)


def compute_breakpoints(
    max_width: Width,
    intrinsic_width: Width,
    breakpoints: Iterable[Width] | None = None,
    sizes: str | None = None,
    max_dimension: int = CDN_MAX_DIMENSION,
) -> BreakpointSet:
    """Compute the widths offered in an image's srcset.

    Without explicit breakpoints, the widths are 0.25x, 0.5x, 1x, 1.5x and 2x
    of ``max_width``. Explicit breakpoints are merged with ``max_width``.
    Widths at or above the image's own width are replaced by that width,
    and nothing above the CDN's maximum dimension is ever requested.

    Args:
        max_width: Width of the content column in px
        intrinsic_width: Pixel width of the source image
        breakpoints: Optional explicit widths
        sizes: Optional override for the ``sizes`` attribute
        max_dimension: Largest width the CDN can produce

    Returns:
        BreakpointSet with strictly ascending, unique widths

    Raises:
        ConfigurationError: If max_width or any breakpoint is below 1
    """
    if max_width < 1:
        raise ConfigurationError(
            f"{max_width} has to be a positive int larger than zero (> 0), "
            f"now it's {max_width}"
        )

    explicit = list(breakpoints or [])
    candidates: set[Width] = {_normalize(max_width)}
    if not explicit:
        candidates.update(
            _normalize(w)
            for w in (max_width / 4, max_width / 2, max_width * 1.5, max_width * 2)
        )
    else:
        for breakpoint in explicit:
            if breakpoint < 1:
                raise ConfigurationError(
                    "All ints in srcSetBreakpoints should be positive ints "
                    f"larger than zero (> 0), found {breakpoint}"
                )
            candidates.add(_normalize(breakpoint))

    intrinsic = _normalize(intrinsic_width)
    widths = sorted({w for w in candidates if w < intrinsic} | {intrinsic})

    if widths[-1] > max_dimension:
        widths = [w for w in widths if w < max_dimension] + [max_dimension]

    presentation_width = _normalize(min(intrinsic, max_width))
    if not sizes:
        sizes = f"(max-width: {presentation_width}px) 100vw, {presentation_width}px"

    return BreakpointSet(widths=tuple(widths), sizes=sizes)


def build_srcset(
    src: str,
    file_name: str,
    breakpoint_set: BreakpointSet,
    operations: Mapping[str, Any] | None = None,
) -> str:
    """Render the srcset attribute value for a breakpoint set.

    Each entry is compiled with the image operations followed by a
    ``resize`` to that width, so every URL shares one operation order.
    """
    entries = []
    for width in breakpoint_set.widths:
        url = compile_cdn_url(
            src,
            file_name,
            {**(operations or {}), "resize": f"{format_number(width)}x"},
        )
        entries.append(f"{url} {round_half_up(width)}w")
    return ",\n".join(entries)
