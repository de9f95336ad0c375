"""Blur-up placeholders and transparency detection with Pillow."""

from __future__ import annotations

import asyncio
import base64
import io
from pathlib import Path

from loguru import logger
from PIL import Image, ImageColor, UnidentifiedImageError

from markcdn.constants import BASE64_WIDTH_PX

# background_color values that keep the placeholder's alpha channel
_KEEP_ALPHA_COLORS = ("transparent", "none")


def _has_alpha(img: Image.Image) -> bool:
    return img.mode in ("RGBA", "LA", "PA") or (
        img.mode == "P" and "transparency" in img.info
    )


def _render_placeholder(
    path: Path,
    background_color: str,
    width: int,
) -> str | None:
    try:
        with Image.open(path) as img:
            img.seek(0)  # first frame of animations
            img.load()
            height = max(1, round(img.height * width / img.width))
            thumb = img.convert("RGBA" if _has_alpha(img) else "RGB")
            thumb = thumb.resize((width, height), Image.Resampling.LANCZOS)
    except (UnidentifiedImageError, OSError, ValueError) as e:
        logger.debug(f"Cannot build placeholder for {path.name}: {e}")
        return None

    if thumb.mode == "RGBA" and background_color.lower() not in _KEEP_ALPHA_COLORS:
        try:
            fill = ImageColor.getrgb(background_color)
        except ValueError:
            logger.warning(
                f"{background_color} is not a valid background color, using white"
            )
            fill = (255, 255, 255)
        background = Image.new("RGB", thumb.size, fill[:3])
        background.paste(thumb, mask=thumb.split()[-1])
        thumb = background

    out_buffer = io.BytesIO()
    if thumb.mode == "RGBA":
        thumb.save(out_buffer, format="PNG", optimize=True)
        mime = "image/png"
    else:
        thumb.save(out_buffer, format="JPEG", quality=50)
        mime = "image/jpeg"
    encoded = base64.b64encode(out_buffer.getvalue()).decode("ascii")
    return f"data:{mime};base64,{encoded}"


async def generate_placeholder(
    path: Path,
    background_color: str = "white",
    width: int = BASE64_WIDTH_PX,
) -> str | None:
    """Build a tiny base64 data URI preview of an image.

    Transparent pixels are flattened onto ``background_color`` unless it is
    ``transparent`` or ``none``.

    Returns:
        The data URI, or None if Pillow cannot read the file (e.g. SVG)
    """
    return await asyncio.to_thread(_render_placeholder, path, background_color, width)


def _detect_transparency(path: Path) -> bool:
    try:
        with Image.open(path) as img:
            if not _has_alpha(img):
                return False
            alpha = img.convert("RGBA").getchannel("A")
            low, _ = alpha.getextrema()
            return low < 255
    except (UnidentifiedImageError, OSError, ValueError):
        return False


async def is_transparent(path: Path) -> bool:
    """Check whether any pixel of an image is not fully opaque."""
    return await asyncio.to_thread(_detect_transparency, path)
