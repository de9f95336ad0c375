"""Responsive markup generation for a single image reference.

Turns one image reference into the HTML that replaces it:

    <figure>                                  (only with a caption)
      <span class="...-wrapper">              (max-width: presentation width)
        <a class="...-link">                  (optional link to the original)
          <span class="...-background-image"> (padding-bottom aspect box, blur-up)
          <img srcset=...> | <video>          (absolutely positioned media)
        </a>
      </span>
      <figcaption>
    </figure>
"""

from __future__ import annotations

import asyncio
import html
import shutil
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

from markcdn.breakpoints import build_srcset, compute_breakpoints, format_number
from markcdn.captions import (
    CaptionCompiler,
    MarkdownCaptionCompiler,
    render_caption,
    resolve_caption,
)
from markcdn.constants import (
    IMAGE_BACKGROUND_CLASS,
    IMAGE_CLASS,
    IMAGE_FIGCAPTION_CLASS,
    IMAGE_FIGURE_CLASS,
    IMAGE_LINK_CLASS,
    IMAGE_STYLE,
    IMAGE_WRAPPER_CLASS,
)
from markcdn.files import FileIndex, resolve_local_file
from markcdn.models import Alt, ImageReference, RemoteAsset, ResolvedLocalFile
from markcdn.placeholder import generate_placeholder, is_transparent
from markcdn.urls import ImageUrl, compile_cdn_url, parse_image_url, url_join

if TYPE_CHECKING:
    from markcdn.config import ImagesConfig
    from markcdn.coordinator import UploadCoordinator


def _copy_if_missing(source: Path, target: Path) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    if not target.exists():
        shutil.copyfile(source, target)


class MarkupGenerator:
    """Generate the responsive HTML for image references."""

    def __init__(
        self,
        config: ImagesConfig,
        coordinator: UploadCoordinator,
        files: FileIndex,
        *,
        compiler: CaptionCompiler | None = None,
        public_dir: Path | str | None = None,
        path_prefix: str | None = None,
    ) -> None:
        self.config = config
        self._coordinator = coordinator
        self._files = files
        if compiler is None and config.markdown_captions:
            compiler = MarkdownCaptionCompiler()
        self._compiler = compiler
        self._public_dir = Path(public_dir if public_dir is not None else config.public_dir)
        self._path_prefix = path_prefix if path_prefix is not None else config.path_prefix

    async def generate(
        self,
        reference: ImageReference,
        document_dir: Path,
        *,
        in_link: bool = False,
        alt_override: Alt | None = None,
    ) -> str | None:
        """Build the replacement HTML for one image reference.

        Args:
            reference: The image to render
            document_dir: Directory of the document holding the reference
            in_link: Whether the image already sits inside a link
            alt_override: Alt text from the referencing node when the image
                comes through a definition

        Returns:
            The HTML, or None if the local file or the remote asset could not
            be resolved (the caller leaves the node untouched)

        Raises:
            ConfigurationError: If max width or breakpoints are invalid
        """
        local_file = await resolve_local_file(self._files, document_dir, reference.url)
        if local_file is None:
            return None

        image_url = parse_image_url(reference.url)
        alt = self._resolve_alt(reference, alt_override, local_file)
        title = html.escape(reference.title) if reference.title else alt

        if image_url.no_process:
            return await self._static_markup(local_file, alt, title)

        asset = await self._coordinator.resolve(local_file)
        if asset is None:
            return None

        return await self._cdn_markup(
            reference, alt_override, local_file, image_url, asset, alt, title, in_link
        )

    def _resolve_alt(
        self,
        reference: ImageReference,
        alt_override: Alt | None,
        local_file: ResolvedLocalFile,
    ) -> str:
        override = alt_override or Alt.unset()
        if reference.alt.is_empty or override.is_empty:
            return ""
        text = override.text_value or reference.alt.text_value or local_file.name
        return html.escape(text)

    async def _static_markup(
        self, local_file: ResolvedLocalFile, alt: str, title: str
    ) -> str:
        target = (
            self._public_dir / "static" / local_file.fingerprint / local_file.file_name
        )
        await asyncio.to_thread(_copy_if_missing, local_file.absolute_path, target)
        src = f"{self._path_prefix}/static/{local_file.fingerprint}/{local_file.file_name}"
        logger.debug(f"Serving {local_file.file_name} statically at {src}")

        return (
            f'<img class="{IMAGE_CLASS}" alt="{alt}" title="{title}" '
            f'src="{html.escape(src)}" loading="{self.config.loading}" '
            f'decoding="{self.config.decoding}"/>'
        )

    async def _cdn_markup(
        self,
        reference: ImageReference,
        alt_override: Alt | None,
        local_file: ResolvedLocalFile,
        image_url: ImageUrl,
        asset: RemoteAsset,
        alt: str,
        title: str,
        in_link: bool,
    ) -> str:
        config = self.config
        src = url_join(config.cdn_base_url, asset.uuid)
        name = asset.original_filename or local_file.file_name
        operations = {**config.image_operations, **image_url.query}

        resize = f"{format_number(config.max_width)}x"
        optimized_url = compile_cdn_url(
            src,
            name,
            {**operations, "resize": resize if asset.width >= config.max_width else None},
        )
        breakpoint_set = compute_breakpoints(
            config.max_width,
            asset.width,
            config.src_set_breakpoints,
            config.sizes,
        )
        srcset = build_srcset(src, name, breakpoint_set, operations)
        presentation_width = format_number(min(asset.width, config.max_width))
        ratio = f"{format_number(asset.height / asset.width * 100)}%"

        if asset.is_sequence:
            webm = url_join(src, "/gif2video/-/format/webm/")
            mp4 = url_join(src, "/gif2video/-/format/mp4/")
            media = (
                f'<video class="{IMAGE_CLASS}" style="{IMAGE_STYLE}" '
                f"autoplay loop webkit-playsinline playsinline muted>\n"
                f'  <source src="{webm}" type="video/webm"/>\n'
                f'  <source src="{mp4}" type="video/mp4"/>\n'
                f"</video>"
            )
        else:
            media = (
                f"<img\n"
                f'  class="{IMAGE_CLASS}"\n'
                f'  alt="{alt}"\n'
                f'  title="{title}"\n'
                f'  srcset="{html.escape(srcset)}"\n'
                f'  sizes="{html.escape(breakpoint_set.sizes)}"\n'
                f'  src="{html.escape(optimized_url)}"\n'
                f'  style="{IMAGE_STYLE}"\n'
                f'  loading="{config.loading}"\n'
                f'  decoding="{config.decoding}"\n'
                f"/>"
            )

        background = await self._background_style(local_file, asset)
        caption = await self._caption(reference, alt_override)

        markup = (
            f'<span class="{IMAGE_BACKGROUND_CLASS}" '
            f'style="padding-bottom: {ratio}; position: relative; bottom: 0; '
            f'left: 0;{background} display: block;"></span>\n'
            f"{media}"
        )

        if not in_link and config.link_images_to_original:
            markup = (
                f'<a class="{IMAGE_LINK_CLASS}" href="{html.escape(url_join(src, name))}" '
                f'style="display: block" target="_blank" rel="noopener">\n'
                f"{markup}\n"
                f"</a>"
            )

        wrapper_style = "" if caption else config.wrapper_style_css()
        markup = (
            f'<span class="{IMAGE_WRAPPER_CLASS}" style="position: relative; '
            f"display: block; margin-left: auto; margin-right: auto; "
            f'max-width: {presentation_width}px; {wrapper_style}">\n'
            f"{markup}\n"
            f"</span>"
        )

        if caption:
            markup = (
                f'<figure class="{IMAGE_FIGURE_CLASS}" '
                f'style="{config.wrapper_style_css()}">\n'
                f"{markup}\n"
                f'<figcaption class="{IMAGE_FIGCAPTION_CLASS}">{caption}</figcaption>\n'
                f"</figure>"
            )

        return markup

    async def _background_style(
        self, local_file: ResolvedLocalFile, asset: RemoteAsset
    ) -> str:
        config = self.config
        if config.disable_bg_image or asset.is_sequence:
            return ""
        if config.disable_bg_image_on_alpha and await is_transparent(
            local_file.absolute_path
        ):
            return ""

        placeholder = await generate_placeholder(
            local_file.absolute_path, config.background_color
        )
        if placeholder is None:
            return ""
        return f" background-image: url('{placeholder}'); background-size: cover;"

    async def _caption(
        self, reference: ImageReference, alt_override: Alt | None
    ) -> str:
        sources = self.config.caption_sources()
        if not sources:
            return ""
        text = resolve_caption(reference, sources, alt_override)
        return render_caption(
            text,
            markdown=self.config.markdown_captions,
            compiler=self._compiler,
        )
