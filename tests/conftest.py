"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
from PIL import Image

from markcdn.cache import MemoryBuildCache
from markcdn.config import ImagesConfig
from markcdn.files import make_file_record
from markcdn.models import RemoteAsset, ResolvedLocalFile
from markcdn.uploadcare import UploadcareClient

# =============================================================================
# Image Fixtures
# =============================================================================


@pytest.fixture
def make_image(tmp_path: Path) -> Callable[..., Path]:
    """Return a factory that writes a real image file under tmp_path."""

    def _make(
        name: str = "photo.png",
        size: tuple[int, int] = (2000, 1000),
        mode: str = "RGB",
        color: tuple[int, ...] | str = (200, 30, 30),
    ) -> Path:
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        Image.new(mode, size, color).save(path)
        return path

    return _make


@pytest.fixture
def make_local_file(make_image: Callable[..., Path]) -> Callable[..., ResolvedLocalFile]:
    """Return a factory that writes an image and resolves it like the file index."""

    def _make(name: str = "photo.png", **kwargs) -> ResolvedLocalFile:
        return ResolvedLocalFile.from_record(make_file_record(make_image(name, **kwargs)))

    return _make


# =============================================================================
# Remote Store Fixtures
# =============================================================================


def make_asset(
    uuid: str = "0c6b5a1e-uuid",
    original_filename: str = "photo.png",
    width: int = 2000,
    height: int = 1000,
    is_sequence: bool = False,
    fingerprint: str | None = None,
) -> RemoteAsset:
    return RemoteAsset(
        uuid=uuid,
        original_filename=original_filename,
        width=width,
        height=height,
        is_sequence=is_sequence,
        fingerprint=fingerprint,
    )


@pytest.fixture
def asset_factory() -> Callable[..., RemoteAsset]:
    return make_asset


@pytest.fixture
def mock_client() -> AsyncMock:
    """Uploadcare client double whose uploads echo the file name back."""
    client = AsyncMock(spec=UploadcareClient)

    async def upload_file(data, *, file_name, metadata=None):
        return make_asset(
            uuid=f"uuid-{file_name}",
            original_filename=file_name,
        )

    client.upload_file.side_effect = upload_file
    return client


@pytest.fixture
def memory_cache() -> MemoryBuildCache:
    return MemoryBuildCache()


@pytest.fixture
def images_config(tmp_path: Path) -> ImagesConfig:
    """Default options with a pubkey and a public dir inside tmp_path."""
    return ImagesConfig(pubkey="demopublickey", public_dir=str(tmp_path / "public"))
