"""Local file resolution for image references."""

from __future__ import annotations

import asyncio
import hashlib
from collections.abc import Iterable
from pathlib import Path
from typing import Protocol, runtime_checkable

from loguru import logger

from markcdn.models import FileRecord, ResolvedLocalFile
from markcdn.urls import parse_image_url

_CHUNK_SIZE = 1024 * 1024


def compute_fingerprint(path: Path) -> str:
    """Compute the content fingerprint (md5 hex digest) of a file."""
    digest = hashlib.md5()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def make_file_record(path: Path) -> FileRecord:
    """Describe a file on disk."""
    path = path.resolve()
    return FileRecord(
        absolute_path=path,
        name=path.stem,
        extension=path.suffix.lstrip("."),
        fingerprint=compute_fingerprint(path),
    )


@runtime_checkable
class FileIndex(Protocol):
    """Reverse lookup from absolute path to file metadata."""

    def get_by_absolute_path(self, path: Path) -> FileRecord | None: ...


class DirectoryFileIndex:
    """File index backed directly by the file system.

    Fingerprints are computed on first lookup and memoised per path, so a
    file referenced from many documents is hashed once per build.
    """

    def __init__(self, root: Path | None = None) -> None:
        self._root = root.resolve() if root else None
        self._records: dict[Path, FileRecord | None] = {}

    def get_by_absolute_path(self, path: Path) -> FileRecord | None:
        path = path.resolve()
        if path in self._records:
            return self._records[path]

        record: FileRecord | None = None
        if self._root is not None and not path.is_relative_to(self._root):
            logger.debug(f"Skipping file outside index root: {path}")
        elif path.is_file():
            record = make_file_record(path)
        self._records[path] = record
        return record


class ListFileIndex:
    """File index over a fixed list of records (linear scan)."""

    def __init__(self, records: Iterable[FileRecord]) -> None:
        self._records = list(records)

    @classmethod
    def from_paths(cls, paths: Iterable[Path]) -> ListFileIndex:
        return cls(make_file_record(p) for p in paths)

    def get_by_absolute_path(self, path: Path) -> FileRecord | None:
        path = path.resolve()
        return next(
            (r for r in self._records if r.absolute_path == path),
            None,
        )


def candidate_path(document_dir: Path, reference_url: str) -> Path:
    """Join a document directory with a relative image reference."""
    relative = parse_image_url(reference_url).url.lstrip("/")
    return (document_dir / relative).resolve()


async def resolve_local_file(
    index: FileIndex,
    document_dir: Path,
    reference_url: str,
) -> ResolvedLocalFile | None:
    """Find the file behind a relative image reference.

    Returns:
        The resolved file, or None if the index does not know it
    """
    path = candidate_path(document_dir, reference_url)
    record = await asyncio.to_thread(index.get_by_absolute_path, path)
    if record is None:
        logger.debug(f"No local file found for image reference: {reference_url}")
        return None
    return ResolvedLocalFile.from_record(record)
