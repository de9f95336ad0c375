"""Data models shared across the image pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from markcdn.constants import EMPTY_ALT_MARKER


class AltKind(Enum):
    """Alt text state."""

    UNSET = "unset"
    EMPTY = "empty"  # author asked for alt=""
    TEXT = "text"


@dataclass(frozen=True)
class Alt:
    """Three-state alt text.

    ``Alt.empty()`` is distinct from ``Alt.text("")``: the former is an explicit
    request for an empty alt attribute and wins over every fallback, while an
    empty text behaves like an unset alt.
    """

    kind: AltKind = AltKind.UNSET
    value: str = ""

    @classmethod
    def unset(cls) -> Alt:
        return cls(AltKind.UNSET)

    @classmethod
    def empty(cls) -> Alt:
        return cls(AltKind.EMPTY)

    @classmethod
    def text(cls, value: str) -> Alt:
        return cls(AltKind.TEXT, value)

    @classmethod
    def from_raw(cls, raw: str | None) -> Alt:
        """Convert author-supplied alt text, recognising the empty-alt marker."""
        if raw is None:
            return cls.unset()
        if raw == EMPTY_ALT_MARKER:
            return cls.empty()
        return cls.text(raw)

    @property
    def is_empty(self) -> bool:
        return self.kind is AltKind.EMPTY

    @property
    def text_value(self) -> str | None:
        """The alt text if it is non-empty text, otherwise None."""
        if self.kind is AltKind.TEXT and self.value:
            return self.value
        return None


@dataclass
class ImageReference:
    """An image extracted from a markdown image node or an HTML ``<img>``."""

    url: str
    title: str | None = None
    alt: Alt = field(default_factory=Alt.unset)


@dataclass(frozen=True)
class FileRecord:
    """Metadata the file index knows about a file on disk."""

    absolute_path: Path
    name: str  # stem, without extension
    extension: str  # without leading dot
    fingerprint: str


@dataclass(frozen=True)
class ResolvedLocalFile:
    """The on-disk file behind an image reference."""

    absolute_path: Path
    name: str
    extension: str
    fingerprint: str

    @property
    def file_name(self) -> str:
        return f"{self.name}.{self.extension}"

    @classmethod
    def from_record(cls, record: FileRecord) -> ResolvedLocalFile:
        return cls(
            absolute_path=record.absolute_path,
            name=record.name,
            extension=record.extension,
            fingerprint=record.fingerprint,
        )


def _first(record: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = record.get(key)
        if value is not None:
            return value
    return None


@dataclass(frozen=True)
class RemoteAsset:
    """An uploaded file as the CDN knows it."""

    uuid: str
    original_filename: str
    width: int
    height: int
    is_sequence: bool = False
    fingerprint: str | None = None

    @classmethod
    def from_api(cls, record: dict[str, Any]) -> RemoteAsset:
        """Normalize an Upload API or REST API file record.

        Upload API records come in camelCase (``contentInfo``,
        ``originalFilename``) when cached by older builds and snake_case from the raw
        ``/info/`` endpoint; the REST API has ``original_file_url`` and a
        flat ``image_info`` on older versions.

        Raises:
            ValueError: If the record has no image dimensions
        """
        content_info = _first(record, "content_info", "contentInfo") or {}
        image = content_info.get("image") or _first(record, "image_info", "imageInfo")
        if not image or not image.get("width") or not image.get("height"):
            raise ValueError(
                f"File {record.get('uuid')} has no image dimensions, not an image?"
            )

        original = _first(
            record, "original_filename", "originalFilename", "original_file_url"
        )
        file_name = str(original or record.get("filename") or "").split("/")[-1]

        metadata = record.get("metadata") or {}
        fingerprint = _first(metadata, "fingerprint", "contentDigest")

        return cls(
            uuid=str(record["uuid"]),
            original_filename=file_name,
            width=int(image["width"]),
            height=int(image["height"]),
            is_sequence=bool(image.get("sequence")),
            fingerprint=fingerprint,
        )

    def to_record(self) -> dict[str, Any]:
        """Serialize in the snake_case shape ``from_api`` understands."""
        return {
            "uuid": self.uuid,
            "original_filename": self.original_filename,
            "content_info": {
                "image": {
                    "width": self.width,
                    "height": self.height,
                    "sequence": self.is_sequence,
                }
            },
            "metadata": {"fingerprint": self.fingerprint}
            if self.fingerprint
            else {},
        }
