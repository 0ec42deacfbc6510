"""Data models shared by the generation pipeline, storage backends and API."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


SUPPORTED_SIZES = ("1024x1024", "1536x1024", "1024x1536", "auto")
SUPPORTED_QUALITIES = ("low", "medium", "high", "auto")
STYLE_TYPES = ("dark", "light", "standard")
STYLE_PRESETS = ("internal", "proposals", "default")
ALLOWED_COUNTS = (1, 2, 4)

DEFAULT_SIZE = "1024x1024"
DEFAULT_QUALITY = "medium"
DEFAULT_STYLE_TYPE = "standard"
DEFAULT_STYLE_PRESET = "default"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(moment: datetime) -> str:
    """Render an instant as ISO-8601 UTC with millisecond precision and a ``Z`` suffix."""
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class GenerationRequest:
    """One incoming generation request.

    ``count`` holds whatever the client sent; the orchestrator resolves the
    effective variant count with :func:`effective_count`.
    """

    prompt: str
    size: str = DEFAULT_SIZE
    quality: str = DEFAULT_QUALITY
    style_type: str | None = None
    style_preset: str | None = None
    count: Any = 1

    def settings(self) -> dict[str, str]:
        """The subset of request fields stored alongside each image for display."""
        return {
            "size": self.size or DEFAULT_SIZE,
            "quality": self.quality or DEFAULT_QUALITY,
            "styleType": self.style_type or DEFAULT_STYLE_TYPE,
            "stylePreset": self.style_preset or DEFAULT_STYLE_PRESET,
        }


def effective_count(raw: Any) -> int:
    """Clamp a client-supplied count to one of 1, 2 or 4.

    Anything else, numeric or not, resolves to 1. Numeric strings and
    integral floats are accepted the way a JSON client would send them.
    """
    if isinstance(raw, bool):
        return 1
    try:
        number = float(raw)
    except (TypeError, ValueError):
        return 1
    if number.is_integer() and int(number) in ALLOWED_COUNTS:
        return int(number)
    return 1


@dataclass(frozen=True)
class ImagePayload:
    """Raw image returned by the provider: inline bytes, a remote URL, or both."""

    data: bytes | None = None
    url: str | None = None
    content_type: str = "image/png"

    def __post_init__(self) -> None:
        if self.data is None and not self.url:
            raise ValueError("ImagePayload needs inline data or a URL")

    @property
    def is_inline(self) -> bool:
        return self.data is not None

    def as_data_uri(self) -> str:
        if self.data is None:
            raise ValueError("payload has no inline data")
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.content_type};base64,{encoded}"

    def display_url(self) -> str:
        """Best location for a client to fetch this image without any storage."""
        if self.url:
            return self.url
        return self.as_data_uri()


@dataclass(frozen=True)
class GeneratedVariant:
    index: int
    payload: ImagePayload
    enhanced_prompt: str


@dataclass(frozen=True)
class ImageMetadata:
    """Everything a backend needs to persist one image besides its bytes."""

    id: str
    filename: str
    prompt: str
    created_at: str
    settings: dict[str, Any] = field(default_factory=dict)
    enhanced_prompt: str | None = None
    source_url: str | None = None


@dataclass(frozen=True)
class StoredImageRecord:
    """Canonical persisted representation of one image.

    ``modified_at`` is backend-native modification time (POSIX seconds) when
    the backend has one; it only feeds gallery ordering and is not serialized.
    """

    id: str
    filename: str
    prompt: str
    url: str
    created_at: str | None
    settings: dict[str, Any] = field(default_factory=dict)
    storage_flags: tuple[str, ...] = ()
    enhanced_prompt: str | None = None
    modified_at: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "filename": self.filename,
            "prompt": self.prompt,
            "url": self.url,
            "createdAt": self.created_at,
            "settings": dict(self.settings),
            "storage": list(self.storage_flags),
        }


@dataclass(frozen=True)
class GeneratedImage:
    """A successful variant paired with the record describing where it lives."""

    variant: GeneratedVariant
    record: StoredImageRecord

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.record.id,
            "image": self.record.url,
            "filename": self.record.filename,
            "metadata": {
                "prompt": self.record.prompt,
                "timestamp": self.record.created_at,
                "settings": dict(self.record.settings),
                "filename": self.record.filename,
                "url": self.record.url,
                "storage": list(self.record.storage_flags),
                "variantIndex": self.variant.index,
            },
        }


@dataclass(frozen=True)
class GenerationResult:
    requested: int
    images: list[GeneratedImage]

    @property
    def count(self) -> int:
        return len(self.images)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "images": [image.to_dict() for image in self.images],
            "count": self.count,
            "requested": self.requested,
        }


class DeleteOutcome(str, Enum):
    DELETED = "deleted"
    NOT_FOUND = "not_found"
    UNSUPPORTED = "unsupported"
