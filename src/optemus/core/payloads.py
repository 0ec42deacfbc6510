"""Image payload helpers: decoding, type sniffing, downloading and naming.

Clients and the provider hand images over in three shapes: raw base64, a
``data:image/...;base64,`` URI, or an http(s) URL. Byte-oriented storage
backends need the decoded bytes, so everything is normalised here before it
reaches a backend.
"""

from __future__ import annotations

import base64
import binascii
import io
import logging
import re
import uuid
from datetime import datetime

import httpx
from PIL import Image, UnidentifiedImageError

from optemus.core.errors import StorageWriteError, ValidationError

logger = logging.getLogger(__name__)

_DATA_URI_PREFIX = re.compile(r"^data:image/[\w.+-]+;base64,", re.IGNORECASE)
_SLUG_UNSAFE = re.compile(r"[^a-z0-9]", re.IGNORECASE)

# Pillow format name -> (extension, content type)
IMAGE_FORMATS: dict[str, tuple[str, str]] = {
    "PNG": ("png", "image/png"),
    "JPEG": ("jpg", "image/jpeg"),
    "WEBP": ("webp", "image/webp"),
    "GIF": ("gif", "image/gif"),
}

CONTENT_TYPES_BY_EXTENSION: dict[str, str] = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
}


def decode_base64_image(value: str) -> bytes:
    """Decode raw base64 or a base64 data URI.

    Raises:
        ValidationError: If the value is not valid base64.
    """
    cleaned = _DATA_URI_PREFIX.sub("", value.strip())
    try:
        return base64.b64decode(cleaned, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("Image data is not valid base64") from exc


def sniff_image(data: bytes) -> tuple[str, str]:
    """Identify image bytes with Pillow.

    Args:
        data: Encoded image bytes.

    Returns:
        Tuple of ``(extension, content_type)``.

    Raises:
        ValidationError: If Pillow cannot identify the bytes as a supported image.
    """
    try:
        with Image.open(io.BytesIO(data)) as image:
            image_format = image.format
            image.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as exc:
        raise ValidationError("Image data could not be decoded") from exc

    if image_format not in IMAGE_FORMATS:
        raise ValidationError(f"Unsupported image format: {image_format}")
    return IMAGE_FORMATS[image_format]


def guess_image_type(data: bytes | None) -> tuple[str, str]:
    """Like :func:`sniff_image` but falls back to PNG instead of raising.

    Used for provider output, which is trusted to be an image even when
    Pillow does not recognise it.
    """
    if not data:
        return IMAGE_FORMATS["PNG"]
    try:
        return sniff_image(data)
    except ValidationError:
        logger.warning("Could not identify generated image bytes; assuming PNG")
        return IMAGE_FORMATS["PNG"]


def content_type_for(filename: str) -> str:
    suffix = filename[filename.rfind(".") :].lower() if "." in filename else ""
    return CONTENT_TYPES_BY_EXTENSION.get(suffix, "application/octet-stream")


# ---------------------------------------------------------------------------
# Filenames.
# ---------------------------------------------------------------------------


def timestamp_slug(moment: datetime) -> str:
    """``2026-10-19T07:20:01.123Z`` -> ``2026-10-19T07-20-01-123Z``.

    The gallery reconciler parses this form back when a record has no usable
    timestamp field.
    """
    iso = moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return iso.replace(":", "-").replace(".", "-")


def generated_filename(moment: datetime, index: int, extension: str = "png") -> str:
    """Filename for the ``index``-th generated variant (zero-based)."""
    return f"generated_{timestamp_slug(moment)}_{index + 1}_{uuid.uuid4().hex[:8]}.{extension}"


def saved_filename(prompt: str | None, moment: datetime, extension: str = "png") -> str:
    """Filename for an explicitly saved image, prefixed with a prompt slug."""
    slug = _SLUG_UNSAFE.sub("_", prompt[:20]).lower() if prompt else "untitled"
    return f"{slug}_{timestamp_slug(moment)}.{extension}"


# ---------------------------------------------------------------------------
# Remote download.
# ---------------------------------------------------------------------------


class ImageFetcher:
    """Download remote images with a shared :class:`httpx.AsyncClient`."""

    def __init__(self, timeout: float = 30.0, client: httpx.AsyncClient | None = None) -> None:
        self._client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    async def fetch(self, url: str) -> bytes:
        """Fetch ``url`` and return its body.

        Raises:
            StorageWriteError: On network errors, non-200 responses or an empty body.
        """
        if not url.startswith(("http://", "https://")):
            raise StorageWriteError(f"Refusing to download non-http URL: {url[:50]}")

        try:
            response = await self._client.get(url)
        except httpx.HTTPError as exc:
            raise StorageWriteError(f"Failed to download image: {exc}") from exc

        if response.status_code != 200:
            raise StorageWriteError(f"Failed to download image: {response.status_code}")
        if not response.content:
            raise StorageWriteError("Downloaded image was empty")
        return response.content

    async def aclose(self) -> None:
        await self._client.aclose()
