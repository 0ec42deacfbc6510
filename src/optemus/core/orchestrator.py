"""Generation request pipeline.

:class:`GenerationOrchestrator` turns one :class:`GenerationRequest` into up
to four stored images:

1. **Validate**: reject an empty prompt or unsupported size/quality; clamp
   ``count`` to 1, 2 or 4 (anything else becomes 1).
2. **Generate**: for each variant, in order, build the enhanced prompt and
   call the generation client. Variants run strictly one after another; the
   next one starts only after the previous one has been persisted.
3. **Persist**: hand the image to every configured storage backend. A
   backend failure is logged and skipped; the image is still returned.

Partial Failure Policy
----------------------
- Variant 0 fails: the whole request fails with that error.
- A later variant fails: it is logged and skipped; the response carries the
  variants that succeeded.
- No variant succeeded: :class:`GenerationFailedError`.

Storage Flags
-------------
Each returned record lists the backends that stored it, in configuration
order. The record's URL comes from the first successful backend. When every
backend failed the URL falls back to the provider URL or an inline data URI,
and the flags are empty.
"""

from __future__ import annotations

import dataclasses
import logging
import uuid
from datetime import datetime
from typing import Any, Callable

from optemus.core.errors import (
    GenerationFailedError,
    OptemusError,
    StorageWriteError,
    ValidationError,
)
from optemus.core.models import (
    DEFAULT_QUALITY,
    DEFAULT_SIZE,
    SUPPORTED_QUALITIES,
    SUPPORTED_SIZES,
    GeneratedImage,
    GeneratedVariant,
    GenerationRequest,
    GenerationResult,
    ImageMetadata,
    ImagePayload,
    StoredImageRecord,
    effective_count,
    format_timestamp,
    utc_now,
)
from optemus.core.payloads import (
    ImageFetcher,
    decode_base64_image,
    generated_filename,
    guess_image_type,
    saved_filename,
    sniff_image,
)
from optemus.core.prompt_enhancer import enhance_prompt
from optemus.storage.base import StorageBackend

logger = logging.getLogger(__name__)

PromptEnhancer = Callable[..., str]


def _preview(text: str, limit: int = 100) -> str:
    return text if len(text) <= limit else f"{text[:limit]}..."


class GenerationOrchestrator:
    """Coordinate prompt enhancement, generation and persistence.

    All collaborators are passed in explicitly so tests can substitute fakes.

    Attributes:
        client: Object with ``async generate(prompt, size, quality) -> ImagePayload``.
        backends: Storage backends in configuration order.
    """

    def __init__(
        self,
        client: Any,
        backends: list[StorageBackend],
        *,
        fetcher: ImageFetcher | None = None,
        enhancer: PromptEnhancer = enhance_prompt,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.client = client
        self.backends = list(backends)
        self.fetcher = fetcher or ImageFetcher()
        self.enhancer = enhancer
        self.clock = clock

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, request: GenerationRequest) -> tuple[GenerationRequest, int]:
        """Check a request and resolve its defaults.

        Returns:
            Tuple of ``(normalised request, effective variant count)``.

        Raises:
            ValidationError: Missing prompt or unsupported size/quality.
        """
        if not isinstance(request.prompt, str) or not request.prompt.strip():
            raise ValidationError("Prompt is required")

        size = request.size or DEFAULT_SIZE
        if size not in SUPPORTED_SIZES:
            raise ValidationError(
                f"Unsupported size '{size}'; expected one of {', '.join(SUPPORTED_SIZES)}"
            )

        quality = request.quality or DEFAULT_QUALITY
        if quality not in SUPPORTED_QUALITIES:
            raise ValidationError(
                f"Unsupported quality '{quality}'; expected one of {', '.join(SUPPORTED_QUALITIES)}"
            )

        count = effective_count(request.count)
        normalised = dataclasses.replace(request, size=size, quality=quality, count=count)
        return normalised, count

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def handle(self, request: GenerationRequest) -> GenerationResult:
        """Run the full pipeline for one request.

        Raises:
            ValidationError: The request is invalid; no generation call is made.
            UpstreamError: The first variant failed.
            ConfigurationError: The generation client has no credentials.
            GenerationFailedError: No variant succeeded.
        """
        request, count = self.validate(request)
        settings = request.settings()

        logger.info(f"Generating {count} image(s) with prompt: {_preview(request.prompt)}")
        logger.info(
            f"Settings: size={settings['size']}, quality={settings['quality']}, "
            f"styleType={settings['styleType']}, stylePreset={settings['stylePreset']}"
        )

        images: list[GeneratedImage] = []
        for index in range(count):
            enhanced = self.enhancer(
                request.prompt, request.style_type, request.style_preset, index, count
            )
            logger.info(f"Generating image {index + 1}/{count} with prompt: {_preview(enhanced)}")

            try:
                payload = await self.client.generate(enhanced, request.size, request.quality)
            except OptemusError as exc:
                if index == 0:
                    logger.error(f"Error generating image 1/{count} ({exc.kind}): {exc}")
                    raise
                logger.warning(
                    f"Error generating image {index + 1}/{count} ({exc.kind}): {exc}; skipping"
                )
                continue

            variant = GeneratedVariant(index=index, payload=payload, enhanced_prompt=enhanced)
            record = await self._store_variant(variant, request.prompt, settings)
            images.append(GeneratedImage(variant=variant, record=record))
            logger.info(f"Image {index + 1}/{count} generated successfully")

        if not images:
            raise GenerationFailedError("No images were successfully generated")

        logger.info(f"Successfully generated {len(images)} of {count} image(s)")
        return GenerationResult(requested=count, images=images)

    async def _store_variant(
        self, variant: GeneratedVariant, prompt: str, settings: dict[str, Any]
    ) -> StoredImageRecord:
        payload = variant.payload
        data = payload.data
        if data is None and payload.url:
            try:
                data = await self.fetcher.fetch(payload.url)
            except StorageWriteError as exc:
                logger.warning(f"Could not download image {variant.index + 1}: {exc}")

        extension, content_type = guess_image_type(data)
        moment = self.clock()
        metadata = ImageMetadata(
            id=str(uuid.uuid4()),
            filename=generated_filename(moment, variant.index, extension),
            prompt=prompt,
            created_at=format_timestamp(moment),
            settings=dict(settings),
            enhanced_prompt=variant.enhanced_prompt,
            source_url=payload.url,
        )

        record = await self._persist_everywhere(data, payload.url, content_type, metadata)
        if record is not None:
            return record

        # Nothing stored it; the client still gets the image back.
        fallback_url = payload.url or ImagePayload(data=data, content_type=content_type).as_data_uri()
        return StoredImageRecord(
            id=metadata.id,
            filename=metadata.filename,
            prompt=metadata.prompt,
            url=fallback_url,
            created_at=metadata.created_at,
            settings=dict(metadata.settings),
            storage_flags=(),
            enhanced_prompt=metadata.enhanced_prompt,
        )

    async def _persist_everywhere(
        self,
        data: bytes | None,
        url: str | None,
        content_type: str,
        metadata: ImageMetadata,
    ) -> StoredImageRecord | None:
        """Persist to every backend in order; return the merged record or ``None``.

        A later backend that stores only a URL (Notion) receives the URL
        produced by an earlier backend when one is public, since provider
        URLs expire.
        """
        public_url = url if url and url.startswith(("http://", "https://")) else None
        stored: list[StoredImageRecord] = []

        for backend in self.backends:
            if data is None and public_url is None:
                break
            content = ImagePayload(data=data, url=public_url, content_type=content_type)
            try:
                record = await backend.persist(content, metadata)
            except OptemusError as exc:
                logger.warning(f"Failed to save {metadata.filename} to {backend.name}: {exc}")
                continue

            stored.append(record)
            if record.url.startswith(("http://", "https://")):
                public_url = record.url

        if not stored:
            return None

        flags = tuple(flag for record in stored for flag in record.storage_flags)
        return dataclasses.replace(stored[0], storage_flags=flags)

    # ------------------------------------------------------------------
    # Explicit save
    # ------------------------------------------------------------------

    async def save(
        self,
        *,
        prompt: str | None,
        settings: dict[str, Any] | None = None,
        base64_data: str | None = None,
        image_url: str | None = None,
    ) -> StoredImageRecord:
        """Persist an already-generated image independently of generation.

        Args:
            prompt: Prompt to record with the image (may be empty).
            settings: Display settings to record.
            base64_data: Raw base64 or a ``data:`` URI. Takes precedence.
            image_url: Remote image to download when no inline data is given.

        Raises:
            ValidationError: Neither source given, or the bytes are not an image.
            StorageWriteError: Download failed or no backend stored the image.
        """
        if base64_data:
            data = decode_base64_image(base64_data)
            source_url = None
        elif image_url:
            data = await self.fetcher.fetch(image_url)
            source_url = image_url
        else:
            raise ValidationError("Image data or URL is required")

        extension, content_type = sniff_image(data)
        moment = self.clock()
        metadata = ImageMetadata(
            id=str(uuid.uuid4()),
            filename=saved_filename(prompt, moment, extension),
            prompt=prompt or "",
            created_at=format_timestamp(moment),
            settings=dict(settings or {}),
            source_url=source_url,
        )
        logger.info(f"Saving image {metadata.filename}")

        record = await self._persist_everywhere(data, source_url, content_type, metadata)
        if record is None:
            raise StorageWriteError("Failed to save image to any storage backend")
        return record
