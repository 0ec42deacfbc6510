"""Pydantic request models for the Optemus API.

FastAPI uses these models for request parsing and OpenAPI documentation.
Field names follow the JSON the browser client sends (camelCase); Python
attribute names are snake_case with aliases.

Models
------
GenerateImageRequest
    Payload for ``POST /api/generate-image``.
SaveImageRequest
    Payload for ``POST /api/save-image``.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from optemus.core.models import GenerationRequest


class GenerateImageRequest(BaseModel):
    """Request body for ``POST /api/generate-image``.

    Attributes:
        prompt: Text prompt. Required; an empty value is rejected with 400.
        size: Image dimensions (``1024x1024``, ``1536x1024``, ``1024x1536``
            or ``auto``).
        quality: ``low``, ``medium``, ``high`` or ``auto``.
        style_type: ``dark``, ``light`` or ``standard``.
        style_preset: ``internal``, ``proposals`` or ``default``.
        count: Number of variants. Accepted as any JSON value; only 1, 2 and
            4 are honoured, anything else means 1.
    """

    model_config = ConfigDict(populate_by_name=True)

    prompt: str | None = Field(
        default=None,
        description="Text prompt describing the image.",
    )
    size: str | None = Field(
        default=None,
        description="Image size; defaults to 1024x1024.",
    )
    quality: str | None = Field(
        default=None,
        description="Rendering quality; defaults to medium.",
    )
    style_type: str | None = Field(
        default=None,
        alias="styleType",
        description="Colour mood: dark, light or standard.",
    )
    style_preset: str | None = Field(
        default=None,
        alias="stylePreset",
        description="Audience preset: internal, proposals or default.",
    )
    count: Any = Field(
        default=1,
        description="Number of variants (1, 2 or 4; other values mean 1).",
    )

    def to_domain(self) -> GenerationRequest:
        return GenerationRequest(
            prompt=self.prompt or "",
            size=self.size or "",
            quality=self.quality or "",
            style_type=self.style_type,
            style_preset=self.style_preset,
            count=self.count,
        )


class SaveImageRequest(BaseModel):
    """Request body for ``POST /api/save-image``.

    Exactly one image source is needed; ``base64Data`` wins when both are set.

    Attributes:
        prompt: Prompt to record with the image.
        base64_data: Raw base64 or a ``data:image/...;base64,`` URI.
        image_url: Remote http(s) image to download.
        settings: Display settings to record.
    """

    model_config = ConfigDict(populate_by_name=True)

    prompt: str | None = Field(default=None, description="Prompt to record with the image.")
    base64_data: str | None = Field(
        default=None,
        alias="base64Data",
        description="Inline image as base64 or a data URI.",
    )
    image_url: str | None = Field(
        default=None,
        alias="imageUrl",
        description="Remote image URL to download.",
    )
    settings: dict[str, Any] | None = Field(
        default=None,
        description="Generation settings shown in the gallery.",
    )
