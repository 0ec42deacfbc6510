"""Text-to-image client for the OpenAI Images API.

:class:`ImageGenerationClient` wraps :class:`openai.AsyncOpenAI` and exposes
one call, :meth:`ImageGenerationClient.generate`, which returns a single
:class:`~optemus.core.models.ImagePayload` or raises one of the upstream error
kinds from :mod:`optemus.core.errors`.

Timeouts and retries are delegated to the SDK: the client is built with
``timeout=config.request_timeout`` and ``max_retries=config.max_retries``, so
transient failures (connection errors, 408/409/429/5xx) are retried inside
the SDK before an exception reaches this module. The orchestrator never
retries on its own.

Error Translation
-----------------
=============================================  ================================
SDK exception                                  Raised as
=============================================  ================================
``AuthenticationError``, ``PermissionDenied``  :class:`UpstreamAuthError`
``RateLimitError`` (incl. insufficient_quota)  :class:`UpstreamQuotaError`
``BadRequestError`` / ``UnprocessableEntity``  :class:`UpstreamContentRejection`
``APITimeoutError``, ``APIConnectionError``    :class:`UpstreamTimeoutError`
any other ``APIError``                         :class:`UpstreamError`
call succeeded, no image in ``data``           :class:`EmptyResultError`
=============================================  ================================
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Any

import openai
from openai import AsyncOpenAI

from optemus.core.config import OptemusConfig
from optemus.core.errors import (
    ConfigurationError,
    EmptyResultError,
    UpstreamAuthError,
    UpstreamContentRejection,
    UpstreamError,
    UpstreamQuotaError,
    UpstreamTimeoutError,
)
from optemus.core.models import ImagePayload

logger = logging.getLogger(__name__)

# Provider error codes that mean the prompt itself was refused.
_CONTENT_POLICY_CODES = {"content_policy_violation", "moderation_blocked"}


def _error_message(exc: openai.APIError) -> str:
    """Extract the provider's own explanation from an SDK exception."""
    body = getattr(exc, "body", None)
    if isinstance(body, dict):
        inner = body.get("error", body)
        if isinstance(inner, dict) and inner.get("message"):
            return str(inner["message"])
    return getattr(exc, "message", None) or str(exc)


def translate_openai_error(exc: openai.APIError) -> UpstreamError:
    """Map an OpenAI SDK exception onto an Optemus upstream error kind.

    Args:
        exc: Exception raised by the SDK.

    Returns:
        The matching :class:`UpstreamError` subclass instance. The SDK
        exception should be chained by the caller with ``raise ... from``.
    """
    code = getattr(exc, "code", None)
    message = _error_message(exc)

    # APITimeoutError subclasses APIConnectionError, so both land here.
    if isinstance(exc, openai.APIConnectionError):
        if isinstance(exc, openai.APITimeoutError):
            return UpstreamTimeoutError(f"Image provider timed out: {message}")
        return UpstreamTimeoutError(
            f"Network connection error: {message}",
            user_message="Network connection error",
        )
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return UpstreamAuthError(f"Provider rejected credentials: {message}")
    if isinstance(exc, openai.RateLimitError):
        if code == "insufficient_quota":
            return UpstreamQuotaError(
                f"Provider quota exhausted: {message}",
                user_message="Image provider quota exceeded",
            )
        return UpstreamQuotaError(f"Provider rate limit: {message}")
    if isinstance(exc, (openai.BadRequestError, openai.UnprocessableEntityError)):
        if code in _CONTENT_POLICY_CODES:
            return UpstreamContentRejection(message)
        return UpstreamContentRejection(f"Invalid request parameters: {message}")
    return UpstreamError(f"Image provider error ({code or type(exc).__name__}): {message}")


class ImageGenerationClient:
    """Generate single images from enhanced prompts.

    Attributes:
        model: Provider model identifier.
        timeout: Per-call timeout in seconds.
        max_retries: SDK retry budget for transient failures.
    """

    def __init__(
        self,
        api_key: str | None,
        *,
        model: str = "gpt-image-1",
        timeout: float = 60.0,
        max_retries: int = 2,
        client: AsyncOpenAI | None = None,
    ) -> None:
        """Initialise the client.

        Args:
            api_key: Provider API key. May be ``None``; the error is deferred
                to the first :meth:`generate` call so health endpoints still
                work on an unconfigured deployment.
            model: Provider model identifier.
            timeout: Per-call timeout in seconds.
            max_retries: SDK retry budget.
            client: Pre-built SDK client, mainly for tests.
        """
        self._api_key = api_key
        self.model = model
        self.timeout = timeout
        self.max_retries = max_retries
        self._client = client

    @classmethod
    def from_config(cls, config: OptemusConfig) -> ImageGenerationClient:
        return cls(
            config.openai_api_key,
            model=config.image_model,
            timeout=config.request_timeout,
            max_retries=config.max_retries,
        )

    @property
    def configured(self) -> bool:
        return self._client is not None or bool(self._api_key)

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self._api_key:
                logger.error("Missing OPENAI_API_KEY; cannot generate images")
                raise ConfigurationError("OPENAI_API_KEY is not configured")
            self._client = AsyncOpenAI(
                api_key=self._api_key,
                timeout=self.timeout,
                max_retries=self.max_retries,
            )
        return self._client

    async def generate(self, prompt: str, size: str, quality: str) -> ImagePayload:
        """Generate one image.

        Args:
            prompt: Enhanced prompt sent verbatim to the provider.
            size: Image dimensions, e.g. ``"1024x1024"``.
            quality: ``low``, ``medium``, ``high`` or ``auto``.

        Returns:
            Payload with inline bytes, a remote URL, or both.

        Raises:
            ConfigurationError: No API key is configured.
            UpstreamError: Any provider failure, as a specific subclass.
        """
        client = self._get_client()

        try:
            response = await client.images.generate(
                model=self.model,
                prompt=prompt,
                size=size,
                quality=quality,
                n=1,
            )
        except openai.APIError as exc:
            raise translate_openai_error(exc) from exc

        entries = getattr(response, "data", None) or []
        if not entries:
            raise EmptyResultError("Provider returned no images")

        return self._payload_from_entry(entries[0])

    @staticmethod
    def _payload_from_entry(entry: Any) -> ImagePayload:
        if isinstance(entry, dict):
            b64_json = entry.get("b64_json")
            url = entry.get("url")
        else:
            b64_json = getattr(entry, "b64_json", None)
            url = getattr(entry, "url", None)

        data = None
        if b64_json:
            try:
                data = base64.b64decode(b64_json, validate=True)
            except (binascii.Error, ValueError) as exc:
                raise UpstreamError("Provider returned malformed base64 image data") from exc

        if data is None and not url:
            raise EmptyResultError("Provider response contained neither image data nor a URL")

        return ImagePayload(data=data, url=url or None)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
