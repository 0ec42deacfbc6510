"""Unit tests for optemus.core.generation_client and optemus.core.errors.

The OpenAI SDK is never called over the network: exceptions are built
directly from ``httpx`` responses and the SDK client is replaced by a small
fake exposing ``images.generate``.
"""

from __future__ import annotations

import asyncio
import base64
from types import SimpleNamespace

import httpx
import openai
import pytest

from optemus.core.errors import (
    ConfigurationError,
    EmptyResultError,
    ImageNotFoundError,
    OptemusError,
    UpstreamAuthError,
    UpstreamContentRejection,
    UpstreamError,
    UpstreamQuotaError,
    UpstreamTimeoutError,
    ValidationError,
)
from optemus.core.generation_client import ImageGenerationClient, translate_openai_error

API_URL = "https://api.openai.com/v1/images/generations"


def _status_error(cls, status: int, message: str, code: str | None = None):
    request = httpx.Request("POST", API_URL)
    response = httpx.Response(status, request=request)
    body = {"message": message, "type": "invalid_request_error", "code": code}
    return cls(message, response=response, body=body)


class FakeImages:
    def __init__(self, response=None, error: Exception | None = None):
        self.response = response
        self.error = error
        self.calls: list[dict] = []

    async def generate(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.response


class FakeSDK:
    def __init__(self, images: FakeImages):
        self.images = images
        self.closed = False

    async def close(self):
        self.closed = True


# ---------------------------------------------------------------------------
# Error hierarchy.
# ---------------------------------------------------------------------------


class TestErrorKinds:
    """Test OptemusError.to_dict and message exposure."""

    def test_validation_detail_is_exposed(self):
        error = ValidationError("Prompt is required")
        assert error.to_dict() == {
            "success": False,
            "error": "Prompt is required",
            "kind": "validation_error",
        }
        assert error.status_code == 400

    def test_auth_detail_is_hidden(self):
        """Upstream auth failures only show the generic message."""
        error = UpstreamAuthError("Incorrect API key provided: sk-abc...")
        assert error.to_dict()["error"] == "Authentication error"
        assert "sk-abc" not in error.to_dict()["error"]
        assert error.status_code == 500

    def test_user_message_override(self):
        error = ImageNotFoundError("missing x.png", user_message="File not found")
        assert error.public_message == "File not found"
        assert str(error) == "missing x.png"

    def test_default_message(self):
        assert str(ConfigurationError()) == "API configuration error"

    def test_all_upstream_errors_share_base(self):
        for cls in (UpstreamAuthError, UpstreamQuotaError, UpstreamContentRejection, UpstreamTimeoutError, EmptyResultError):
            assert issubclass(cls, UpstreamError)
            assert issubclass(cls, OptemusError)


# ---------------------------------------------------------------------------
# SDK exception translation.
# ---------------------------------------------------------------------------


class TestTranslateOpenAIError:
    """Test translate_openai_error: one mapping for every SDK failure."""

    def test_authentication(self):
        exc = _status_error(openai.AuthenticationError, 401, "Incorrect API key provided")
        assert isinstance(translate_openai_error(exc), UpstreamAuthError)

    def test_permission_denied(self):
        exc = _status_error(openai.PermissionDeniedError, 403, "Organization not verified")
        assert isinstance(translate_openai_error(exc), UpstreamAuthError)

    def test_rate_limit(self):
        error = translate_openai_error(_status_error(openai.RateLimitError, 429, "Slow down"))
        assert isinstance(error, UpstreamQuotaError)
        assert error.status_code == 429
        assert error.retryable

    def test_insufficient_quota(self):
        exc = _status_error(openai.RateLimitError, 429, "You exceeded your quota", "insufficient_quota")
        error = translate_openai_error(exc)
        assert isinstance(error, UpstreamQuotaError)
        assert error.public_message == "Image provider quota exceeded"

    def test_content_policy_surfaces_provider_message(self):
        exc = _status_error(
            openai.BadRequestError,
            400,
            "Your request was rejected by the safety system.",
            "content_policy_violation",
        )
        error = translate_openai_error(exc)
        assert isinstance(error, UpstreamContentRejection)
        assert error.to_dict()["error"] == "Your request was rejected by the safety system."
        assert not error.retryable

    def test_other_bad_request(self):
        exc = _status_error(openai.BadRequestError, 400, "Invalid size", "invalid_value")
        error = translate_openai_error(exc)
        assert isinstance(error, UpstreamContentRejection)
        assert error.public_message == "Invalid request parameters: Invalid size"

    def test_timeout(self):
        exc = openai.APITimeoutError(request=httpx.Request("POST", API_URL))
        error = translate_openai_error(exc)
        assert isinstance(error, UpstreamTimeoutError)
        assert error.status_code == 504

    def test_connection_error(self):
        exc = openai.APIConnectionError(request=httpx.Request("POST", API_URL))
        error = translate_openai_error(exc)
        assert isinstance(error, UpstreamTimeoutError)
        assert error.public_message == "Network connection error"

    def test_server_error_falls_back(self):
        error = translate_openai_error(_status_error(openai.InternalServerError, 500, "boom"))
        assert type(error) is UpstreamError
        assert error.status_code == 502


# ---------------------------------------------------------------------------
# Client.
# ---------------------------------------------------------------------------


class TestImageGenerationClient:
    """Test ImageGenerationClient.generate with a fake SDK client."""

    def test_returns_decoded_bytes(self, png_bytes):
        encoded = base64.b64encode(png_bytes).decode("ascii")
        images = FakeImages(SimpleNamespace(data=[SimpleNamespace(b64_json=encoded, url=None)]))
        client = ImageGenerationClient("sk-test", model="gpt-image-1", client=FakeSDK(images))

        payload = asyncio.run(client.generate("a cat", "1024x1024", "medium"))

        assert payload.data == png_bytes
        assert payload.url is None
        assert images.calls == [
            {"model": "gpt-image-1", "prompt": "a cat", "size": "1024x1024", "quality": "medium", "n": 1}
        ]

    def test_url_only_result(self):
        images = FakeImages(SimpleNamespace(data=[{"url": "https://cdn.example.com/a.png"}]))
        client = ImageGenerationClient("sk-test", client=FakeSDK(images))

        payload = asyncio.run(client.generate("a cat", "1024x1024", "low"))

        assert payload.data is None
        assert payload.url == "https://cdn.example.com/a.png"

    def test_empty_result(self):
        client = ImageGenerationClient("sk-test", client=FakeSDK(FakeImages(SimpleNamespace(data=[]))))
        with pytest.raises(EmptyResultError):
            asyncio.run(client.generate("a cat", "1024x1024", "low"))

    def test_malformed_base64(self):
        images = FakeImages(SimpleNamespace(data=[SimpleNamespace(b64_json="not base64!", url=None)]))
        client = ImageGenerationClient("sk-test", client=FakeSDK(images))
        with pytest.raises(UpstreamError):
            asyncio.run(client.generate("a cat", "1024x1024", "low"))

    def test_sdk_errors_are_translated(self):
        exc = _status_error(openai.RateLimitError, 429, "Slow down")
        client = ImageGenerationClient("sk-test", client=FakeSDK(FakeImages(error=exc)))

        with pytest.raises(UpstreamQuotaError) as info:
            asyncio.run(client.generate("a cat", "1024x1024", "low"))
        assert info.value.__cause__ is exc

    def test_missing_key(self):
        """No key means a configuration error at call time, not construction."""
        client = ImageGenerationClient(None)
        assert not client.configured
        with pytest.raises(ConfigurationError):
            asyncio.run(client.generate("a cat", "1024x1024", "low"))

    def test_from_config(self, test_config):
        client = ImageGenerationClient.from_config(test_config)
        assert client.configured
        assert client.model == test_config.image_model
        assert client.max_retries == test_config.max_retries

    def test_aclose(self):
        sdk = FakeSDK(FakeImages())
        asyncio.run(ImageGenerationClient("sk-test", client=sdk).aclose())
        assert sdk.closed
