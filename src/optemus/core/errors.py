"""Error kinds raised by the generation pipeline and storage backends.

Every error carries three class-level attributes that the HTTP layer turns
into a response without inspecting the exception further:

- ``kind``: machine-readable identifier returned to clients
- ``status_code``: HTTP status used for the error response
- ``user_message``: safe, human-readable default message

The instance message (``str(exc)``) is the detail that goes to the log. It is
only shown to users for error kinds where ``expose_detail`` is ``True``
(validation errors and content rejections), because provider and storage
errors may contain configuration details.
"""

from __future__ import annotations


class OptemusError(Exception):
    """Base class for all errors with a client-facing representation."""

    kind: str = "internal_error"
    status_code: int = 500
    user_message: str = "Unexpected server error"
    expose_detail: bool = False
    retryable: bool = False

    def __init__(self, message: str | None = None, *, user_message: str | None = None):
        super().__init__(message or self.user_message)
        if user_message is not None:
            self.user_message = user_message

    @property
    def public_message(self) -> str:
        """Message that may be shown to the end user."""
        if self.expose_detail:
            return str(self)
        return self.user_message

    def to_dict(self) -> dict:
        return {"success": False, "error": self.public_message, "kind": self.kind}


class ValidationError(OptemusError):
    """Missing or invalid request parameters."""

    kind = "validation_error"
    status_code = 400
    user_message = "Invalid request"
    expose_detail = True


class ConfigurationError(OptemusError):
    """A required setting (API key, storage credentials) is absent."""

    kind = "configuration_error"
    status_code = 500
    user_message = "API configuration error"


class UpstreamError(OptemusError):
    """The generation provider failed for a reason without a dedicated kind."""

    kind = "upstream_error"
    status_code = 502
    user_message = "Failed to generate image"


class UpstreamAuthError(UpstreamError):
    kind = "upstream_auth_error"
    status_code = 500
    user_message = "Authentication error"


class UpstreamQuotaError(UpstreamError):
    kind = "upstream_quota_error"
    status_code = 429
    user_message = "Rate limit exceeded, please try again later"
    retryable = True


class UpstreamContentRejection(UpstreamError):
    """The provider refused the prompt (safety policy or malformed request).

    Never retried. The provider's explanation is surfaced to the user.
    """

    kind = "upstream_content_rejection"
    status_code = 400
    user_message = "The prompt was rejected by the image provider. Please rephrase it and try again."
    expose_detail = True


class UpstreamTimeoutError(UpstreamError):
    kind = "upstream_timeout_error"
    status_code = 504
    user_message = "Request timeout - please try again"
    retryable = True


class EmptyResultError(UpstreamError):
    """The provider call succeeded but returned no image."""

    kind = "empty_result"
    status_code = 502
    user_message = "No image data received from the image provider"


class GenerationFailedError(OptemusError):
    """Every requested variant failed."""

    kind = "generation_failed"
    status_code = 502
    user_message = "No images were successfully generated"


class StorageWriteError(OptemusError):
    kind = "storage_write_error"
    status_code = 500
    user_message = "Failed to save image"


class StorageListError(OptemusError):
    kind = "storage_list_error"
    status_code = 500
    user_message = "Failed to fetch images"


class ImageNotFoundError(OptemusError):
    kind = "not_found"
    status_code = 404
    user_message = "Image not found"
