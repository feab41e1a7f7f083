"""Error taxonomy shared by the orchestrator, the queue and the sync manager.

Every error carries a stable ``code`` and a ``user_message`` that a
presentation layer can show as-is ("offline", "retrying", "gave up after N
attempts") without inspecting retry counters itself.
"""

from typing import Optional

__all__ = [
    "MelonAIError",
    "ConfigurationError",
    "ProviderError",
    "ProviderTimeoutError",
    "ServiceExhaustedError",
    "NetworkUnavailableError",
    "ConcurrencySkippedError",
    "UploadError",
    "ImageValidationError",
    "AnalyzeError",
    "RateLimitExceededError",
    "InvalidTransitionError",
    "SchemaVersionError",
]


class MelonAIError(Exception):
    """Base class for all MelonAI errors."""

    code = "MELONAI_ERROR"
    default_user_message = "Something went wrong. Please try again."

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        user_message: Optional[str] = None,
    ):
        super().__init__(message)
        if code:
            self.code = code
        self.user_message = user_message or self.default_user_message


class ConfigurationError(MelonAIError):
    """No usable AI provider is configured. Fatal, never retried."""

    code = "CONFIGURATION_ERROR"
    default_user_message = "No AI provider is configured. Add at least one API key."


class ProviderError(MelonAIError):
    """A single provider attempt failed."""

    code = "PROVIDER_ERROR"
    default_user_message = "The AI service failed. Retrying..."

    def __init__(self, message: str, provider: str, **kwargs):
        super().__init__(message, **kwargs)
        self.provider = provider


class ProviderTimeoutError(ProviderError):
    """A provider attempt exceeded the hard timeout."""

    code = "PROVIDER_TIMEOUT"
    default_user_message = "The AI service took too long to respond. Retrying..."


class ServiceExhaustedError(MelonAIError):
    """Every provider and every attempt failed."""

    code = "AI_SERVICE_ERROR"
    default_user_message = "The AI service could not analyze the image. Please try again later."

    def __init__(
        self,
        message: str,
        provider: str,
        attempts: int = 0,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.attempts = attempts
        self.cause = cause


class NetworkUnavailableError(MelonAIError):
    """Sync was requested while the device is offline."""

    code = "NETWORK_UNAVAILABLE"
    default_user_message = "No internet connection. Photos will sync when you are back online."


class ConcurrencySkippedError(MelonAIError):
    """Sync was requested while another sync is running."""

    code = "SYNC_IN_PROGRESS"
    default_user_message = "Sync is already in progress."


class UploadError(MelonAIError):
    """The upload boundary rejected or failed to store an image."""

    code = "UPLOAD_FAILED"
    default_user_message = "Failed to upload the image. It will be retried."


class ImageValidationError(UploadError):
    """Image failed local validation (format or size)."""

    code = "INVALID_IMAGE"
    default_user_message = "Invalid image. Only JPEG and PNG up to 2MB are allowed."


class AnalyzeError(MelonAIError):
    """The analyze boundary failed (provider exhaustion or persistence)."""

    code = "ANALYZE_FAILED"
    default_user_message = "Failed to analyze the image. It will be retried."


class RateLimitExceededError(AnalyzeError):
    """Owner exceeded the hourly analysis quota."""

    code = "RATE_LIMIT_EXCEEDED"
    default_user_message = "Analysis limit reached. Please try again later."


class InvalidTransitionError(MelonAIError, ValueError):
    """A queue item status change outside the allowed lifecycle."""

    code = "INVALID_TRANSITION"


class SchemaVersionError(MelonAIError):
    """On-disk queue database was written by a newer version."""

    code = "SCHEMA_VERSION"
    default_user_message = "The offline queue was created by a newer version of the app."
