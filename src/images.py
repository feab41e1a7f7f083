"""Image validation for captures."""

import logging
from typing import Optional

from .config import MAX_IMAGE_BYTES
from .errors import ImageValidationError

__all__ = ["detect_mime_type", "validate_image", "extension_for"]

logger = logging.getLogger(__name__)

_SIGNATURES = (
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
)

_EXTENSIONS = {"image/jpeg": "jpg", "image/png": "png"}


def detect_mime_type(data: bytes) -> Optional[str]:
    """Identify JPEG or PNG by magic bytes."""
    for signature, mime in _SIGNATURES:
        if data.startswith(signature):
            return mime
    return None


def extension_for(mime_type: str) -> str:
    return _EXTENSIONS.get(mime_type, "bin")


def validate_image(
    data: bytes,
    max_size_bytes: int = MAX_IMAGE_BYTES,
    allowed_types: Optional[list[str]] = None,
) -> str:
    """Check an image before it is uploaded or queued.

    Args:
        data: Raw image bytes
        max_size_bytes: Size limit
        allowed_types: Accepted MIME types (JPEG and PNG by default)

    Returns:
        Detected MIME type

    Raises:
        ImageValidationError: If the image is empty, too large or not an allowed type
    """
    allowed = allowed_types or list(_EXTENSIONS)

    if not data:
        raise ImageValidationError("Image is empty", code="NO_FILE")

    if len(data) > max_size_bytes:
        raise ImageValidationError(
            f"Image is {len(data)} bytes, limit is {max_size_bytes}",
            code="IMAGE_TOO_LARGE",
            user_message=f"Image is too large. Maximum size is {max_size_bytes // (1024 * 1024)}MB.",
        )

    mime = detect_mime_type(data)
    if mime is None or mime not in allowed:
        raise ImageValidationError(
            f"Unsupported image format ({mime or 'unknown'})",
            code="INVALID_IMAGE_FORMAT",
        )
    return mime
