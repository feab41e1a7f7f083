"""On-disk image store used as the upload boundary in local mode."""

import logging
import time
from pathlib import Path
from typing import Optional

from .config import Config, UploadSettings
from .errors import UploadError
from .images import extension_for, validate_image
from .sync.protocols import UploadResult

__all__ = ["LocalImageStore"]

logger = logging.getLogger(__name__)


class LocalImageStore:
    """Writes images to ``<root>/<owner>/<timestamp>.<ext>`` and returns a file:// URI."""

    def __init__(self, root: Optional[Path] = None, settings: Optional[UploadSettings] = None):
        self.root = root or Config.get_data_dir() / "images"
        self.settings = settings or UploadSettings()

    def upload(self, image: bytes, owner_id: str) -> UploadResult:
        """Validate and store an image.

        Raises:
            ImageValidationError: Bad format or too large
            UploadError: Missing owner or the file could not be written
        """
        if not owner_id:
            raise UploadError("Owner id is missing", code="MISSING_USER_ID")
        if "/" in owner_id or "\\" in owner_id or owner_id in (".", ".."):
            raise UploadError(f"Invalid owner id: {owner_id!r}", code="INVALID_USER_ID")

        mime = validate_image(image, self.settings.max_size_bytes, self.settings.allowed_types)
        directory = self.root / owner_id
        file_name = f"{owner_id}/{time.time_ns()}.{extension_for(mime)}"
        path = self.root / file_name

        try:
            directory.mkdir(parents=True, exist_ok=True)
            with open(path, "xb") as f:
                f.write(image)
        except FileExistsError as e:
            raise UploadError(f"File already exists: {file_name}", code="FILE_ALREADY_EXISTS") from e
        except OSError as e:
            raise UploadError(f"Failed to store image: {e}") from e

        logger.debug(f"Stored {len(image)} bytes at {path}")
        return UploadResult(
            url=path.resolve().as_uri(),
            file_name=file_name,
            size=len(image),
            content_type=mime,
        )
