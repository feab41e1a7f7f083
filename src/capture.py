"""Capture path: analyze directly when online, queue when offline."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from .config import UploadSettings
from .errors import AnalyzeError, UploadError
from .images import validate_image
from .sync.protocols import AnalysisRecord, AnalyzeBoundary, QueueStoreProtocol, UploadBoundary

__all__ = ["CaptureService", "CaptureOutcome", "CONNECTIVITY_ERROR_CODES"]

logger = logging.getLogger(__name__)

# Failures that mean "no connection" rather than "the server said no"
CONNECTIVITY_ERROR_CODES = frozenset({"NETWORK_ERROR", "TIMEOUT"})


@dataclass
class CaptureOutcome:
    queued: bool
    item_id: Optional[str] = None
    record: Optional[AnalysisRecord] = None


class CaptureService:
    """Producer side of the offline queue."""

    def __init__(
        self,
        queue: QueueStoreProtocol,
        uploader: UploadBoundary,
        analyzer: AnalyzeBoundary,
        is_online: Callable[[], bool],
        settings: Optional[UploadSettings] = None,
    ):
        self.queue = queue
        self.uploader = uploader
        self.analyzer = analyzer
        self._is_online = is_online
        self.settings = settings or UploadSettings()

    def capture(
        self,
        image: bytes,
        owner_id: str,
        metadata: Optional[dict] = None,
        captured_at: Optional[datetime] = None,
    ) -> CaptureOutcome:
        """Submit a photo.

        Online, the photo is uploaded and analyzed right away. Offline, or
        when the connection drops during the request, it is queued for the
        sync manager instead.

        Raises:
            ImageValidationError: The image is rejected before anything else happens
            UploadError, AnalyzeError: The server refused the request while online
        """
        validate_image(image, self.settings.max_size_bytes, self.settings.allowed_types)

        if not self._is_online():
            return self._enqueue(image, owner_id, metadata, captured_at, "device offline")

        try:
            upload = self.uploader.upload(image, owner_id)
            record = self.analyzer.analyze(upload.url, owner_id, metadata)
        except (UploadError, AnalyzeError) as e:
            if e.code in CONNECTIVITY_ERROR_CODES:
                return self._enqueue(image, owner_id, metadata, captured_at, str(e))
            raise

        return CaptureOutcome(queued=False, record=record)

    def _enqueue(
        self,
        image: bytes,
        owner_id: str,
        metadata: Optional[dict],
        captured_at: Optional[datetime],
        reason: str,
    ) -> CaptureOutcome:
        item_id = self.queue.add(image, owner_id, captured_at, metadata)
        logger.info(f"Capture queued as {item_id} ({reason})")
        return CaptureOutcome(queued=True, item_id=item_id)
