"""Protocol types for SyncManager dependencies.

Defines the interfaces that SyncManager requires from its collaborators:
the upload and analyze boundaries and the queue store.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Protocol, runtime_checkable

from .queue import QueueItem, QueueStats

__all__ = [
    "UploadResult",
    "AnalysisRecord",
    "UploadBoundary",
    "AnalyzeBoundary",
    "QueueStoreProtocol",
]


@dataclass
class UploadResult:
    """Reference to a stored image, usable by the analyze boundary."""

    url: str
    file_name: str = ""
    size: int = 0
    content_type: str = ""


@dataclass
class AnalysisRecord:
    """A persisted analysis. ``analysis`` is the assessment payload as a dict."""

    id: str
    image_url: str
    owner_id: str
    analysis: dict
    provider: str = ""
    response_time_ms: int = 0
    metadata: Optional[dict] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@runtime_checkable
class UploadBoundary(Protocol):
    """Stores an image and returns a reference to it. Raises UploadError."""

    def upload(self, image: bytes, owner_id: str) -> UploadResult: ...


@runtime_checkable
class AnalyzeBoundary(Protocol):
    """Analyzes a stored image. Raises AnalyzeError."""

    def analyze(
        self, image_ref: str, owner_id: str, metadata: Optional[dict] = None
    ) -> AnalysisRecord: ...


@runtime_checkable
class QueueStoreProtocol(Protocol):
    """Interface for the durable capture queue."""

    def add(
        self,
        image: bytes,
        owner_id: str,
        captured_at: Optional[datetime] = None,
        metadata: Optional[dict] = None,
    ) -> str: ...

    def get(self, item_id: str) -> Optional[QueueItem]: ...

    def list_by_status(self, status: str) -> list[QueueItem]: ...

    def list_retryable(self, max_retries: int) -> list[QueueItem]: ...

    def count(self, status: Optional[str] = None) -> int: ...

    def update_status(self, item_id: str, status: str, error: Optional[str] = None) -> bool: ...

    def remove(self, item_id: str) -> bool: ...

    def reset_failed(self, max_retries: Optional[int] = None) -> int: ...

    def recover_interrupted(self) -> int: ...

    def remove_older_than(self, days: int = 7) -> int: ...

    def stats(self) -> QueueStats: ...
