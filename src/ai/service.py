"""In-process analyze boundary: rate limit, orchestrate, persist."""

import logging
import uuid
from typing import Optional
from urllib.parse import urlparse

from limits import parse
from limits.storage import MemoryStorage, Storage
from limits.strategies import FixedWindowRateLimiter

from ..errors import AnalyzeError, ConfigurationError, RateLimitExceededError, ServiceExhaustedError
from ..sync.protocols import AnalysisRecord
from .history import AnalysisHistory
from .orchestrator import ProviderOrchestrator

__all__ = ["AnalysisService", "RateLimiter"]

logger = logging.getLogger(__name__)

_VALID_SCHEMES = ("http", "https", "file")


class RateLimiter:
    """Fixed-window request limit per owner, backed by ``limits``.

    Owned by whoever constructs it; there is no module-level state. Expired
    windows are dropped by the storage backend.
    """

    def __init__(
        self,
        max_requests: int = 100,
        period: str = "hour",
        storage: Optional[Storage] = None,
    ):
        self.max_requests = max_requests
        self._item = parse(f"{max_requests}/{period}")
        self._limiter = FixedWindowRateLimiter(storage or MemoryStorage())

    def allow(self, owner_id: str) -> bool:
        """Count one request; False if the owner is over the limit."""
        return self._limiter.hit(self._item, owner_id)

    def remaining(self, owner_id: str) -> int:
        return self._limiter.get_window_stats(self._item, owner_id).remaining

    def reset(self, owner_id: str) -> None:
        self._limiter.clear(self._item, owner_id)


class AnalysisService:
    """Analyzes a stored image with the orchestrator and records the result.

    Implements the analyze boundary used by the sync manager and the capture
    path when running in local mode.
    """

    def __init__(
        self,
        orchestrator: ProviderOrchestrator,
        history: Optional[AnalysisHistory] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        self.orchestrator = orchestrator
        self.history = history
        self.rate_limiter = rate_limiter

    def analyze(
        self, image_ref: str, owner_id: str, metadata: Optional[dict] = None
    ) -> AnalysisRecord:
        """Run the analysis for one image.

        Raises:
            AnalyzeError: Invalid reference, provider exhaustion, missing
                configuration or persistence failure
            RateLimitExceededError: The owner is over the hourly quota
        """
        if not image_ref:
            raise AnalyzeError("Image reference is missing", code="MISSING_IMAGE_URL")
        if urlparse(image_ref).scheme not in _VALID_SCHEMES:
            raise AnalyzeError(f"Invalid image reference: {image_ref}", code="INVALID_IMAGE_URL")

        if self.rate_limiter is not None and owner_id and not self.rate_limiter.allow(owner_id):
            limit = self.rate_limiter.max_requests
            raise RateLimitExceededError(
                f"Owner {owner_id} exceeded {limit} analyses per hour",
                user_message=f"You have reached the limit of {limit} analyses per hour. Please try again later.",
            )

        logger.info(f"Starting analysis for {owner_id}: {image_ref}")
        try:
            result = self.orchestrator.analyze_with_details(image_ref)
        except ServiceExhaustedError as e:
            raise AnalyzeError(str(e), code=e.code, user_message=e.user_message) from e
        except ConfigurationError as e:
            raise AnalyzeError(str(e), code=e.code, user_message=e.user_message) from e

        record = AnalysisRecord(
            id=uuid.uuid4().hex,
            image_url=image_ref,
            owner_id=owner_id,
            analysis=result.output.to_dict(),
            provider=result.provider,
            response_time_ms=result.elapsed_ms,
            metadata=metadata,
        )
        logger.info(
            f"Analysis completed in {result.elapsed_ms}ms by {result.provider}: "
            f"{result.output.ripeness} ({result.output.confidence}% confidence)"
        )

        if self.history is not None:
            try:
                self.history.save(record)
            except Exception as e:
                raise AnalyzeError(
                    f"Failed to save analysis: {e}", code="DATABASE_ERROR"
                ) from e
        return record
