"""HTTP client for the MelonAI upload and analyze endpoints."""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

import requests

from ..errors import AnalyzeError, MelonAIError, RateLimitExceededError, UploadError
from ..images import detect_mime_type, extension_for
from .protocols import AnalysisRecord, UploadResult

__all__ = ["MelonApiClient"]

logger = logging.getLogger(__name__)


class MelonApiClient:
    """Remote upload + analyze boundaries.

    Handles:
    - Session management
    - Authentication headers
    - Translating the ``{success, data, error}`` envelope into results or errors

    There is no retry inside a call; a failed call counts as one attempt
    toward the queue item's retry budget.
    """

    USER_AGENT = "MelonAI-Sync/0.1.0"

    def __init__(
        self,
        api_url: str,
        token: Optional[str] = None,
        timeout: int = 30,
        session: Optional[requests.Session] = None,
    ):
        """Initialize API client.

        Args:
            api_url: MelonAI API base URL
            token: API token for authentication
            timeout: Request timeout in seconds
            session: Optional requests session (for dependency injection/testing)
        """
        self.api_url = api_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._session = session or requests.Session()
        self._owns_session = session is None

    def _get_headers(self) -> dict:
        headers = {
            "Accept": "application/json",
            "User-Agent": self.USER_AGENT,
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _request(
        self,
        method: str,
        endpoint: str,
        error_cls: type,
        **kwargs,
    ) -> dict:
        """Make one request and unwrap the response envelope.

        Args:
            method: HTTP method
            endpoint: API endpoint (relative to api_url)
            error_cls: Error type to raise on failure
            **kwargs: Passed to ``requests.Session.request``

        Returns:
            The ``data`` member of a successful response

        Raises:
            error_cls: For transport failures and ``success: false`` replies
        """
        url = f"{self.api_url}/{endpoint.lstrip('/')}"
        try:
            response = self._session.request(
                method, url, headers=self._get_headers(), timeout=self.timeout, **kwargs
            )
        except requests.exceptions.ConnectionError as e:
            raise error_cls("Cannot connect to MelonAI API", code="NETWORK_ERROR") from e
        except requests.exceptions.Timeout as e:
            raise error_cls("Request timed out", code="TIMEOUT") from e
        except requests.exceptions.RequestException as e:
            raise error_cls(f"Request failed: {e}") from e

        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = {}

        if response.ok and body.get("success", True):
            return body.get("data") or {}

        error = body.get("error") or {}
        code = error.get("code") or f"HTTP_{response.status_code}"
        message = error.get("message") or f"API error ({response.status_code})"
        details = error.get("details")
        if details:
            message = f"{message} ({details})"

        if error_cls is AnalyzeError and (
            response.status_code == 429 or code == "RATE_LIMIT_EXCEEDED"
        ):
            raise RateLimitExceededError(message, code=code)
        raise error_cls(message, code=code)

    def upload(self, image: bytes, owner_id: str) -> UploadResult:
        """Upload an image.

        Raises:
            UploadError: Validation rejection or storage failure
        """
        mime = detect_mime_type(image) or "application/octet-stream"
        file_name = f"{uuid.uuid4().hex}.{extension_for(mime)}"
        data = self._request(
            "POST",
            "upload",
            UploadError,
            files={"file": (file_name, image, mime)},
            data={"userId": owner_id},
        )
        if not data.get("url"):
            raise UploadError("Upload response has no URL")

        logger.debug(f"Uploaded {len(image)} bytes for {owner_id}: {data['url']}")
        return UploadResult(
            url=data["url"],
            file_name=data.get("fileName", file_name),
            size=data.get("size", len(image)),
            content_type=data.get("type", mime),
        )

    def analyze(
        self, image_ref: str, owner_id: str, metadata: Optional[dict] = None
    ) -> AnalysisRecord:
        """Request an analysis of an uploaded image.

        Raises:
            AnalyzeError: Provider exhaustion or persistence failure on the server
        """
        payload = {"imageUrl": image_ref, "userId": owner_id}
        if metadata:
            payload["metadata"] = metadata
        data = self._request("POST", "analyze", AnalyzeError, json=payload)

        analysis = {
            k: v
            for k, v in data.items()
            if k not in ("id", "imageUrl", "userId", "aiProvider", "aiResponseTime", "metadata", "createdAt")
        }
        created_at = datetime.now(timezone.utc)
        if data.get("createdAt"):
            try:
                created_at = datetime.fromisoformat(data["createdAt"].replace("Z", "+00:00"))
            except ValueError:
                pass

        return AnalysisRecord(
            id=str(data.get("id") or uuid.uuid4().hex),
            image_url=data.get("imageUrl", image_ref),
            owner_id=data.get("userId") or owner_id,
            analysis=analysis,
            provider=data.get("aiProvider", ""),
            response_time_ms=data.get("aiResponseTime") or 0,
            metadata=data.get("metadata", metadata),
            created_at=created_at,
        )

    def is_reachable(self) -> bool:
        """Check if the MelonAI API is reachable."""
        try:
            self._request("GET", "health", MelonAIError)
            return True
        except MelonAIError:
            return False

    def set_token(self, token: Optional[str]) -> None:
        self.token = token

    def close(self) -> None:
        """Close the session if we own it."""
        if self._owns_session and self._session is not None:
            self._session.close()
            self._session = None

    def __enter__(self) -> "MelonApiClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
