"""AI vision provider definitions and SDK clients.

Each client sends one image plus the analysis prompt to its vendor SDK and
turns the reply into an ``AnalysisOutput``. Clients never retry; the
orchestrator owns retry, fallback and timeouts.
"""

import base64
import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse

import anthropic
import httpx
import openai
import requests
from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types
from pydantic import ValidationError

from ..errors import ProviderError, ProviderTimeoutError
from ..images import detect_mime_type
from .models import AnalysisOutput, ProviderResponse

__all__ = [
    "Provider",
    "DEFAULT_PROVIDERS",
    "ANALYSIS_PROMPT",
    "ProviderClient",
    "GeminiClient",
    "OpenAIVisionClient",
    "AnthropicClient",
    "CLIENT_CLASSES",
    "load_image",
    "parse_analysis",
]

logger = logging.getLogger(__name__)

ANALYSIS_PROMPT = """Analyze this watermelon photo and assess it.

Return a JSON object with exactly these fields:
- "ripeness": "ripe" or "unripe"
- "confidence": number 0-100
- "sweetness": integer 1-10 (1-3 mild, 4-6 moderately sweet, 7-10 very sweet)
- "variety": one of "red", "yellow", "mini", "inul"
- "skinQuality": one of "good", "fair", "poor"
- "reasoning": short explanation a farmer can follow

Base the assessment on rind color uniformity, the field spot (yellow means ripe),
the stem (dry means ripe), surface sheen (dull means ripe), shape symmetry and
stripe pattern. Respond with JSON only."""


@dataclass
class Provider:
    """An AI vision service in the fallback chain."""

    name: str
    priority: int
    description: str
    model: str
    env_var: str
    credential_present: bool = False


DEFAULT_PROVIDERS = (
    Provider(
        name="gemini",
        priority=1,
        description="Google Gemini Flash - fast and cost-effective",
        model="gemini-2.0-flash",
        env_var="GOOGLE_API_KEY",
    ),
    Provider(
        name="gpt4-vision",
        priority=2,
        description="OpenAI GPT-4 vision - high accuracy fallback",
        model="gpt-4o",
        env_var="OPENAI_API_KEY",
    ),
    Provider(
        name="claude",
        priority=3,
        description="Anthropic Claude Sonnet - advanced reasoning",
        model="claude-3-5-sonnet-20241022",
        env_var="ANTHROPIC_API_KEY",
    ),
)


def load_image(
    image_ref: str,
    session: Optional[requests.Session] = None,
    timeout: float = 10.0,
) -> tuple[bytes, str]:
    """Fetch image bytes for providers that need them inline.

    Args:
        image_ref: http(s) URL, file:// URI or local path
        session: Session used for remote downloads
        timeout: Download timeout in seconds

    Returns:
        (image bytes, MIME type)
    """
    parsed = urlparse(image_ref)
    if parsed.scheme in ("http", "https"):
        http = session or requests
        response = http.get(image_ref, timeout=timeout)
        response.raise_for_status()
        data = response.content
        mime = response.headers.get("Content-Type", "").split(";")[0].strip()
    else:
        path = Path(unquote(parsed.path)) if parsed.scheme == "file" else Path(image_ref)
        data = path.read_bytes()
        mime = ""
    return data, detect_mime_type(data) or mime or "image/jpeg"


def _strip_code_fence(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text.strip()


def parse_analysis(text: str, provider: str) -> AnalysisOutput:
    """Parse a provider's JSON reply into an AnalysisOutput.

    Raises:
        ProviderError: If the reply is not valid JSON or fails validation
    """
    try:
        payload = json.loads(_strip_code_fence(text))
    except (json.JSONDecodeError, TypeError) as e:
        raise ProviderError(f"{provider} returned non-JSON output: {e}", provider) from e
    try:
        return AnalysisOutput.model_validate(payload)
    except ValidationError as e:
        raise ProviderError(
            f"{provider} returned invalid analysis: {e.error_count()} validation errors",
            provider,
        ) from e


class ProviderClient:
    """Base client for one AI provider.

    Wraps the vendor SDK client, created on first use. Every call is made
    with the attempt timeout and with SDK retries disabled. Subclasses build
    the vendor request and read the vendor reply.
    """

    name = "provider"

    def __init__(
        self,
        api_key: str,
        model: str,
        client=None,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key
        self.model = model
        self._client = client
        self._owns_client = client is None
        self._session = session

    @property
    def client(self):
        """Vendor SDK client (lazy initialization)."""
        if self._client is None:
            self._client = self._create_client()
        return self._client

    def _create_client(self):
        raise NotImplementedError

    def analyze(
        self,
        image_ref: str,
        timeout: float,
        cancel: Optional[threading.Event] = None,
    ) -> ProviderResponse:
        """Run one analysis attempt.

        Args:
            image_ref: Reference returned by the upload boundary
            timeout: Seconds allowed for each network call
            cancel: Set by the caller when the attempt has been abandoned

        Returns:
            Parsed analysis plus token usage

        Raises:
            ProviderError: On any failure (ProviderTimeoutError for timeouts)
        """
        self._check_cancelled(cancel)
        response = self._call(image_ref, timeout)
        # A reply that arrives after the caller gave up is discarded
        self._check_cancelled(cancel)
        return response

    def _call(self, image_ref: str, timeout: float) -> ProviderResponse:
        raise NotImplementedError

    def _check_cancelled(self, cancel: Optional[threading.Event]) -> None:
        if cancel is not None and cancel.is_set():
            raise ProviderTimeoutError(f"{self.name} attempt cancelled", self.name)

    def _image(self, image_ref: str, timeout: float) -> tuple[bytes, str]:
        try:
            return load_image(image_ref, self._session, timeout)
        except requests.exceptions.Timeout as e:
            raise ProviderTimeoutError(f"Image download timed out for {self.name}", self.name) from e
        except (requests.exceptions.RequestException, OSError) as e:
            raise ProviderError(f"Cannot load image {image_ref}: {e}", self.name) from e

    def _data_url(self, image_ref: str, timeout: float) -> str:
        data, mime = self._image(image_ref, timeout)
        return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"

    def close(self) -> None:
        """Close the SDK client if we created it."""
        if self._owns_client and self._client is not None:
            close = getattr(self._client, "close", None)
            if close is not None:
                close()
            self._client = None

    def __enter__(self) -> "ProviderClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class GeminiClient(ProviderClient):
    """Google Gemini through the google-genai SDK (image sent inline)."""

    name = "gemini"

    def _create_client(self):
        return genai.Client(api_key=self.api_key)

    def _call(self, image_ref, timeout):
        data, mime = self._image(image_ref, timeout)
        config = genai_types.GenerateContentConfig(
            response_mime_type="application/json",
            http_options=genai_types.HttpOptions(timeout=int(timeout * 1000)),
        )
        try:
            resp = self.client.models.generate_content(
                model=self.model,
                contents=[
                    genai_types.Part.from_bytes(data=data, mime_type=mime),
                    ANALYSIS_PROMPT,
                ],
                config=config,
            )
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(f"{self.name} request timed out", self.name) from e
        except genai_errors.APIError as e:
            raise ProviderError(f"{self.name} API error ({e.code}): {e.message}", self.name) from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Cannot reach {self.name}: {e}", self.name) from e

        if not resp.text:
            raise ProviderError("gemini response has no candidates", self.name)
        usage = resp.usage_metadata
        return ProviderResponse(
            output=parse_analysis(resp.text, self.name),
            prompt_tokens=usage.prompt_token_count if usage else None,
            completion_tokens=usage.candidates_token_count if usage else None,
        )


class OpenAIVisionClient(ProviderClient):
    """OpenAI chat completions with an image_url part."""

    name = "gpt4-vision"

    def _create_client(self):
        return openai.OpenAI(api_key=self.api_key, max_retries=0)

    def _image_url(self, image_ref: str, timeout: float) -> str:
        if urlparse(image_ref).scheme in ("http", "https"):
            return image_ref
        # Local files go as data URLs
        return self._data_url(image_ref, timeout)

    def _call(self, image_ref, timeout):
        image_url = self._image_url(image_ref, timeout)
        try:
            resp = self.client.chat.completions.create(
                model=self.model,
                response_format={"type": "json_object"},
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": ANALYSIS_PROMPT},
                            {"type": "image_url", "image_url": {"url": image_url}},
                        ],
                    }
                ],
                timeout=timeout,
            )
        except openai.APITimeoutError as e:
            raise ProviderTimeoutError(f"{self.name} request timed out", self.name) from e
        except openai.APIStatusError as e:
            raise ProviderError(f"{self.name} API error ({e.status_code}): {e.message}", self.name) from e
        except openai.APIError as e:
            raise ProviderError(f"Cannot reach {self.name}: {e}", self.name) from e

        if not resp.choices or not resp.choices[0].message.content:
            raise ProviderError("gpt4-vision response has no choices", self.name)
        usage = resp.usage
        return ProviderResponse(
            output=parse_analysis(resp.choices[0].message.content, self.name),
            prompt_tokens=usage.prompt_tokens if usage else None,
            completion_tokens=usage.completion_tokens if usage else None,
        )


class AnthropicClient(ProviderClient):
    """Anthropic messages API."""

    name = "claude"
    MAX_TOKENS = 1024

    def _create_client(self):
        return anthropic.Anthropic(api_key=self.api_key, max_retries=0)

    def _image_source(self, image_ref: str, timeout: float) -> dict:
        if urlparse(image_ref).scheme in ("http", "https"):
            return {"type": "url", "url": image_ref}
        data, mime = self._image(image_ref, timeout)
        return {
            "type": "base64",
            "media_type": mime,
            "data": base64.b64encode(data).decode("ascii"),
        }

    def _call(self, image_ref, timeout):
        source = self._image_source(image_ref, timeout)
        try:
            resp = self.client.messages.create(
                model=self.model,
                max_tokens=self.MAX_TOKENS,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "image", "source": source},
                            {"type": "text", "text": ANALYSIS_PROMPT},
                        ],
                    }
                ],
                timeout=timeout,
            )
        except anthropic.APITimeoutError as e:
            raise ProviderTimeoutError(f"{self.name} request timed out", self.name) from e
        except anthropic.APIStatusError as e:
            raise ProviderError(f"{self.name} API error ({e.status_code}): {e.message}", self.name) from e
        except anthropic.APIError as e:
            raise ProviderError(f"Cannot reach {self.name}: {e}", self.name) from e

        blocks = [b for b in resp.content or [] if b.type == "text"]
        if not blocks:
            raise ProviderError("claude response has no text content", self.name)
        usage = resp.usage
        return ProviderResponse(
            output=parse_analysis(blocks[0].text, self.name),
            prompt_tokens=usage.input_tokens if usage else None,
            completion_tokens=usage.output_tokens if usage else None,
        )


CLIENT_CLASSES = {
    "gemini": GeminiClient,
    "gpt4-vision": OpenAIVisionClient,
    "claude": AnthropicClient,
}
