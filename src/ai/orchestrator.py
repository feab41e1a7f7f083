"""Provider orchestrator: priority fallback, per-provider retry, hard timeouts.

Providers are tried in priority order. Each gets ``max_attempts`` tries with
exponential backoff between them; a provider's last failure moves on to the
next provider immediately. Every attempt produces exactly one
PerformanceRecord, written on a background thread so telemetry never delays
or fails an analysis.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Callable, Mapping, Optional

from ..errors import ConfigurationError, ProviderTimeoutError, ServiceExhaustedError
from ..retry import AttemptSchedule, BackoffPolicy
from ..sync.events import EventChannel, ProviderAttemptEvent
from .models import AnalysisOutput, OrchestrationResult, PerformanceRecord, ProviderResponse
from .providers import Provider, ProviderClient
from .registry import ProviderRegistry
from .telemetry import PerformanceRecorder, ProviderStats

__all__ = ["ProviderOrchestrator"]

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 10000


class ProviderOrchestrator:
    """Runs one analysis across the configured providers."""

    def __init__(
        self,
        registry: ProviderRegistry,
        recorder: Optional[PerformanceRecorder] = None,
        policy: Optional[BackoffPolicy] = None,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        sleep: Callable[[float], None] = time.sleep,
        channel: Optional[EventChannel] = None,
        clients: Optional[Mapping[str, ProviderClient]] = None,
        max_workers: int = 4,
    ):
        """Initialize orchestrator.

        Args:
            registry: Source of available providers
            recorder: Telemetry sink (one record per attempt)
            policy: Attempts per provider and backoff parameters
            timeout_ms: Hard limit for a single attempt
            sleep: Sleeper used between retries, in seconds
            channel: Optional channel for attempt progress events
            clients: Pre-built clients by provider name (otherwise built by the registry)
            max_workers: Threads available for running attempts
        """
        self.registry = registry
        self.recorder = recorder
        self.policy = policy or BackoffPolicy()
        self.timeout_ms = timeout_ms
        self._sleep = sleep
        self._channel = channel
        self._clients: dict[str, ProviderClient] = dict(clients or {})
        self._clients_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="provider")
        self._telemetry = ThreadPoolExecutor(max_workers=1, thread_name_prefix="telemetry")

    def analyze(self, image_ref: str) -> AnalysisOutput:
        """Analyze an image, falling back across providers.

        Raises:
            ConfigurationError: No provider has a usable credential
            ServiceExhaustedError: Every attempt on every provider failed
        """
        return self.analyze_with_details(image_ref).output

    def analyze_with_details(self, image_ref: str) -> OrchestrationResult:
        """Like ``analyze`` but also reports which provider answered."""
        providers = self.registry.available()
        if not providers:
            raise ConfigurationError("No AI providers configured. Set at least one API key.")

        logger.info(f"Starting analysis with {len(providers)} provider(s)")
        started = time.monotonic()
        total_attempts = 0
        last_error: Optional[BaseException] = None

        for provider in providers:
            logger.info(f"Trying provider: {provider.name} (priority {provider.priority})")
            schedule = AttemptSchedule(self.policy)

            while not schedule.exhausted:
                attempt = schedule.begin()
                total_attempts += 1
                try:
                    response = self._attempt(provider, image_ref)
                except Exception as e:
                    last_error = e
                    delay_ms = schedule.next_delay_ms()
                    logger.warning(
                        f"{provider.name} failed (attempt {attempt}/{self.policy.max_attempts}): {e}"
                    )
                    self._publish(ProviderAttemptEvent(provider.name, attempt, "failure", delay_ms, str(e)))
                    if delay_ms is not None:
                        logger.info(f"Retrying {provider.name} in {delay_ms}ms")
                        self._sleep(delay_ms / 1000)
                    continue

                logger.info(f"Success with {provider.name} on attempt {attempt}")
                self._publish(ProviderAttemptEvent(provider.name, attempt, "success"))
                return OrchestrationResult(
                    output=response.output,
                    provider=provider.name,
                    elapsed_ms=int((time.monotonic() - started) * 1000),
                    attempts=total_attempts,
                )

            logger.info(f"Provider {provider.name} exhausted, moving on")

        raise ServiceExhaustedError(
            f"All AI providers failed after {total_attempts} attempts: {last_error}",
            provider=providers[-1].name,
            attempts=total_attempts,
            cause=last_error,
        ) from last_error

    def _client_for(self, provider: Provider) -> ProviderClient:
        with self._clients_lock:
            client = self._clients.get(provider.name)
            if client is None:
                client = self.registry.create_client(provider)
                self._clients[provider.name] = client
            return client

    def _attempt(self, provider: Provider, image_ref: str) -> ProviderResponse:
        """Run a single attempt under the hard timeout and record it."""
        timeout = self.timeout_ms / 1000
        cancel = threading.Event()
        started = time.monotonic()
        try:
            client = self._client_for(provider)
            future = self._executor.submit(client.analyze, image_ref, timeout, cancel)
            try:
                response = future.result(timeout=timeout)
            except FutureTimeoutError:
                cancel.set()
                future.cancel()
                raise ProviderTimeoutError(
                    f"Timeout after {self.timeout_ms}ms", provider.name
                ) from None
        except Exception as e:
            self._record(
                PerformanceRecord(
                    provider=provider.name,
                    elapsed_ms=int((time.monotonic() - started) * 1000),
                    success=False,
                    error_message=str(e) or type(e).__name__,
                )
            )
            raise

        self._record(
            PerformanceRecord(
                provider=provider.name,
                elapsed_ms=int((time.monotonic() - started) * 1000),
                success=True,
                prompt_tokens=response.prompt_tokens,
                completion_tokens=response.completion_tokens,
            )
        )
        return response

    def _record(self, record: PerformanceRecord) -> None:
        if self.recorder is None:
            return
        try:
            self._telemetry.submit(self._safe_record, record)
        except RuntimeError as e:
            # Executor already shut down
            logger.error(f"Dropped performance record for {record.provider}: {e}")

    def _safe_record(self, record: PerformanceRecord) -> None:
        try:
            self.recorder.record(record)
        except Exception as e:
            logger.error(f"Failed to log performance: {e}")

    def _publish(self, event: ProviderAttemptEvent) -> None:
        if self._channel is not None:
            self._channel.publish(event)

    def flush(self, timeout: Optional[float] = None) -> None:
        """Wait until every queued performance record has been written."""
        self._telemetry.submit(lambda: None).result(timeout=timeout)

    def provider_statistics(self, limit: int = 100) -> list[ProviderStats]:
        """Per-provider success rate and response time over recent attempts."""
        stats = getattr(self.recorder, "provider_statistics", None)
        if stats is None:
            return []
        try:
            return stats(limit)
        except Exception as e:
            logger.error(f"Failed to get statistics: {e}")
            return []

    def close(self) -> None:
        """Flush telemetry and release worker threads and clients."""
        self._telemetry.shutdown(wait=True)
        self._executor.shutdown(wait=False, cancel_futures=True)
        with self._clients_lock:
            for client in self._clients.values():
                client.close()
            self._clients.clear()
