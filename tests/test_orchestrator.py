"""Tests for the provider orchestrator."""

import threading

import pytest

from src.ai.models import AnalysisOutput, ProviderResponse
from src.ai.orchestrator import ProviderOrchestrator
from src.ai.providers import Provider
from src.ai.registry import ProviderRegistry
from src.errors import ConfigurationError, ProviderError, ProviderTimeoutError, ServiceExhaustedError
from src.retry import BackoffPolicy
from src.sync.events import EventChannel, ProviderAttemptEvent

OUTPUT = AnalysisOutput(
    ripeness="ripe",
    confidence=87,
    sweetness=8,
    variety="red",
    skin_quality="good",
    reasoning="Yellow field spot and dry stem.",
)


class FakeClient:
    """Provider client returning scripted outcomes."""

    def __init__(self, outcomes=None, default=None):
        self.outcomes = list(outcomes or [])
        self.default = default
        self.calls = 0
        self.closed = False

    def analyze(self, image_ref, timeout, cancel=None):
        self.calls += 1
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def close(self):
        self.closed = True


class ListRecorder:
    def __init__(self):
        self.records = []

    def record(self, record):
        self.records.append(record)


def always_fails(name):
    return FakeClient(default=ProviderError(f"{name} down", name))


def succeeds():
    return FakeClient(default=ProviderResponse(output=OUTPUT, prompt_tokens=10, completion_tokens=5))


def make_providers(count):
    return [
        Provider(name=f"p{i}", priority=i, description="", model="m", env_var=f"P{i}_KEY")
        for i in range(1, count + 1)
    ]


def make_registry(providers):
    env = {p.env_var: f"key-{p.name}-0123456789" for p in providers}
    return ProviderRegistry(providers=providers, environ=env)


class TestProviderOrchestrator:
    """Tests for ProviderOrchestrator."""

    def setup_method(self):
        self.recorder = ListRecorder()
        self.sleeps = []
        self.orchestrators = []

    def teardown_method(self):
        for orchestrator in self.orchestrators:
            orchestrator.close()

    def build(self, providers, clients, max_attempts=2, **kwargs):
        orchestrator = ProviderOrchestrator(
            make_registry(providers),
            recorder=self.recorder,
            policy=BackoffPolicy(max_attempts=max_attempts, base_delay_ms=1000, max_delay_ms=5000),
            sleep=self.sleeps.append,
            clients=clients,
            **kwargs,
        )
        self.orchestrators.append(orchestrator)
        return orchestrator

    def test_empty_provider_list_raises_configuration_error(self):
        """Test that no providers means no attempts and no records."""
        orchestrator = self.build([], {})

        with pytest.raises(ConfigurationError):
            orchestrator.analyze("https://example.com/melon.jpg")

        orchestrator.flush()
        assert self.recorder.records == []
        assert self.sleeps == []

    def test_providers_without_credentials_are_skipped(self):
        providers = make_providers(2)
        registry = ProviderRegistry(providers=providers, environ={"P2_KEY": "key-p2-0123456789"})
        clients = {"p1": succeeds(), "p2": succeeds()}
        orchestrator = ProviderOrchestrator(registry, recorder=self.recorder, clients=clients)
        self.orchestrators.append(orchestrator)

        result = orchestrator.analyze_with_details("https://example.com/melon.jpg")

        assert result.provider == "p2"
        assert clients["p1"].calls == 0

    @pytest.mark.parametrize("n_providers", [1, 2, 3])
    @pytest.mark.parametrize("retries", [1, 2, 3])
    def test_all_failures_make_n_times_r_attempts(self, n_providers, retries):
        """Test that total failure tries every attempt on every provider."""
        providers = make_providers(n_providers)
        clients = {p.name: always_fails(p.name) for p in providers}
        orchestrator = self.build(providers, clients, max_attempts=retries)

        with pytest.raises(ServiceExhaustedError) as exc_info:
            orchestrator.analyze("https://example.com/melon.jpg")

        assert sum(c.calls for c in clients.values()) == n_providers * retries
        assert exc_info.value.provider == providers[-1].name
        assert exc_info.value.attempts == n_providers * retries
        assert isinstance(exc_info.value.cause, ProviderError)

        orchestrator.flush()
        assert len(self.recorder.records) == n_providers * retries
        assert not any(r.success for r in self.recorder.records)

    @pytest.mark.parametrize("k,j", [(1, 1), (1, 2), (2, 1), (2, 2), (3, 1), (3, 2)])
    def test_success_on_provider_k_attempt_j(self, k, j):
        """Test that success stops after exactly (k-1)*R + j attempts."""
        retries = 2
        providers = make_providers(3)
        clients = {}
        for index, provider in enumerate(providers, start=1):
            if index < k:
                clients[provider.name] = always_fails(provider.name)
            elif index == k:
                failures = [ProviderError("flaky", provider.name)] * (j - 1)
                clients[provider.name] = FakeClient(
                    outcomes=failures, default=ProviderResponse(output=OUTPUT)
                )
            else:
                clients[provider.name] = succeeds()
        orchestrator = self.build(providers, clients, max_attempts=retries)

        result = orchestrator.analyze_with_details("https://example.com/melon.jpg")

        assert result.output == OUTPUT
        assert result.provider == f"p{k}"
        assert result.attempts == (k - 1) * retries + j
        assert sum(c.calls for c in clients.values()) == (k - 1) * retries + j

    def test_fallback_scenario_a_fails_b_succeeds(self):
        """Test [A fails always, B succeeds first try] takes three attempts."""
        providers = make_providers(2)
        clients = {"p1": always_fails("p1"), "p2": succeeds()}
        orchestrator = self.build(providers, clients, max_attempts=2)

        output = orchestrator.analyze("https://example.com/melon.jpg")

        assert output == OUTPUT
        assert clients["p1"].calls == 2
        assert clients["p2"].calls == 1
        orchestrator.flush()
        assert [(r.provider, r.success) for r in self.recorder.records] == [
            ("p1", False),
            ("p1", False),
            ("p2", True),
        ]

    def test_backoff_only_between_attempts_of_same_provider(self):
        """Test that moving to the next provider does not sleep."""
        providers = make_providers(2)
        clients = {p.name: always_fails(p.name) for p in providers}
        orchestrator = self.build(providers, clients, max_attempts=2)

        with pytest.raises(ServiceExhaustedError):
            orchestrator.analyze("https://example.com/melon.jpg")

        assert self.sleeps == [1.0, 1.0]

    def test_backoff_grows_and_is_capped(self):
        providers = make_providers(1)
        orchestrator = self.build(providers, {"p1": always_fails("p1")}, max_attempts=5)

        with pytest.raises(ServiceExhaustedError):
            orchestrator.analyze("https://example.com/melon.jpg")

        assert self.sleeps == [1.0, 2.0, 4.0, 5.0]

    def test_success_record_carries_token_usage(self):
        orchestrator = self.build(make_providers(1), {"p1": succeeds()})

        orchestrator.analyze("https://example.com/melon.jpg")
        orchestrator.flush()

        (record,) = self.recorder.records
        assert record.success is True
        assert record.prompt_tokens == 10
        assert record.completion_tokens == 5

    def test_unexpected_exception_counts_as_failed_attempt(self):
        providers = make_providers(2)
        clients = {"p1": FakeClient(default=KeyError("bad payload")), "p2": succeeds()}
        orchestrator = self.build(providers, clients, max_attempts=1)

        result = orchestrator.analyze_with_details("https://example.com/melon.jpg")

        assert result.provider == "p2"
        orchestrator.flush()
        assert self.recorder.records[0].success is False

    def test_recorder_failure_does_not_affect_analysis(self):
        """Test that telemetry errors are swallowed."""

        class BrokenRecorder:
            def record(self, record):
                raise RuntimeError("database locked")

        orchestrator = ProviderOrchestrator(
            make_registry(make_providers(1)),
            recorder=BrokenRecorder(),
            clients={"p1": succeeds()},
        )
        self.orchestrators.append(orchestrator)

        assert orchestrator.analyze("https://example.com/melon.jpg") == OUTPUT
        orchestrator.flush()

    def test_attempt_timeout_cancels_call(self):
        """Test that a hung provider times out and its cancel event is set."""
        finished = threading.Event()
        seen_cancel = []

        class HangingClient(FakeClient):
            def analyze(self, image_ref, timeout, cancel=None):
                self.calls += 1
                seen_cancel.append(cancel.wait(5))
                finished.set()
                raise ProviderTimeoutError("cancelled", "p1")

        orchestrator = self.build(
            make_providers(1), {"p1": HangingClient()}, max_attempts=1, timeout_ms=50
        )

        with pytest.raises(ServiceExhaustedError) as exc_info:
            orchestrator.analyze("https://example.com/melon.jpg")

        assert isinstance(exc_info.value.cause, ProviderTimeoutError)
        assert finished.wait(5)
        assert seen_cancel == [True]
        orchestrator.flush()
        assert self.recorder.records[0].success is False
        assert "Timeout" in self.recorder.records[0].error_message

    def test_publishes_attempt_events(self):
        channel = EventChannel()
        events = []
        channel.subscribe(events.append)
        providers = make_providers(2)
        clients = {"p1": always_fails("p1"), "p2": succeeds()}
        orchestrator = self.build(providers, clients, max_attempts=2, channel=channel)

        orchestrator.analyze("https://example.com/melon.jpg")

        assert events == [
            ProviderAttemptEvent("p1", 1, "failure", 1000, "p1 down"),
            ProviderAttemptEvent("p1", 2, "failure", None, "p1 down"),
            ProviderAttemptEvent("p2", 1, "success"),
        ]

    def test_provider_statistics_without_stats_support(self):
        orchestrator = self.build(make_providers(1), {"p1": succeeds()})
        assert orchestrator.provider_statistics() == []

    def test_close_closes_clients(self):
        client = succeeds()
        orchestrator = ProviderOrchestrator(make_registry(make_providers(1)), clients={"p1": client})

        orchestrator.close()

        assert client.closed is True
