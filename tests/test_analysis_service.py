"""Tests for the in-process analyze boundary."""

import shutil
import tempfile
from pathlib import Path
from unittest.mock import Mock

import pytest

from src.ai.history import AnalysisHistory
from src.ai.models import AnalysisOutput, OrchestrationResult
from src.ai.service import AnalysisService, RateLimiter
from src.errors import (
    AnalyzeError,
    ConfigurationError,
    ProviderError,
    RateLimitExceededError,
    ServiceExhaustedError,
)

OUTPUT = AnalysisOutput(
    ripeness="ripe",
    confidence=91,
    sweetness=9,
    variety="yellow",
    skin_quality="good",
    reasoning="Dull rind, dry curly tendril.",
)


class TestRateLimiter:
    def setup_method(self):
        self.limiter = RateLimiter(max_requests=3)

    def test_blocks_after_limit(self):
        assert [self.limiter.allow("u1") for _ in range(4)] == [True, True, True, False]

    def test_owners_are_independent(self):
        for _ in range(3):
            self.limiter.allow("u1")

        assert self.limiter.allow("u2") is True

    def test_remaining(self):
        self.limiter.allow("u1")

        assert self.limiter.remaining("u1") == 2
        assert self.limiter.remaining("u2") == 3

    def test_reset(self):
        for _ in range(3):
            self.limiter.allow("u1")

        self.limiter.reset("u1")

        assert self.limiter.allow("u1") is True

    def test_period_is_configurable(self):
        limiter = RateLimiter(max_requests=1, period="minute")

        assert limiter.allow("u1") is True
        assert limiter.allow("u1") is False


class TestAnalysisService:
    """Tests for AnalysisService."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.history = AnalysisHistory(Path(self.temp_dir) / "history.db")
        self.orchestrator = Mock()
        self.orchestrator.analyze_with_details.return_value = OrchestrationResult(
            output=OUTPUT, provider="gemini", elapsed_ms=1450, attempts=1
        )
        self.service = AnalysisService(self.orchestrator, history=self.history)

    def teardown_method(self):
        self.history.close()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_analyze_saves_record(self):
        record = self.service.analyze("https://cdn.example.com/u1/1.jpg", "u1", {"batch": "b7"})

        assert record.provider == "gemini"
        assert record.response_time_ms == 1450
        assert record.analysis["ripeness"] == "ripe"
        saved = self.history.get(record.id)
        assert saved is not None
        assert saved.metadata == {"batch": "b7"}
        assert saved.analysis == record.analysis
        assert [r.id for r in self.history.list_for_owner("u1")] == [record.id]

    def test_accepts_file_uri(self):
        self.service.analyze("file:///tmp/melon.jpg", "u1")

        self.orchestrator.analyze_with_details.assert_called_once_with("file:///tmp/melon.jpg")

    @pytest.mark.parametrize(
        "image_ref,code",
        [("", "MISSING_IMAGE_URL"), ("ftp://host/melon.jpg", "INVALID_IMAGE_URL"), ("melon.jpg", "INVALID_IMAGE_URL")],
    )
    def test_rejects_bad_reference(self, image_ref, code):
        with pytest.raises(AnalyzeError) as exc_info:
            self.service.analyze(image_ref, "u1")

        assert exc_info.value.code == code
        self.orchestrator.analyze_with_details.assert_not_called()

    def test_exhaustion_becomes_analyze_error(self):
        cause = ProviderError("HTTP 500", "claude")
        self.orchestrator.analyze_with_details.side_effect = ServiceExhaustedError(
            "All AI providers failed", provider="claude", attempts=6, cause=cause
        )

        with pytest.raises(AnalyzeError) as exc_info:
            self.service.analyze("https://cdn.example.com/1.jpg", "u1")

        assert isinstance(exc_info.value.__cause__, ServiceExhaustedError)
        assert self.history.list_for_owner("u1") == []

    def test_configuration_error_becomes_analyze_error(self):
        self.orchestrator.analyze_with_details.side_effect = ConfigurationError("no providers")

        with pytest.raises(AnalyzeError) as exc_info:
            self.service.analyze("https://cdn.example.com/1.jpg", "u1")

        assert exc_info.value.code == ConfigurationError.code

    def test_rate_limit(self):
        service = AnalysisService(
            self.orchestrator, rate_limiter=RateLimiter(max_requests=1)
        )
        service.analyze("https://cdn.example.com/1.jpg", "u1")

        with pytest.raises(RateLimitExceededError):
            service.analyze("https://cdn.example.com/2.jpg", "u1")

        assert self.orchestrator.analyze_with_details.call_count == 1

    def test_history_failure(self):
        history = Mock()
        history.save.side_effect = RuntimeError("disk full")
        service = AnalysisService(self.orchestrator, history=history)

        with pytest.raises(AnalyzeError) as exc_info:
            service.analyze("https://cdn.example.com/1.jpg", "u1")

        assert exc_info.value.code == "DATABASE_ERROR"
