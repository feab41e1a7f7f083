"""Tests for the capture path."""

import shutil
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import Mock

import pytest

from src.capture import CaptureService
from src.errors import AnalyzeError, ImageValidationError, UploadError
from src.sync.protocols import AnalysisRecord, UploadResult
from src.sync.queue import STATUS_PENDING, QueueStore

JPEG = b"\xff\xd8\xff\xe0" + b"\x00" * 128


class TestCaptureService:
    """Tests for CaptureService."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.queue = QueueStore(Path(self.temp_dir) / "queue.db")
        self.uploader = Mock()
        self.uploader.upload.return_value = UploadResult(
            url="https://cdn.example.com/u1/1.jpg", file_name="u1/1.jpg", size=len(JPEG), content_type="image/jpeg"
        )
        self.analyzer = Mock()
        self.analyzer.analyze.return_value = AnalysisRecord(
            id="rec-1",
            image_url="https://cdn.example.com/u1/1.jpg",
            owner_id="u1",
            analysis={"ripeness": "ripe"},
            provider="gemini",
            response_time_ms=900,
        )
        self.online = True
        self.service = CaptureService(self.queue, self.uploader, self.analyzer, lambda: self.online)

    def teardown_method(self):
        self.queue.close()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_online_capture_analyzes_immediately(self):
        outcome = self.service.capture(JPEG, "u1", {"batch": "b1"})

        assert outcome.queued is False
        assert outcome.record.id == "rec-1"
        self.analyzer.analyze.assert_called_once_with(
            "https://cdn.example.com/u1/1.jpg", "u1", {"batch": "b1"}
        )
        assert self.queue.is_empty()

    def test_offline_capture_is_queued(self):
        self.online = False
        captured_at = datetime(2026, 10, 1, 7, 30, tzinfo=timezone.utc)

        outcome = self.service.capture(JPEG, "u1", {"row": 4}, captured_at=captured_at)

        assert outcome.queued is True
        item = self.queue.get(outcome.item_id)
        assert item.status == STATUS_PENDING
        assert item.image == JPEG
        assert item.metadata == {"row": 4}
        assert item.captured_at == captured_at
        self.uploader.upload.assert_not_called()

    @pytest.mark.parametrize("code", ["NETWORK_ERROR", "TIMEOUT"])
    def test_connection_loss_during_upload_queues(self, code):
        self.uploader.upload.side_effect = UploadError("connection dropped", code=code)

        outcome = self.service.capture(JPEG, "u1")

        assert outcome.queued is True
        assert self.queue.count() == 1

    def test_connection_loss_during_analyze_queues(self):
        self.analyzer.analyze.side_effect = AnalyzeError("timed out", code="TIMEOUT")

        assert self.service.capture(JPEG, "u1").queued is True

    def test_server_rejection_is_raised(self):
        self.analyzer.analyze.side_effect = AnalyzeError("AI failed", code="AI_SERVICE_ERROR")

        with pytest.raises(AnalyzeError):
            self.service.capture(JPEG, "u1")

        assert self.queue.is_empty()

    def test_invalid_image_is_never_queued(self):
        self.online = False

        with pytest.raises(ImageValidationError) as exc_info:
            self.service.capture(b"GIF89a" + b"\x00" * 16, "u1")

        assert exc_info.value.code == "INVALID_IMAGE_FORMAT"
        assert self.queue.is_empty()
