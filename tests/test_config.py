"""Tests for configuration loading."""

import json
import shutil
import tempfile
from pathlib import Path

from src.config import Config


class TestConfig:
    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.path = Path(self.temp_dir) / "config.json"

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_defaults(self):
        config = Config()

        assert config.mode == "remote"
        assert config.ai.timeout_ms == 10000
        assert config.ai.max_retries_per_provider == 2
        assert config.sync.interval_seconds == 30
        assert config.sync.item_max_retries == 5
        assert config.sync.backoff.max_delay_ms == 60000
        assert config.ai.backoff.max_delay_ms == 5000

    def test_save_and_load(self):
        config = Config(mode="local")
        config.sync.interval_seconds = 120
        config.upload.allowed_types = ["image/jpeg"]
        config.save(self.path)

        loaded = Config.load(self.path)

        assert loaded.mode == "local"
        assert loaded.sync.interval_seconds == 120
        assert loaded.upload.allowed_types == ["image/jpeg"]

    def test_unknown_keys_are_ignored(self):
        self.path.write_text(json.dumps({"mode": "local", "theme": "dark", "sync": {"colour": 1}}))

        assert Config.load(self.path).mode == "local"

    def test_corrupt_file_falls_back_to_defaults(self):
        self.path.write_text("{not json")

        assert Config.load(self.path).mode == "remote"

    def test_apply_env(self):
        config = Config()
        config.apply_env(
            {
                "MELONAI_API_URL": "http://localhost:3000/api",
                "MELONAI_MODE": "local",
                "MELONAI_DEBUG": "true",
                "MELONAI_PROVIDER_TIMEOUT_MS": "2500",
                "MELONAI_ITEM_MAX_RETRIES": "3",
                "MELONAI_SYNC_INTERVAL": "not-a-number",
            }
        )

        assert config.api_url == "http://localhost:3000/api"
        assert config.mode == "local"
        assert config.debug_mode is True
        assert config.ai.timeout_ms == 2500
        assert config.sync.item_max_retries == 3
        assert config.sync.interval_seconds == 30

    def test_apply_env_ignores_unknown_mode(self):
        config = Config()
        config.apply_env({"MELONAI_MODE": "cloud"})

        assert config.mode == "remote"
