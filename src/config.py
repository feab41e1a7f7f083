"""Configuration management for MelonAI Sync."""

import json
import logging
import os
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional

from platformdirs import user_config_dir, user_data_dir, user_log_dir

from .retry import BackoffPolicy

__all__ = [
    "Config",
    "AISettings",
    "SyncSettings",
    "UploadSettings",
    "NetworkSettings",
    "RateLimitSettings",
    "setup_logging",
    "DEFAULT_API_URL",
    "ENV_PREFIX",
]

logger = logging.getLogger(__name__)

APP_NAME = "MelonAI Sync"
APP_AUTHOR = "MelonAI"

DEFAULT_API_URL = "http://127.0.0.1:3000/api"
ENV_PREFIX = "MELONAI_"

# Provider orchestration
DEFAULT_PROVIDER_TIMEOUT_MS = 10000
DEFAULT_MAX_RETRIES_PER_PROVIDER = 2

# Offline sync
DEFAULT_SYNC_INTERVAL = 30  # seconds
DEFAULT_ITEM_MAX_RETRIES = 5
DEFAULT_QUEUE_MAX_AGE_DAYS = 7

MAX_IMAGE_BYTES = 2 * 1024 * 1024


@dataclass
class AISettings:
    """Provider orchestration settings."""

    timeout_ms: int = DEFAULT_PROVIDER_TIMEOUT_MS
    max_retries_per_provider: int = DEFAULT_MAX_RETRIES_PER_PROVIDER
    backoff_base_ms: int = 1000
    backoff_cap_ms: int = 5000

    @property
    def backoff(self) -> BackoffPolicy:
        return BackoffPolicy(
            max_attempts=self.max_retries_per_provider,
            base_delay_ms=self.backoff_base_ms,
            max_delay_ms=self.backoff_cap_ms,
        )


@dataclass
class SyncSettings:
    """Offline queue sync configuration."""

    interval_seconds: int = DEFAULT_SYNC_INTERVAL
    item_max_retries: int = DEFAULT_ITEM_MAX_RETRIES
    backoff_base_ms: int = 1000
    backoff_cap_ms: int = 60000
    queue_max_age_days: int = DEFAULT_QUEUE_MAX_AGE_DAYS

    @property
    def backoff(self) -> BackoffPolicy:
        return BackoffPolicy(
            max_attempts=self.item_max_retries,
            base_delay_ms=self.backoff_base_ms,
            max_delay_ms=self.backoff_cap_ms,
        )


@dataclass
class UploadSettings:
    """Image upload limits."""

    max_size_bytes: int = MAX_IMAGE_BYTES
    allowed_types: list[str] = field(default_factory=lambda: ["image/jpeg", "image/png"])
    timeout_seconds: int = 30


@dataclass
class NetworkSettings:
    """Connectivity probe settings."""

    probe_host: str = "1.1.1.1"
    probe_port: int = 443
    poll_interval_seconds: int = 5


@dataclass
class RateLimitSettings:
    """Per-owner analysis quota."""

    max_requests_per_hour: int = 100


@dataclass
class Config:
    """Main configuration object."""

    api_url: str = DEFAULT_API_URL
    # "remote" talks to the MelonAI backend, "local" runs the orchestrator in-process
    mode: str = "remote"
    ai: AISettings = field(default_factory=AISettings)
    sync: SyncSettings = field(default_factory=SyncSettings)
    upload: UploadSettings = field(default_factory=UploadSettings)
    network: NetworkSettings = field(default_factory=NetworkSettings)
    rate_limit: RateLimitSettings = field(default_factory=RateLimitSettings)
    debug_mode: bool = False

    @classmethod
    def get_config_dir(cls) -> Path:
        """Get the configuration directory path."""
        return Path(user_config_dir(APP_NAME, APP_AUTHOR))

    @classmethod
    def get_data_dir(cls) -> Path:
        """Get the data directory path (queue, telemetry and history databases)."""
        override = os.getenv(f"{ENV_PREFIX}DATA_DIR")
        if override:
            return Path(override)
        return Path(user_data_dir(APP_NAME, APP_AUTHOR))

    @classmethod
    def get_log_dir(cls) -> Path:
        """Get the log directory path."""
        return Path(user_log_dir(APP_NAME, APP_AUTHOR))

    @classmethod
    def get_config_file(cls) -> Path:
        """Get the config file path."""
        return cls.get_config_dir() / "config.json"

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "Config":
        """Load config from file (or defaults), then apply environment overrides."""
        config_file = path or cls.get_config_file()
        config = cls()
        if config_file.exists():
            try:
                with open(config_file, "r") as f:
                    data = json.load(f)
                config = cls._from_dict(data)
            except Exception as e:
                logger.warning(f"Failed to load config: {e}, using defaults")
        config.apply_env()
        return config

    @classmethod
    def _from_dict(cls, data: dict) -> "Config":
        """Create Config from dictionary."""
        sections = {
            "ai": AISettings,
            "sync": SyncSettings,
            "upload": UploadSettings,
            "network": NetworkSettings,
            "rate_limit": RateLimitSettings,
        }
        kwargs = {}
        for name, settings_cls in sections.items():
            section = data.pop(name, None) or {}
            known = {k: v for k, v in section.items() if k in settings_cls.__dataclass_fields__}
            kwargs[name] = settings_cls(**known)

        return cls(
            **kwargs,
            **{k: v for k, v in data.items() if k in cls.__dataclass_fields__},
        )

    def apply_env(self, environ: Optional[dict] = None) -> None:
        """Override settings from MELONAI_* environment variables.

        Recognised: MELONAI_API_URL, MELONAI_MODE, MELONAI_DEBUG,
        MELONAI_PROVIDER_TIMEOUT_MS, MELONAI_MAX_RETRIES_PER_PROVIDER,
        MELONAI_SYNC_INTERVAL, MELONAI_ITEM_MAX_RETRIES,
        MELONAI_BACKOFF_BASE_MS, MELONAI_BACKOFF_CAP_MS.
        """
        env = os.environ if environ is None else environ

        def _int(name: str) -> Optional[int]:
            raw = env.get(f"{ENV_PREFIX}{name}")
            if raw is None or raw == "":
                return None
            try:
                return int(raw)
            except ValueError:
                logger.warning(f"Ignoring non-integer {ENV_PREFIX}{name}={raw!r}")
                return None

        if env.get(f"{ENV_PREFIX}API_URL"):
            self.api_url = env[f"{ENV_PREFIX}API_URL"]
        if env.get(f"{ENV_PREFIX}MODE") in ("remote", "local"):
            self.mode = env[f"{ENV_PREFIX}MODE"]
        if env.get(f"{ENV_PREFIX}DEBUG", "").lower() in ("1", "true", "yes"):
            self.debug_mode = True

        overrides = [
            ("PROVIDER_TIMEOUT_MS", self.ai, "timeout_ms"),
            ("MAX_RETRIES_PER_PROVIDER", self.ai, "max_retries_per_provider"),
            ("SYNC_INTERVAL", self.sync, "interval_seconds"),
            ("ITEM_MAX_RETRIES", self.sync, "item_max_retries"),
            ("BACKOFF_BASE_MS", self.sync, "backoff_base_ms"),
            ("BACKOFF_CAP_MS", self.sync, "backoff_cap_ms"),
        ]
        for name, target, attr in overrides:
            value = _int(name)
            if value is not None:
                setattr(target, attr, value)

    def save(self, path: Optional[Path] = None) -> None:
        """Save config to file."""
        config_file = path or self.get_config_file()
        config_file.parent.mkdir(parents=True, exist_ok=True)

        data = asdict(self)
        with open(config_file, "w") as f:
            json.dump(data, f, indent=2)
        logger.info(f"Config saved to {config_file}")


def setup_logging(debug: bool = False) -> None:
    """Configure logging."""
    log_dir = Config.get_log_dir()
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "melonai-sync.log"

    level = logging.DEBUG if debug else logging.INFO
    format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=level,
        format=format_str,
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler(),
        ],
    )

    # Reduce noise from libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
