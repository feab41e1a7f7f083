"""MelonAI Sync - Main entry point."""

import argparse
import getpass
import json
import logging
import os
import signal
import sys
import threading
from pathlib import Path
from typing import Optional

from . import __version__
from .ai import (
    AnalysisHistory,
    AnalysisService,
    ProviderOrchestrator,
    ProviderRegistry,
    RateLimiter,
    SqlitePerformanceLog,
)
from .capture import CaptureOutcome, CaptureService
from .config import Config, setup_logging
from .credentials import CredentialStore
from .errors import MelonAIError
from .network import NetworkMonitor
from .notifications import DesktopNotifier
from .storage import LocalImageStore
from .sync import EventChannel, MelonApiClient, QueueStore, SyncEvent, SyncManager

logger = logging.getLogger(__name__)


class MelonAISyncApp:
    """Wires components together and owns their lifecycle."""

    def __init__(self, config: Optional[Config] = None, credentials: Optional[CredentialStore] = None):
        self.config = config or Config.load()
        self.credentials = credentials or CredentialStore()
        self.channel = EventChannel()

        self.queue = QueueStore()
        self.telemetry = SqlitePerformanceLog()
        self.registry = ProviderRegistry(credentials=self.credentials)
        self.orchestrator = ProviderOrchestrator(
            self.registry,
            recorder=self.telemetry,
            policy=self.config.ai.backoff,
            timeout_ms=self.config.ai.timeout_ms,
            channel=self.channel,
        )

        self.api: Optional[MelonApiClient] = None
        self.history: Optional[AnalysisHistory] = None
        if self.config.mode == "local":
            self.history = AnalysisHistory()
            self.uploader = LocalImageStore(settings=self.config.upload)
            self.analyzer = AnalysisService(
                self.orchestrator,
                history=self.history,
                rate_limiter=RateLimiter(self.config.rate_limit.max_requests_per_hour),
            )
        else:
            token = os.getenv("MELONAI_API_TOKEN") or self.credentials.get_api_token()
            self.api = MelonApiClient(
                self.config.api_url, token=token, timeout=self.config.upload.timeout_seconds
            )
            self.uploader = self.api
            self.analyzer = self.api

        self.sync_manager = SyncManager(
            self.queue, self.uploader, self.analyzer, config=self.config.sync, channel=self.channel
        )
        self.network = NetworkMonitor(
            on_change=self._on_network_change,
            host=self.config.network.probe_host,
            port=self.config.network.probe_port,
            interval=self.config.network.poll_interval_seconds,
        )
        self.capture_service = CaptureService(
            self.queue,
            self.uploader,
            self.analyzer,
            is_online=self._is_online,
            settings=self.config.upload,
        )

        self._shutdown_done = False
        self._shutdown_event = threading.Event()

    def _is_online(self) -> bool:
        known = self.network.is_online
        return known if known is not None else self.network.probe()

    def _on_network_change(self, is_online: bool) -> None:
        self.sync_manager.set_online(is_online)

    def _log_event(self, event) -> None:
        if isinstance(event, SyncEvent):
            logger.info(
                f"Sync {event.status.value}: {event.queue_count} queued, "
                f"{event.succeeded} ok, {event.failed} failed"
            )

    def run(self) -> None:
        """Run the background sync agent until interrupted."""
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        report = self.registry.validate_configuration()
        if self.config.mode == "local" and not report.is_valid:
            logger.warning(report.message)

        self.channel.subscribe(self._log_event)
        self.channel.subscribe(DesktopNotifier())
        self.sync_manager.start(online=False)
        self.network.start()

        logger.info(f"MelonAI Sync {__version__} running ({self.config.mode} mode)")
        self._shutdown_event.wait()

    def _signal_handler(self, signum, frame) -> None:
        """Handle shutdown signals."""
        logger.info(f"Received signal {signum}")
        self._shutdown_event.set()

    def shutdown(self) -> None:
        """Shutdown the application. Safe to call multiple times."""
        if self._shutdown_done:
            return
        self._shutdown_done = True
        logger.info("Shutting down...")

        self.network.stop()
        self.sync_manager.shutdown()
        self.orchestrator.close()
        if self.api is not None:
            self.api.close()
        if self.history is not None:
            self.history.close()
        self.telemetry.close()
        self.queue.close()

        logger.info("Shutdown complete")

    def __enter__(self) -> "MelonAISyncApp":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown()


# Command line


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def _parse_metadata(pairs: list[str]) -> Optional[dict]:
    metadata = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise argparse.ArgumentTypeError(f"Metadata must be key=value, got {pair!r}")
        metadata[key] = value
    return metadata or None


def _cmd_run(app: MelonAISyncApp, args) -> int:
    app.run()
    return 0


def _cmd_capture(app: MelonAISyncApp, args) -> int:
    image = Path(args.file).read_bytes()
    outcome: CaptureOutcome = app.capture_service.capture(
        image, args.owner, metadata=_parse_metadata(args.meta)
    )
    if outcome.queued:
        print(f"Offline: photo queued as {outcome.item_id}")
    else:
        _print_json(outcome.record.analysis)
    return 0


def _cmd_analyze(app: MelonAISyncApp, args) -> int:
    result = app.orchestrator.analyze_with_details(args.image_ref)
    app.orchestrator.flush()
    _print_json(
        {
            "provider": result.provider,
            "elapsed_ms": result.elapsed_ms,
            "attempts": result.attempts,
            "analysis": result.output.to_dict(),
        }
    )
    return 0


def _cmd_queue(app: MelonAISyncApp, args) -> int:
    queue = app.queue
    if args.action == "stats":
        _print_json(queue.stats().to_dict())
    elif args.action == "list":
        for item in queue.list():
            print(
                f"{item.id}  {item.status:<9}  retries={item.retry_count}  "
                f"{item.captured_at.isoformat()}  {item.last_error or ''}"
            )
    elif args.action == "retry":
        print(f"Reset {queue.reset_failed()} failed item(s) to pending")
    elif args.action == "clear":
        print(f"Removed {queue.clear()} item(s)")
    elif args.action == "export":
        print(queue.export_json())
    elif args.action == "cleanup":
        days = args.days or app.config.sync.queue_max_age_days
        print(f"Removed {queue.remove_older_than(days)} item(s) older than {days} days")
    return 0


def _cmd_providers(app: MelonAISyncApp, args) -> int:
    report = app.registry.validate_configuration()
    available = set(report.available_providers)
    for provider in sorted(app.registry.providers, key=lambda p: p.priority):
        mark = "ok" if provider.name in available else "--"
        print(f"[{mark}] {provider.priority}. {provider.name:<12} {provider.description} ({provider.env_var})")
    print(report.message)
    return 0 if report.is_valid else 1


def _cmd_stats(app: MelonAISyncApp, args) -> int:
    metrics = app.telemetry.system_metrics(args.range)
    _print_json(
        {
            "range": args.range,
            "total_analyses": metrics.total_analyses,
            "success_rate": round(metrics.success_rate, 1),
            "average_response_time_ms": round(metrics.average_response_time_ms, 1),
            "error_count": metrics.error_count,
            "recent_by_provider": [s.to_dict() for s in app.orchestrator.provider_statistics(args.limit)],
        }
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="melonai-sync", description="Offline-first watermelon ripeness analysis agent"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", type=Path, help="Path to config.json")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("run", help="Run the background sync agent").set_defaults(func=_cmd_run)

    capture = sub.add_parser("capture", help="Analyze a photo, or queue it when offline")
    capture.add_argument("file")
    capture.add_argument("--owner", default=os.getenv("MELONAI_OWNER_ID") or getpass.getuser())
    capture.add_argument("--meta", action="append", metavar="KEY=VALUE", help="Metadata entry")
    capture.set_defaults(func=_cmd_capture)

    analyze = sub.add_parser("analyze", help="Run the provider chain on an image URL")
    analyze.add_argument("image_ref")
    analyze.set_defaults(func=_cmd_analyze)

    queue = sub.add_parser("queue", help="Inspect or manage the offline queue")
    queue.add_argument("action", choices=["stats", "list", "retry", "clear", "export", "cleanup"])
    queue.add_argument("--days", type=int, help="Age limit for cleanup")
    queue.set_defaults(func=_cmd_queue)

    sub.add_parser("providers", help="Show configured AI providers").set_defaults(func=_cmd_providers)

    stats = sub.add_parser("stats", help="Provider performance statistics")
    stats.add_argument("--range", default="24h", choices=["1h", "24h", "7d", "30d"])
    stats.add_argument("--limit", type=int, default=100)
    stats.set_defaults(func=_cmd_stats)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    config = Config.load(args.config)
    if args.debug:
        config.debug_mode = True
    setup_logging(config.debug_mode)

    try:
        with MelonAISyncApp(config) as app:
            return args.func(app, args)
    except MelonAIError as e:
        logger.debug(f"Command failed: {e}")
        print(f"Error ({e.code}): {e.user_message}", file=sys.stderr)
        return 1
    except (OSError, argparse.ArgumentTypeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
