"""Sync manager - drains the offline queue through the upload and analyze boundaries."""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..config import SyncSettings
from ..errors import (
    AnalyzeError,
    ConcurrencySkippedError,
    InvalidTransitionError,
    MelonAIError,
    NetworkUnavailableError,
    UploadError,
)
from ..retry import item_retry_delay_ms
from .events import EventChannel, SyncEvent, SyncStatus
from .protocols import AnalyzeBoundary, QueueStoreProtocol, UploadBoundary
from .queue import QueueItem, STATUS_FAILED, STATUS_PENDING, STATUS_UPLOADING

__all__ = ["SyncManager", "SyncResult"]

logger = logging.getLogger(__name__)

SYNC_JOB_ID = "sync_job"
IMMEDIATE_JOB_ID = "immediate_sync"
CLEANUP_JOB_ID = "queue_cleanup"
RETRY_JOB_PREFIX = "retry:"


@dataclass
class SyncResult:
    """Outcome of one sync request.

    ``error`` is set when the request was rejected before any item was
    touched (offline, or another sync is running).
    """

    success: bool
    uploaded: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    error: Optional[MelonAIError] = None

    @property
    def rejected(self) -> bool:
        return self.error is not None


class SyncManager:
    """Network-aware consumer of the offline queue.

    Items are processed one at a time, oldest capture first: pending items,
    then failed items still under the retry ceiling. A failed item gets its
    own one-shot retry timer with exponential backoff. Cycles never raise;
    every outcome is reported as a SyncResult and a SyncEvent.
    """

    def __init__(
        self,
        queue: QueueStoreProtocol,
        uploader: UploadBoundary,
        analyzer: AnalyzeBoundary,
        config: Optional[SyncSettings] = None,
        channel: Optional[EventChannel] = None,
        scheduler: Optional[BackgroundScheduler] = None,
    ):
        """Initialize sync manager.

        Args:
            queue: Durable capture queue
            uploader: Upload boundary
            analyzer: Analyze boundary
            config: Interval, retry ceiling and backoff settings
            channel: Event channel for status updates
            scheduler: APScheduler instance (a private one is created if omitted)
        """
        self.queue = queue
        self.uploader = uploader
        self.analyzer = analyzer
        self.config = config or SyncSettings()
        self.channel = channel or EventChannel()
        self._scheduler = scheduler or BackgroundScheduler()
        self._owns_scheduler = scheduler is None

        self._sync_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._online = False
        self._last_status = SyncStatus.IDLE
        self._last_result: Optional[SyncResult] = None

    # Lifecycle

    def start(self, online: bool = False) -> None:
        """Recover interrupted items, start the scheduler and apply network state."""
        recovered = self.queue.recover_interrupted()
        if recovered:
            logger.info(f"Returned {recovered} interrupted item(s) to pending")

        if not self._scheduler.running:
            self._scheduler.start()
        self._scheduler.add_job(
            self._cleanup,
            trigger=IntervalTrigger(hours=24),
            id=CLEANUP_JOB_ID,
            replace_existing=True,
        )
        self.set_online(online)

    def shutdown(self) -> None:
        """Cancel all timers and stop the scheduler if we own it."""
        self.stop_auto_sync()
        self.clear_retry_timers()
        try:
            self._scheduler.remove_job(CLEANUP_JOB_ID)
        except JobLookupError:
            pass
        if self._owns_scheduler and self._scheduler.running:
            self._scheduler.shutdown(wait=False)

    # Network state

    @property
    def is_online(self) -> bool:
        with self._state_lock:
            return self._online

    @property
    def is_syncing(self) -> bool:
        return self._sync_lock.locked()

    def set_online(self, online: bool) -> None:
        """Apply a network transition. Repeated values are ignored."""
        with self._state_lock:
            changed = online != self._online
            self._online = online
        if not changed:
            return

        if online:
            logger.info("Network online, starting auto-sync")
            self.start_auto_sync()
        else:
            logger.info("Network offline, stopping auto-sync")
            self.stop_auto_sync()

    def start_auto_sync(self) -> None:
        """Run a cycle now and then every ``interval_seconds``."""
        self._scheduler.add_job(self._run_scheduled, id=IMMEDIATE_JOB_ID, replace_existing=True)
        self._scheduler.add_job(
            self._run_scheduled,
            trigger=IntervalTrigger(seconds=self.config.interval_seconds),
            id=SYNC_JOB_ID,
            replace_existing=True,
        )

    def stop_auto_sync(self) -> None:
        """Cancel the periodic timer. A running cycle is left to finish."""
        try:
            self._scheduler.remove_job(SYNC_JOB_ID)
        except JobLookupError:
            pass

    # Sync cycle

    def trigger_sync(self) -> SyncResult:
        """Manual sync. Returns a rejected result instead of raising."""
        logger.info("Manual sync triggered")
        return self.sync()

    def sync(self) -> SyncResult:
        """Run one sync cycle over the current work list."""
        if not self.is_online:
            return SyncResult(
                success=False,
                error=NetworkUnavailableError("Cannot sync while offline"),
            )
        if not self._sync_lock.acquire(blocking=False):
            return SyncResult(
                success=False,
                error=ConcurrencySkippedError("Sync already in progress"),
            )

        try:
            result, event = self._run_cycle()
        except Exception as e:
            logger.exception("Sync cycle failed")
            result = SyncResult(success=False, errors=[str(e)])
            event = SyncEvent(SyncStatus.ERROR, queue_count=self._safe_count(), message=str(e))
        finally:
            self._sync_lock.release()

        with self._state_lock:
            self._last_result = result
        self._publish(event)
        if event.status in (SyncStatus.SUCCESS, SyncStatus.ERROR):
            with self._state_lock:
                # Leave a newer cycle's status alone
                if self._last_status == event.status and not self.is_syncing:
                    self._last_status = SyncStatus.IDLE
        return result

    def _work_list(self) -> list[QueueItem]:
        pending = self.queue.list_by_status(STATUS_PENDING)
        retryable = self.queue.list_retryable(self.config.item_max_retries)
        return pending + retryable

    def _run_cycle(self) -> tuple[SyncResult, SyncEvent]:
        work = self._work_list()
        if not work:
            return (
                SyncResult(success=True),
                SyncEvent(SyncStatus.IDLE, queue_count=self.queue.count(), message="Nothing to sync"),
            )

        logger.info(f"Syncing {len(work)} queued item(s)")
        self._publish(SyncEvent(SyncStatus.SYNCING, queue_count=len(work)))

        result = SyncResult(success=True)
        for index, item in enumerate(work):
            error = self._process_item(item)
            if error is None:
                result.uploaded += 1
            elif error:
                result.failed += 1
                result.errors.append(f"{item.id}: {error}")
            self._publish(
                SyncEvent(
                    SyncStatus.SYNCING,
                    queue_count=len(work) - index - 1,
                    succeeded=result.uploaded,
                    failed=result.failed,
                )
            )

        result.success = result.failed == 0
        if result.success:
            status = SyncStatus.SUCCESS
            message = f"Synced {result.uploaded} item(s)"
        else:
            status = SyncStatus.ERROR
            message = f"Synced {result.uploaded} item(s), {result.failed} failed"
        logger.info(message)
        return result, SyncEvent(
            status,
            queue_count=self.queue.count(),
            succeeded=result.uploaded,
            failed=result.failed,
            message=message,
        )

    def _process_item(self, item: QueueItem) -> Optional[str]:
        """Upload and analyze one item.

        Returns:
            None on success, the error message on failure, or "" if the item
            was skipped (removed or claimed elsewhere).
        """
        try:
            if not self.queue.update_status(item.id, STATUS_UPLOADING):
                logger.info(f"Item {item.id} no longer queued, skipping")
                return ""
        except InvalidTransitionError as e:
            logger.warning(f"Skipping item {item.id}: {e}")
            return ""
        except Exception as e:
            # The claim did not commit, so the item keeps its previous status
            logger.exception(f"Could not claim item {item.id}")
            return str(e) or type(e).__name__

        try:
            upload = self.uploader.upload(item.image, item.owner_id)
            self.analyzer.analyze(upload.url, item.owner_id, item.metadata)
        except (UploadError, AnalyzeError) as e:
            logger.warning(f"Item {item.id} failed ({e.code}): {e}")
            return self._mark_failed(item, e)
        except Exception as e:
            logger.exception(f"Unexpected error processing item {item.id}")
            return self._mark_failed(item, e)

        try:
            self.queue.remove(item.id)
        except Exception as e:
            logger.exception(f"Could not remove synced item {item.id}")
            return self._mark_failed(item, e)
        logger.debug(f"Item {item.id} synced")
        return None

    def _mark_failed(self, item: QueueItem, error: BaseException) -> str:
        message = str(error) or type(error).__name__
        try:
            self.queue.update_status(item.id, STATUS_FAILED, message)
        except Exception:
            logger.exception(f"Could not mark item {item.id} as failed")
            return message
        self._schedule_retry(item.id, item.retry_count)
        return message

    # Per-item retry timers

    def _schedule_retry(self, item_id: str, retry_count: int) -> None:
        """Arm the one-shot retry timer for an item that just failed.

        Args:
            item_id: Queue item id
            retry_count: The item's retry count before this failure
        """
        delay_ms = item_retry_delay_ms(retry_count, self.config.backoff)
        if delay_ms is None:
            logger.warning(
                f"Item {item_id} reached {self.config.item_max_retries} retries, "
                "leaving it failed until reset"
            )
            return

        logger.info(f"Retrying item {item_id} in {delay_ms}ms")
        self._scheduler.add_job(
            self._retry_item,
            trigger=DateTrigger(
                run_date=datetime.now(timezone.utc) + timedelta(milliseconds=delay_ms)
            ),
            args=[item_id],
            id=f"{RETRY_JOB_PREFIX}{item_id}",
            replace_existing=True,
        )

    def _retry_item(self, item_id: str) -> None:
        """Retry timer callback: failed -> pending, then sync if possible."""
        try:
            try:
                moved = self.queue.update_status(item_id, STATUS_PENDING)
            except InvalidTransitionError:
                logger.debug(f"Item {item_id} already picked up, retry timer ignored")
                return
            if not moved:
                return
            if self.is_online and not self.is_syncing:
                self.sync()
        except Exception:
            logger.exception(f"Retry timer for item {item_id} failed")

    def clear_retry_timers(self) -> int:
        """Cancel every pending per-item retry timer."""
        cleared = 0
        for job in self._scheduler.get_jobs():
            if job.id.startswith(RETRY_JOB_PREFIX):
                try:
                    self._scheduler.remove_job(job.id)
                    cleared += 1
                except JobLookupError:
                    pass
        return cleared

    # Manual operations

    def retry_all(self) -> SyncResult:
        """Reset every failed item (ceiling ignored) and sync."""
        reset = self.queue.reset_failed()
        self.clear_retry_timers()
        logger.info(f"Reset {reset} failed item(s)")
        return self.trigger_sync()

    def get_status(self) -> dict:
        """Snapshot for a status display."""
        with self._state_lock:
            last = self._last_result
            status = self._last_status
            online = self._online
        return {
            "online": online,
            "syncing": self.is_syncing,
            "status": status.value,
            "queue": self.queue.stats().to_dict(),
            "last_sync": {
                "success": last.success,
                "uploaded": last.uploaded,
                "failed": last.failed,
            }
            if last
            else None,
        }

    # Internals

    def _run_scheduled(self) -> None:
        try:
            result = self.sync()
            if result.rejected:
                logger.debug(f"Scheduled sync skipped: {result.error}")
        except Exception:
            logger.exception("Scheduled sync failed")

    def _cleanup(self) -> None:
        try:
            self.queue.remove_older_than(self.config.queue_max_age_days)
        except Exception:
            logger.exception("Queue cleanup failed")

    def _safe_count(self) -> int:
        try:
            return self.queue.count()
        except Exception:
            return 0

    def _publish(self, event: SyncEvent) -> None:
        with self._state_lock:
            self._last_status = event.status
        self.channel.publish(event)
