"""Sync module - offline queue and its network-aware drain."""

from .queue import QueueStore, QueueItem, QueueStats
from .events import EventChannel, ProviderAttemptEvent, Subscription, SyncEvent, SyncStatus
from .protocols import AnalysisRecord, AnalyzeBoundary, QueueStoreProtocol, UploadBoundary, UploadResult
from .api_client import MelonApiClient
from .sync_manager import SyncManager, SyncResult

__all__ = [
    "QueueStore",
    "QueueItem",
    "QueueStats",
    "EventChannel",
    "ProviderAttemptEvent",
    "Subscription",
    "SyncEvent",
    "SyncStatus",
    "AnalysisRecord",
    "AnalyzeBoundary",
    "QueueStoreProtocol",
    "UploadBoundary",
    "UploadResult",
    "MelonApiClient",
    "SyncManager",
    "SyncResult",
]
