"""Status events and the observer channel that carries them."""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Union

__all__ = [
    "SyncStatus",
    "SyncEvent",
    "ProviderAttemptEvent",
    "EventChannel",
    "Subscription",
]

logger = logging.getLogger(__name__)


class SyncStatus(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class SyncEvent:
    """Progress or outcome of a sync cycle."""

    status: SyncStatus
    queue_count: int = 0
    succeeded: int = 0
    failed: int = 0
    message: Optional[str] = None


@dataclass(frozen=True)
class ProviderAttemptEvent:
    """One provider attempt finished (outcome is "success" or "failure")."""

    provider: str
    attempt: int
    outcome: str
    delay_ms: Optional[int] = None
    error: Optional[str] = None


Event = Union[SyncEvent, ProviderAttemptEvent]
Listener = Callable[[Event], None]


class Subscription:
    """Handle returned by ``EventChannel.subscribe``."""

    def __init__(self, channel: "EventChannel", listener: Listener):
        self._channel = channel
        self._listener = listener
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if self._active:
            self._channel._remove(self._listener)
            self._active = False

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.unsubscribe()


class EventChannel:
    """Thread-safe fan-out of events to subscribed callbacks.

    Listeners are invoked outside the lock, in subscription order. A listener
    that raises is logged and does not affect the publisher or other listeners.
    """

    def __init__(self):
        self._listeners: list[Listener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: Listener) -> Subscription:
        with self._lock:
            self._listeners.append(listener)
        return Subscription(self, listener)

    def _remove(self, listener: Listener) -> None:
        with self._lock:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def publish(self, event: Event) -> None:
        with self._lock:
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception(f"Event listener failed for {type(event).__name__}")
