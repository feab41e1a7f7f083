"""Connectivity monitor feeding online/offline transitions to the sync manager."""

import logging
import socket
import threading
from typing import Callable, Optional

__all__ = ["NetworkMonitor", "probe_connection"]

logger = logging.getLogger(__name__)


def probe_connection(host: str, port: int = 443, timeout: float = 5.0) -> bool:
    """True if a TCP connection to host:port can be opened."""
    try:
        socket.create_connection((host, port), timeout=timeout).close()
        return True
    except OSError:
        return False


class NetworkMonitor:
    """Polls connectivity on a daemon thread and reports changes.

    ``on_change(is_online)`` fires once with the first observed state and
    afterwards only when the state flips.
    """

    def __init__(
        self,
        on_change: Callable[[bool], None],
        host: str = "1.1.1.1",
        port: int = 443,
        interval: float = 5.0,
        probe: Optional[Callable[[], bool]] = None,
    ):
        self._on_change = on_change
        self.host = host
        self.port = port
        self.interval = interval
        self._probe = probe or (lambda: probe_connection(self.host, self.port))
        self._online: Optional[bool] = None  # None = unknown
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_online(self) -> Optional[bool]:
        return self._online

    def probe(self) -> bool:
        """Probe once without touching state or callbacks."""
        return self._probe()

    def check(self) -> bool:
        """Probe once and fire the callback if the state changed."""
        online = self._probe()
        if online != self._online:
            previous = self._online
            self._online = online
            if previous is not None:
                logger.info(f"Network change detected: {'online' if online else 'offline'}")
            _safe_call(self._on_change, online)
        return online

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="network-monitor", daemon=True)
        self._thread.start()
        logger.debug(f"Network monitor started (interval: {self.interval}s)")

    def _run(self) -> None:
        while not self._stop.is_set():
            self.check()
            self._stop.wait(self.interval)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None


def _safe_call(fn: Callable, *args) -> None:
    """Call a function, catching and logging any exceptions."""
    try:
        fn(*args)
    except Exception:
        logger.exception(f"Error in network callback {getattr(fn, '__name__', fn)}")
