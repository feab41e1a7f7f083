"""Durable log of provider attempts and the statistics built on it."""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator, Optional, Protocol, runtime_checkable

from ..config import Config
from .models import PerformanceRecord

__all__ = [
    "PerformanceRecorder",
    "SqlitePerformanceLog",
    "ProviderStats",
    "SystemMetrics",
    "TIME_RANGES",
]

logger = logging.getLogger(__name__)

TIME_RANGES = {
    "1h": timedelta(hours=1),
    "24h": timedelta(days=1),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}


@runtime_checkable
class PerformanceRecorder(Protocol):
    """Anything that accepts one record per provider attempt."""

    def record(self, record: PerformanceRecord) -> None: ...


@dataclass
class ProviderStats:
    provider: str
    total_requests: int
    success_rate: float
    avg_response_time_ms: float

    def to_dict(self) -> dict:
        return {
            "provider": self.provider,
            "total_requests": self.total_requests,
            "success_rate": round(self.success_rate, 1),
            "avg_response_time_ms": round(self.avg_response_time_ms, 1),
        }


@dataclass
class SystemMetrics:
    """Aggregates over a time window, for a monitoring view."""

    total_analyses: int = 0
    success_rate: float = 0.0
    average_response_time_ms: float = 0.0
    error_count: int = 0
    providers: list[ProviderStats] = field(default_factory=list)


def _aggregate(rows) -> list[ProviderStats]:
    totals: dict[str, list] = {}
    for provider, elapsed_ms, success in rows:
        entry = totals.setdefault(provider, [0, 0, 0])
        entry[0] += 1
        entry[1] += 1 if success else 0
        entry[2] += elapsed_ms or 0
    return [
        ProviderStats(
            provider=provider,
            total_requests=total,
            success_rate=successes / total * 100,
            avg_response_time_ms=elapsed / total,
        )
        for provider, (total, successes, elapsed) in totals.items()
    ]


class SqlitePerformanceLog:
    """Append-only SQLite table of PerformanceRecords."""

    def __init__(self, db_path: Optional[Path] = None):
        if db_path is None:
            db_path = Config.get_data_dir() / "telemetry.db"
        self.db_path = db_path
        self._local = threading.local()
        self._connections: list[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()
        self._generation = 0
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        # Records are written from the orchestrator's telemetry thread
        conn = getattr(self._local, "connection", None)
        if conn is None or self._local.generation != self._generation:
            conn = sqlite3.connect(str(self.db_path), timeout=10, check_same_thread=False)
            with self._connections_lock:
                self._connections.append(conn)
                self._local.generation = self._generation
            self._local.connection = conn
        return conn

    @contextmanager
    def _cursor(self) -> Iterator[sqlite3.Cursor]:
        conn = self._get_connection()
        cursor = conn.cursor()
        try:
            yield cursor
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()

    def _init_db(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._cursor() as cursor:
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS performance_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    provider TEXT NOT NULL,
                    elapsed_ms INTEGER NOT NULL,
                    success INTEGER NOT NULL,
                    prompt_tokens INTEGER,
                    completion_tokens INTEGER,
                    error_message TEXT,
                    recorded_at TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_perf_recorded_at ON performance_log(recorded_at)"
            )

    def record(self, record: PerformanceRecord) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO performance_log
                    (provider, elapsed_ms, success, prompt_tokens,
                     completion_tokens, error_message, recorded_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.provider,
                    record.elapsed_ms,
                    1 if record.success else 0,
                    record.prompt_tokens,
                    record.completion_tokens,
                    record.error_message,
                    record.recorded_at.astimezone(timezone.utc).isoformat(timespec="microseconds"),
                ),
            )
        logger.debug(
            f"Logged performance: {record.provider} - {record.elapsed_ms}ms - "
            f"{'success' if record.success else 'failed'}"
        )

    def count(self) -> int:
        with self._cursor() as cursor:
            cursor.execute("SELECT COUNT(*) FROM performance_log")
            return cursor.fetchone()[0]

    def recent(self, limit: int = 100) -> list[PerformanceRecord]:
        """Most recent records first."""
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT provider, elapsed_ms, success, prompt_tokens,
                       completion_tokens, error_message, recorded_at
                FROM performance_log ORDER BY id DESC LIMIT ?
                """,
                (limit,),
            )
            return [
                PerformanceRecord(
                    provider=row[0],
                    elapsed_ms=row[1],
                    success=bool(row[2]),
                    prompt_tokens=row[3],
                    completion_tokens=row[4],
                    error_message=row[5],
                    recorded_at=datetime.fromisoformat(row[6]),
                )
                for row in cursor.fetchall()
            ]

    def provider_statistics(self, limit: int = 100) -> list[ProviderStats]:
        """Per-provider totals over the last ``limit`` attempts."""
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT provider, elapsed_ms, success FROM performance_log
                ORDER BY id DESC LIMIT ?
                """,
                (limit,),
            )
            return _aggregate(cursor.fetchall())

    def system_metrics(self, time_range: str = "24h") -> SystemMetrics:
        """Aggregates for attempts recorded within ``time_range`` (1h, 24h, 7d, 30d)."""
        if time_range not in TIME_RANGES:
            raise ValueError(f"Unknown time range: {time_range!r}")
        since = datetime.now(timezone.utc) - TIME_RANGES[time_range]

        with self._cursor() as cursor:
            cursor.execute(
                "SELECT provider, elapsed_ms, success FROM performance_log WHERE recorded_at >= ?",
                (since.isoformat(timespec="microseconds"),),
            )
            rows = cursor.fetchall()

        total = len(rows)
        if not total:
            return SystemMetrics()
        successes = sum(1 for row in rows if row[2])
        return SystemMetrics(
            total_analyses=total,
            success_rate=successes / total * 100,
            average_response_time_ms=sum(row[1] or 0 for row in rows) / total,
            error_count=total - successes,
            providers=_aggregate(rows),
        )

    def close(self) -> None:
        with self._connections_lock:
            for conn in self._connections:
                conn.close()
            self._connections.clear()
            self._generation += 1
        if hasattr(self._local, "connection"):
            del self._local.connection
