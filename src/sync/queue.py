"""Offline queue for captures taken while the device has no connection."""

from __future__ import annotations

import base64
import json
import logging
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator, Optional

from ..config import Config
from ..errors import InvalidTransitionError, SchemaVersionError

__all__ = [
    "QueueStore",
    "QueueItem",
    "QueueStats",
    "STATUS_PENDING",
    "STATUS_UPLOADING",
    "STATUS_FAILED",
    "QUEUE_STATUSES",
    "SCHEMA_VERSION",
]

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_UPLOADING = "uploading"
STATUS_FAILED = "failed"
QUEUE_STATUSES = (STATUS_PENDING, STATUS_UPLOADING, STATUS_FAILED)

# Target status -> statuses it may be entered from
_ALLOWED_FROM = {
    STATUS_UPLOADING: (STATUS_PENDING, STATUS_FAILED),
    STATUS_FAILED: (STATUS_UPLOADING,),
    STATUS_PENDING: (STATUS_FAILED,),
}

SCHEMA_VERSION = 1

_MIGRATIONS = {
    1: [
        """
        CREATE TABLE IF NOT EXISTS queue_items (
            id TEXT PRIMARY KEY,
            image BLOB NOT NULL,
            owner_id TEXT NOT NULL,
            metadata TEXT,
            captured_at TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending',
            retry_count INTEGER NOT NULL DEFAULT 0,
            last_error TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_queue_captured_at ON queue_items(captured_at)",
        "CREATE INDEX IF NOT EXISTS idx_queue_status ON queue_items(status)",
        "CREATE INDEX IF NOT EXISTS idx_queue_created_at ON queue_items(created_at)",
    ],
}

_COLUMNS = (
    "id, image, owner_id, metadata, captured_at, status, "
    "retry_count, last_error, created_at, updated_at"
)


def _to_iso(value: datetime) -> str:
    """Fixed-width UTC ISO string so text ordering matches time ordering."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class QueueItem:
    """A capture waiting to be uploaded and analyzed."""

    id: str
    image: bytes
    owner_id: str
    captured_at: datetime
    status: str = STATUS_PENDING
    retry_count: int = 0
    metadata: Optional[dict] = None
    last_error: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "QueueItem":
        """Create from database row."""
        return cls(
            id=row["id"],
            image=bytes(row["image"]),
            owner_id=row["owner_id"],
            metadata=json.loads(row["metadata"]) if row["metadata"] else None,
            captured_at=datetime.fromisoformat(row["captured_at"]),
            status=row["status"],
            retry_count=row["retry_count"],
            last_error=row["last_error"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )


@dataclass
class QueueStats:
    """Aggregate view of the queue."""

    total: int = 0
    pending: int = 0
    uploading: int = 0
    failed: int = 0
    oldest: Optional[datetime] = None
    newest: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "pending": self.pending,
            "uploading": self.uploading,
            "failed": self.failed,
            "oldest": self.oldest.isoformat() if self.oldest else None,
            "newest": self.newest.isoformat() if self.newest else None,
        }


class QueueStore:
    """SQLite-based durable queue of pending captures.

    Pure persistence: no network calls and no retry policy. Status changes
    are single UPDATE statements so concurrent writers never increment
    ``retry_count`` from the same stale value.
    """

    def __init__(self, db_path: Optional[Path] = None):
        """Initialize the queue store.

        Args:
            db_path: Path to SQLite database file
        """
        if db_path is None:
            db_path = Config.get_data_dir() / "offline_queue.db"

        self.db_path = db_path
        self._local = threading.local()
        self._connections: list[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()
        # Bumped by close(); thread-local connections from an older generation are stale
        self._generation = 0
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        conn = getattr(self._local, "connection", None)
        if conn is None or self._local.generation != self._generation:
            conn = sqlite3.connect(str(self.db_path), timeout=10, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            with self._connections_lock:
                self._connections.append(conn)
                self._local.generation = self._generation
            self._local.connection = conn
        return conn

    @contextmanager
    def _cursor(self) -> Iterator[sqlite3.Cursor]:
        """Context manager for database cursor."""
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
        """Create or migrate the database schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._cursor() as cursor:
            cursor.execute("PRAGMA user_version")
            current = cursor.fetchone()[0]
            if current > SCHEMA_VERSION:
                raise SchemaVersionError(
                    f"Queue database {self.db_path} has schema v{current}, "
                    f"this build supports up to v{SCHEMA_VERSION}"
                )
            for version in range(current + 1, SCHEMA_VERSION + 1):
                for statement in _MIGRATIONS[version]:
                    cursor.execute(statement)
                # PRAGMA does not accept bound parameters
                cursor.execute(f"PRAGMA user_version = {int(version)}")
                logger.info(f"Queue database migrated to schema v{version}")

    def add(
        self,
        image: bytes,
        owner_id: str,
        captured_at: Optional[datetime] = None,
        metadata: Optional[dict] = None,
    ) -> str:
        """Add a capture to the queue.

        Args:
            image: Raw image bytes
            owner_id: User who captured the image
            captured_at: Capture time (defaults to now)
            metadata: Optional small map (location, batch id, device info)

        Returns:
            Generated item id
        """
        item_id = uuid.uuid4().hex
        now = _to_iso(_utcnow())
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO queue_items
                    (id, image, owner_id, metadata, captured_at, status,
                     retry_count, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, 0, ?, ?)
                """,
                (
                    item_id,
                    sqlite3.Binary(image),
                    owner_id,
                    json.dumps(metadata) if metadata else None,
                    _to_iso(captured_at or _utcnow()),
                    STATUS_PENDING,
                    now,
                    now,
                ),
            )
        logger.debug(f"Queued capture {item_id} for {owner_id}")
        return item_id

    def get(self, item_id: str) -> Optional[QueueItem]:
        """Get a single item, or None if it is not in the queue."""
        with self._cursor() as cursor:
            cursor.execute(f"SELECT {_COLUMNS} FROM queue_items WHERE id = ?", (item_id,))
            row = cursor.fetchone()
            return QueueItem.from_row(row) if row else None

    def list(self) -> list[QueueItem]:
        """All items, oldest capture first."""
        with self._cursor() as cursor:
            cursor.execute(
                f"SELECT {_COLUMNS} FROM queue_items ORDER BY captured_at ASC, rowid ASC"
            )
            return [QueueItem.from_row(row) for row in cursor.fetchall()]

    def list_by_status(self, status: str) -> list[QueueItem]:
        """Items with the given status, oldest capture first."""
        self._check_status(status)
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                SELECT {_COLUMNS} FROM queue_items
                WHERE status = ?
                ORDER BY captured_at ASC, rowid ASC
                """,
                (status,),
            )
            return [QueueItem.from_row(row) for row in cursor.fetchall()]

    def list_retryable(self, max_retries: int) -> list[QueueItem]:
        """Failed items that have not reached the retry ceiling, oldest first."""
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                SELECT {_COLUMNS} FROM queue_items
                WHERE status = ? AND retry_count < ?
                ORDER BY captured_at ASC, rowid ASC
                """,
                (STATUS_FAILED, max_retries),
            )
            return [QueueItem.from_row(row) for row in cursor.fetchall()]

    def count(self, status: Optional[str] = None) -> int:
        """Number of items, optionally filtered by status."""
        with self._cursor() as cursor:
            if status is None:
                cursor.execute("SELECT COUNT(*) FROM queue_items")
            else:
                self._check_status(status)
                cursor.execute("SELECT COUNT(*) FROM queue_items WHERE status = ?", (status,))
            return cursor.fetchone()[0]

    def is_empty(self) -> bool:
        """Check if queue is empty."""
        return self.count() == 0

    def update_status(self, item_id: str, status: str, error: Optional[str] = None) -> bool:
        """Move an item to a new status.

        A transition into ``failed`` increments ``retry_count`` and records
        ``last_error`` in the same statement. ``updated_at`` always refreshes.

        Args:
            item_id: Queue item id
            status: New status
            error: Error message (kept as last_error)

        Returns:
            True if the item was updated, False if it no longer exists

        Raises:
            InvalidTransitionError: If the item's current status cannot move to ``status``
        """
        self._check_status(status)
        allowed = _ALLOWED_FROM[status]
        placeholders = ",".join("?" * len(allowed))
        increment = 1 if status == STATUS_FAILED else 0

        with self._cursor() as cursor:
            cursor.execute(
                f"""
                UPDATE queue_items
                SET status = ?,
                    retry_count = retry_count + ?,
                    last_error = COALESCE(?, last_error),
                    updated_at = ?
                WHERE id = ? AND status IN ({placeholders})
                """,
                (status, increment, error, _to_iso(_utcnow()), item_id, *allowed),
            )
            if cursor.rowcount:
                return True

            cursor.execute("SELECT status FROM queue_items WHERE id = ?", (item_id,))
            row = cursor.fetchone()

        if row is None:
            logger.debug(f"Status update for missing item {item_id} ignored")
            return False
        raise InvalidTransitionError(
            f"Queue item {item_id} cannot move from {row['status']} to {status}"
        )

    def remove(self, item_id: str) -> bool:
        """Remove one item. Returns True if it existed."""
        with self._cursor() as cursor:
            cursor.execute("DELETE FROM queue_items WHERE id = ?", (item_id,))
            return cursor.rowcount > 0

    def remove_many(self, item_ids: list[str]) -> int:
        """Remove items by id.

        Args:
            item_ids: List of item IDs to remove

        Returns:
            Number of items removed
        """
        if not item_ids:
            return 0

        with self._cursor() as cursor:
            placeholders = ",".join("?" * len(item_ids))
            cursor.execute(
                f"DELETE FROM queue_items WHERE id IN ({placeholders})",
                item_ids,
            )
            return cursor.rowcount

    def clear(self) -> int:
        """Clear all items from the queue."""
        with self._cursor() as cursor:
            cursor.execute("DELETE FROM queue_items")
            count = cursor.rowcount
        if count:
            logger.warning(f"Cleared {count} items from the offline queue")
        return count

    def reset_failed(self, max_retries: Optional[int] = None) -> int:
        """Move failed items back to pending.

        Args:
            max_retries: If given, only items with retry_count below it are reset

        Returns:
            Number of items reset
        """
        with self._cursor() as cursor:
            if max_retries is None:
                cursor.execute(
                    "UPDATE queue_items SET status = ?, updated_at = ? WHERE status = ?",
                    (STATUS_PENDING, _to_iso(_utcnow()), STATUS_FAILED),
                )
            else:
                cursor.execute(
                    """
                    UPDATE queue_items SET status = ?, updated_at = ?
                    WHERE status = ? AND retry_count < ?
                    """,
                    (STATUS_PENDING, _to_iso(_utcnow()), STATUS_FAILED, max_retries),
                )
            return cursor.rowcount

    def recover_interrupted(self) -> int:
        """Return items left in ``uploading`` by a crash to ``pending``."""
        with self._cursor() as cursor:
            cursor.execute(
                "UPDATE queue_items SET status = ?, updated_at = ? WHERE status = ?",
                (STATUS_PENDING, _to_iso(_utcnow()), STATUS_UPLOADING),
            )
            count = cursor.rowcount
        if count:
            logger.warning(f"Recovered {count} interrupted uploads")
        return count

    def remove_older_than(self, days: int = 7) -> int:
        """Remove items created more than ``days`` ago.

        Args:
            days: Maximum age in days

        Returns:
            Number of items removed
        """
        cutoff = _to_iso(_utcnow() - timedelta(days=days))
        with self._cursor() as cursor:
            cursor.execute("DELETE FROM queue_items WHERE created_at < ?", (cutoff,))
            count = cursor.rowcount
        if count:
            logger.info(f"Expired {count} queue items older than {days} days")
        return count

    def stats(self) -> QueueStats:
        """Per-status counts plus oldest/newest capture time."""
        with self._cursor() as cursor:
            cursor.execute("SELECT status, COUNT(*) FROM queue_items GROUP BY status")
            counts = {row[0]: row[1] for row in cursor.fetchall()}
            cursor.execute("SELECT MIN(captured_at), MAX(captured_at) FROM queue_items")
            oldest, newest = cursor.fetchone()

        return QueueStats(
            total=sum(counts.values()),
            pending=counts.get(STATUS_PENDING, 0),
            uploading=counts.get(STATUS_UPLOADING, 0),
            failed=counts.get(STATUS_FAILED, 0),
            oldest=datetime.fromisoformat(oldest) if oldest else None,
            newest=datetime.fromisoformat(newest) if newest else None,
        )

    def export_json(self) -> str:
        """Dump the queue as JSON with base64 images (debugging / backup)."""
        items = []
        for item in self.list():
            items.append(
                {
                    "id": item.id,
                    "image": base64.b64encode(item.image).decode("ascii"),
                    "owner_id": item.owner_id,
                    "metadata": item.metadata,
                    "captured_at": item.captured_at.isoformat(),
                    "status": item.status,
                    "retry_count": item.retry_count,
                    "last_error": item.last_error,
                    "created_at": item.created_at.isoformat() if item.created_at else None,
                    "updated_at": item.updated_at.isoformat() if item.updated_at else None,
                }
            )
        return json.dumps(items, indent=2)

    def check_health(self) -> bool:
        """True if the database answers queries."""
        try:
            self.count()
            return True
        except sqlite3.Error as e:
            logger.error(f"Queue database health check failed: {e}")
            return False

    @staticmethod
    def _check_status(status: str) -> None:
        if status not in QUEUE_STATUSES:
            raise ValueError(f"Unknown queue status: {status!r}")

    def close(self) -> None:
        """Close every connection opened by this store.

        Threads that call the store again afterwards get a fresh connection.
        """
        with self._connections_lock:
            for conn in self._connections:
                try:
                    conn.close()
                except sqlite3.Error as e:
                    logger.debug(f"Error closing queue connection: {e}")
            self._connections.clear()
            self._generation += 1
        if hasattr(self._local, "connection"):
            del self._local.connection
