"""Local store of completed analyses."""

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from ..config import Config
from ..sync.protocols import AnalysisRecord

__all__ = ["AnalysisHistory"]

logger = logging.getLogger(__name__)


class AnalysisHistory:
    """SQLite table of analysis results, newest first per owner."""

    def __init__(self, db_path: Optional[Path] = None):
        if db_path is None:
            db_path = Config.get_data_dir() / "history.db"
        self.db_path = db_path
        self._local = threading.local()
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        if not hasattr(self._local, "connection"):
            self._local.connection = sqlite3.connect(str(self.db_path), timeout=10)
            self._local.connection.row_factory = sqlite3.Row
        return self._local.connection

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
                CREATE TABLE IF NOT EXISTS analyses (
                    id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    image_url TEXT NOT NULL,
                    analysis TEXT NOT NULL,
                    provider TEXT NOT NULL,
                    response_time_ms INTEGER NOT NULL,
                    metadata TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_analyses_owner ON analyses(owner_id, created_at)"
            )

    def save(self, record: AnalysisRecord) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO analyses
                    (id, owner_id, image_url, analysis, provider,
                     response_time_ms, metadata, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.owner_id,
                    record.image_url,
                    json.dumps(record.analysis),
                    record.provider,
                    record.response_time_ms,
                    json.dumps(record.metadata) if record.metadata else None,
                    record.created_at.astimezone(timezone.utc).isoformat(timespec="microseconds"),
                ),
            )
        logger.debug(f"Saved analysis {record.id} for {record.owner_id}")

    @staticmethod
    def _from_row(row: sqlite3.Row) -> AnalysisRecord:
        return AnalysisRecord(
            id=row["id"],
            image_url=row["image_url"],
            owner_id=row["owner_id"],
            analysis=json.loads(row["analysis"]),
            provider=row["provider"],
            response_time_ms=row["response_time_ms"],
            metadata=json.loads(row["metadata"]) if row["metadata"] else None,
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def get(self, record_id: str) -> Optional[AnalysisRecord]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM analyses WHERE id = ?", (record_id,))
            row = cursor.fetchone()
            return self._from_row(row) if row else None

    def list_for_owner(self, owner_id: str, limit: int = 50) -> list[AnalysisRecord]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT * FROM analyses WHERE owner_id = ?
                ORDER BY created_at DESC LIMIT ?
                """,
                (owner_id, limit),
            )
            return [self._from_row(row) for row in cursor.fetchall()]

    def close(self) -> None:
        if hasattr(self._local, "connection"):
            self._local.connection.close()
            del self._local.connection
