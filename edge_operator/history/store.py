"""
Reconcile History Store: append-only journal of reconcile attempts.

Every reconcile call produces one ReconcileRecord, including validation
failures and attempts whose status write was lost. Queryable by object key
and recency; the admin API serves it.
"""

import sqlite3
import threading
from typing import List

from edge_operator.models.history import ReconcileRecord
from edge_operator.models.reconciler import OutcomeKind


class ReconcileHistoryStore:
    """
    Append-only reconcile journal.
    SQLite, shared across worker threads behind a lock.
    """

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self) -> None:
        """Create the history table if it doesn't exist."""
        with self._lock:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS reconcile_history (
                    id TEXT PRIMARY KEY,
                    object_key TEXT NOT NULL,
                    outcome TEXT NOT NULL,
                    failure_kind TEXT,
                    status_written INTEGER NOT NULL DEFAULT 0,
                    started_at TEXT NOT NULL,
                    record_json TEXT NOT NULL
                )
            """)
            self._conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_history_object_key
                ON reconcile_history(object_key)
            """)
            self._conn.commit()

    def append(self, record: ReconcileRecord) -> ReconcileRecord:
        """Append one attempt."""
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO reconcile_history (
                    id, object_key, outcome, failure_kind,
                    status_written, started_at, record_json
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.key,
                    record.outcome.value,
                    record.failure_kind.value if record.failure_kind else None,
                    int(record.status_written),
                    record.started_at.isoformat(),
                    record.model_dump_json(),
                ),
            )
            self._conn.commit()
        return record

    def _deserialize(self, row: sqlite3.Row) -> ReconcileRecord:
        return ReconcileRecord.model_validate_json(row["record_json"])

    def query_by_key(self, key: str, limit: int = 50) -> List[ReconcileRecord]:
        """Most recent attempts for one object, oldest first."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT record_json FROM reconcile_history WHERE object_key = ? "
                "ORDER BY rowid DESC LIMIT ?",
                (key, limit),
            ).fetchall()
        return [self._deserialize(r) for r in reversed(rows)]

    def query_recent(self, limit: int = 50) -> List[ReconcileRecord]:
        """Most recent attempts across all objects, oldest first."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT record_json FROM reconcile_history ORDER BY rowid DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [self._deserialize(r) for r in reversed(rows)]

    def failure_streak(self, key: str) -> int:
        """Number of consecutive failed attempts ending at the latest one."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT outcome FROM reconcile_history WHERE object_key = ? "
                "ORDER BY rowid DESC",
                (key,),
            ).fetchall()
        streak = 0
        for row in rows:
            if row["outcome"] != OutcomeKind.FAILED.value:
                break
            streak += 1
        return streak

    def count(self) -> int:
        """Total number of recorded attempts."""
        with self._lock:
            row = self._conn.execute(
                "SELECT COUNT(*) as cnt FROM reconcile_history"
            ).fetchone()
        return row["cnt"]

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()
