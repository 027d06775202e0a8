"""SQLite storage adapter.

Implements the core CachePort and QueuePort using a simple SQLite database.
Errors from sqlite3 are not caught; they abort the caller's operation.
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from govcast.core.errors import CacheCorruptionError
from govcast.core.models import Task, TaskPayload

PENDING = "pending"
COMPLETED = "completed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the CachePort and QueuePort contracts."""

    def __init__(self, db_path: str, clock: Callable[[], datetime] = _utcnow) -> None:
        self._db_path = db_path
        self._clock = clock

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - cache: JSON values with a write timestamp for freshness checks
        - queue: notification tasks with status and enqueue order
        """

        with self._connect() as conn:
            # cache keeps exactly one row per key; writes overwrite the row.
            # Fields:
            # - key: cache key (PRIMARY KEY)
            # - value: JSON-serialized value
            # - timestamp: UTC time of the last write, ISO-8601
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS cache (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    timestamp TIMESTAMP NOT NULL
                )
                """
            )
            # queue is consumed oldest-first; seq breaks ties between tasks
            # enqueued within the same clock tick.
            # Fields:
            # - seq: insertion order
            # - task_id: unique task id (uuid4 hex)
            # - data: JSON payload tagged with its type
            # - status: pending or completed
            # - timestamp: enqueue time, ISO-8601
            # - completed_at: completion time, ISO-8601
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS queue (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    task_id TEXT NOT NULL UNIQUE,
                    data TEXT NOT NULL,
                    status TEXT NOT NULL,
                    timestamp TIMESTAMP NOT NULL,
                    completed_at TIMESTAMP
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS queue_status_timestamp ON queue (status, timestamp)"
            )

    def get(self, key: str, max_age: float) -> Optional[Any]:
        """Return the cached value if present and younger than ``max_age`` seconds.

        Stale entries are deleted as a side effect of the read.
        """

        with self._connect() as conn:
            row = conn.execute(
                "SELECT value, timestamp FROM cache WHERE key = ?",
                (key,),
            ).fetchone()
            if row is None:
                return None

            age = (self._clock() - datetime.fromisoformat(row["timestamp"])).total_seconds()
            if age >= max_age:
                conn.execute("DELETE FROM cache WHERE key = ?", (key,))
                return None

        try:
            return json.loads(row["value"])
        except json.JSONDecodeError as exc:
            raise CacheCorruptionError(f"Malformed cache value for {key}") from exc

    def set(self, key: str, value: Any) -> None:
        """Upsert the value for ``key`` and reset its timestamp."""

        payload = json.dumps(value)
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO cache (key, value, timestamp)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, timestamp = excluded.timestamp
                """,
                (key, payload, self._clock().isoformat()),
            )

    def enqueue(self, payload: TaskPayload) -> str:
        """Persist a new pending task and return its id."""

        task_id = uuid.uuid4().hex
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO queue (task_id, data, status, timestamp)
                VALUES (?, ?, ?, ?)
                """,
                (task_id, json.dumps(payload.to_dict()), PENDING, self._clock().isoformat()),
            )
        return task_id

    def pending(self, limit: Optional[int] = None) -> list[Task]:
        """Return pending tasks, oldest first."""

        query = "SELECT * FROM queue WHERE status = ? ORDER BY timestamp ASC, seq ASC"
        params: tuple[Any, ...] = (PENDING,)
        if limit is not None:
            query += " LIMIT ?"
            params = (PENDING, limit)
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._task_from_row(row) for row in rows]

    def complete(self, task_id: str) -> None:
        """Mark a task as completed."""

        with self._connect() as conn:
            conn.execute(
                "UPDATE queue SET status = ?, completed_at = ? WHERE task_id = ?",
                (COMPLETED, self._clock().isoformat(), task_id),
            )

    def get_task(self, task_id: str) -> Optional[Task]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM queue WHERE task_id = ?", (task_id,)).fetchone()
        return self._task_from_row(row) if row else None

    def count_tasks(self, status: str) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) AS total FROM queue WHERE status = ?", (status,)).fetchone()
        return int(row["total"])

    @staticmethod
    def _task_from_row(row: sqlite3.Row) -> Task:
        completed_at = row["completed_at"]
        return Task(
            task_id=row["task_id"],
            data=row["data"],
            status=row["status"],
            enqueued_at=datetime.fromisoformat(row["timestamp"]),
            completed_at=datetime.fromisoformat(completed_at) if completed_at else None,
        )
