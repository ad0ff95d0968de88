import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Dict, Iterator, List, Optional, Sequence

from retry import retry_database_operation

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    slack_user_id TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    email TEXT,
    role TEXT NOT NULL DEFAULT 'member',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS projects (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    client_name TEXT NOT NULL,
    description TEXT,
    status TEXT NOT NULL DEFAULT 'PLANNING',
    assigned_to INTEGER REFERENCES users(id) ON DELETE SET NULL,
    deadline TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS project_updates (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    user_id INTEGER NOT NULL REFERENCES users(id),
    content TEXT NOT NULL,
    ai_analysis TEXT,
    risks_identified TEXT NOT NULL DEFAULT '[]',
    opportunities_noted TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_projects_status ON projects(status);
CREATE INDEX IF NOT EXISTS idx_updates_project ON project_updates(project_id, created_at);
"""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Database:
    """
    Owned SQLite connection. Bolt runs listeners on a thread pool, so one
    connection is shared behind a lock instead of reconnecting per call.
    """

    def __init__(
        self,
        path: str,
        *,
        clock: Callable[[], datetime] = utcnow,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        self.path = path
        self.clock = clock
        self._sleep = sleep
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    # ---- lifecycle ----

    def open(self) -> "Database":
        if self._conn is not None:
            return self

        def connect():
            conn = sqlite3.connect(self.path, check_same_thread=False)
            try:
                conn.execute("SELECT 1").fetchone()
            except sqlite3.Error:
                conn.close()
                raise
            return conn

        kwargs = {"sleep": self._sleep} if self._sleep else {}
        conn = retry_database_operation(connect, "database connection test", **kwargs)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.executescript(SCHEMA)
        conn.commit()
        self._conn = conn
        logger.info("Database connected: %s", self.path)
        return self

    def close(self) -> None:
        with self._lock:
            if self._conn is None:
                return
            logger.info("Disconnecting from database...")
            self._conn.close()
            self._conn = None
            logger.info("Database disconnected")

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def __enter__(self) -> "Database":
        return self.open()

    def __exit__(self, *exc) -> None:
        self.close()

    # ---- queries ----

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Database is not open")
        return self._conn

    def ping(self) -> bool:
        with self._lock:
            row = self._connection().execute("SELECT 1 AS health_check").fetchone()
        return bool(row and row[0] == 1)

    def now(self) -> str:
        return self.clock().isoformat()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            conn = self._connection()
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def execute(self, sql: str, params: Sequence = ()) -> sqlite3.Cursor:
        with self.transaction() as conn:
            return conn.execute(sql, params)

    def fetch_all(self, sql: str, params: Sequence = ()) -> List[sqlite3.Row]:
        with self._lock:
            return self._connection().execute(sql, params).fetchall()

    def fetch_one(self, sql: str, params: Sequence = ()) -> Optional[sqlite3.Row]:
        with self._lock:
            return self._connection().execute(sql, params).fetchone()

    def reset_all(self) -> Dict[str, int]:
        """Delete every update, project and user, in foreign key order."""
        with self.transaction() as conn:
            counts = {
                "updates": conn.execute("DELETE FROM project_updates").rowcount,
                "projects": conn.execute("DELETE FROM projects").rowcount,
                "users": conn.execute("DELETE FROM users").rowcount,
            }
        logger.info("Data reset: %s", counts)
        return counts
