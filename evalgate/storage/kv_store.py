"""SQLite implementation of the durable key-value store."""

import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from evalgate.errors import PersistenceError
from evalgate.storage.interface import KeyValueStoreInterface

logger = logging.getLogger(__name__)


class KeyValueStoreSQLite(KeyValueStoreInterface):
    """
    SQLite backend for the key-value store.

    One connection shared by all threads, serialized with a lock. Writes run
    in explicit ``BEGIN IMMEDIATE`` transactions so compare-and-put is atomic
    across processes sharing the same file.
    """

    def __init__(self, db_path: str | Path):
        """
        Initialize key-value store.

        Args:
            db_path: Path to SQLite database file, or ":memory:"
        """
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.RLock()
        try:
            self.conn = sqlite3.connect(
                self.db_path, check_same_thread=False, isolation_level=None
            )
            self.conn.row_factory = sqlite3.Row
            if self.db_path != ":memory:":
                self.conn.execute("PRAGMA journal_mode=WAL")
            self.conn.execute("PRAGMA synchronous=FULL")
            self._create_tables()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to open state database {self.db_path}: {e}") from e

    def _create_tables(self) -> None:
        """Create key-value table if it doesn't exist."""
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS kv (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )

    def put(self, key: str, value: str) -> None:
        with self._lock:
            try:
                self.conn.execute("BEGIN IMMEDIATE")
                self.conn.execute(
                    "INSERT OR REPLACE INTO kv (key, value, updated_at) VALUES (?, ?, ?)",
                    (key, value, datetime.now().isoformat()),
                )
                self.conn.execute("COMMIT")
            except sqlite3.Error as e:
                self._rollback_quietly()
                raise PersistenceError(f"Failed to write '{key}': {e}") from e

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            try:
                row = self.conn.execute(
                    "SELECT value FROM kv WHERE key = ?", (key,)
                ).fetchone()
            except sqlite3.Error as e:
                raise PersistenceError(f"Failed to read '{key}': {e}") from e
        return row["value"] if row else None

    def delete(self, key: str) -> None:
        with self._lock:
            try:
                self.conn.execute("BEGIN IMMEDIATE")
                self.conn.execute("DELETE FROM kv WHERE key = ?", (key,))
                self.conn.execute("COMMIT")
            except sqlite3.Error as e:
                self._rollback_quietly()
                raise PersistenceError(f"Failed to delete '{key}': {e}") from e

    def keys(self, prefix: str = "") -> List[str]:
        # Exact, case-sensitive prefix match (LIKE folds ASCII case)
        with self._lock:
            try:
                rows = self.conn.execute(
                    "SELECT key FROM kv WHERE substr(key, 1, ?) = ? ORDER BY key",
                    (len(prefix), prefix),
                ).fetchall()
            except sqlite3.Error as e:
                raise PersistenceError(f"Failed to list keys '{prefix}': {e}") from e
        return [row["key"] for row in rows]

    def compare_and_put(self, key: str, expected: Optional[str], value: str) -> bool:
        with self._lock:
            try:
                self.conn.execute("BEGIN IMMEDIATE")
                row = self.conn.execute(
                    "SELECT value FROM kv WHERE key = ?", (key,)
                ).fetchone()
                current = row["value"] if row else None
                if current != expected:
                    self.conn.execute("ROLLBACK")
                    return False
                self.conn.execute(
                    "INSERT OR REPLACE INTO kv (key, value, updated_at) VALUES (?, ?, ?)",
                    (key, value, datetime.now().isoformat()),
                )
                self.conn.execute("COMMIT")
                return True
            except sqlite3.Error as e:
                self._rollback_quietly()
                raise PersistenceError(f"Failed to compare-and-put '{key}': {e}") from e

    def _rollback_quietly(self) -> None:
        try:
            if self.conn.in_transaction:
                self.conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            logger.error(f"Rollback failed on {self.db_path}: {e}")

    def close(self) -> None:
        with self._lock:
            self.conn.close()
