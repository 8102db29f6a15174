"""Local key-value state for the upload client.

This module provides:
- LocalState: SQLite-backed string-keyed blob storage

Architecture:
    The queue, the upload history and the contacts cache are each stored as
    one JSON blob under their own key. Every mutation rewrites the whole blob,
    which is fine for the small collections involved. Stores re-read the
    blob inside transaction() before writing it back, so a `send` in one
    process and a running engine in another never overwrite each other.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

QUEUE_KEY = "upload_queue"
HISTORY_KEY = "upload_history"
CONTACTS_KEY = "contacts"

DEFAULT_BUSY_TIMEOUT = 10.0  # seconds to wait for another process's write lock


class LocalState:
    """SQLite-based key-value state.

    Use ":memory:" as db_path for a throwaway store (tests).
    """

    def __init__(self, db_path: Path | str) -> None:
        """Initialize local state database.

        Args:
            db_path: Path to SQLite database file.
        """
        self._db_path = str(db_path)
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

        # Lock for thread-safe database access
        self._lock = threading.RLock()
        self._tx_depth = 0

        self._conn = sqlite3.connect(
            self._db_path,
            check_same_thread=False,
            timeout=DEFAULT_BUSY_TIMEOUT,
            isolation_level=None,  # Autocommit mode
        )
        self._conn.row_factory = sqlite3.Row

        if self._db_path != ":memory:":
            # WAL survives a crash between writes
            self._conn.execute("PRAGMA journal_mode=WAL")

        self._create_tables()

    def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS kv_state (
                key TEXT PRIMARY KEY,
                value TEXT
            );
        """)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()

    def get_state(self, key: str) -> str | None:
        """Get a raw value."""
        with self._lock:
            cursor = self._conn.execute(
                "SELECT value FROM kv_state WHERE key = ?",
                (key,),
            )
            row = cursor.fetchone()
        return row["value"] if row else None

    def set_state(self, key: str, value: str) -> None:
        """Set a raw value."""
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO kv_state (key, value) VALUES (?, ?)",
                (key, value),
            )

    def delete_state(self, key: str) -> None:
        """Remove a key."""
        with self._lock:
            self._conn.execute("DELETE FROM kv_state WHERE key = ?", (key,))

    def load_records(self, key: str) -> list[dict[str, Any]]:
        """Load a JSON array of records.

        A missing key yields an empty list. A corrupt blob is logged and
        also treated as empty so the host keeps running.
        """
        raw = self.get_state(key)
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except ValueError:
            logger.error("Corrupt %s blob, starting empty", key)
            return []
        if not isinstance(data, list):
            logger.error("Unexpected %s blob type %s, starting empty", key, type(data).__name__)
            return []
        return [record for record in data if isinstance(record, dict)]

    def save_records(self, key: str, records: list[dict[str, Any]]) -> None:
        """Persist a JSON array of records, replacing the previous blob."""
        self.set_state(key, json.dumps(records))

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Hold the database write lock for a read-modify-write.

        Opens ``BEGIN IMMEDIATE`` so no other connection, in this process or
        another, can write between our read and our write. Nested use joins
        the outer transaction. Any exception rolls the whole block back.
        """
        with self._lock:
            if self._tx_depth:
                self._tx_depth += 1
                try:
                    yield
                finally:
                    self._tx_depth -= 1
                return

            self._conn.execute("BEGIN IMMEDIATE")
            self._tx_depth = 1
            try:
                yield
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            else:
                self._conn.execute("COMMIT")
            finally:
                self._tx_depth = 0
