"""Durable, byte-ordered key/value storage for the frontier and id registry.

Each store is one SQLite file holding a single ``(key BLOB, value BLOB)``
table. SQLite compares BLOB keys with ``memcmp``, so cursor order is plain
unsigned-byte order, which is what the frontier key layout relies on.
"""

from __future__ import annotations

import logging
import shutil
import sqlite3
import threading
from pathlib import Path
from typing import Iterator

from .errors import StorageError

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS entries (
    key BLOB PRIMARY KEY,
    value BLOB NOT NULL
) WITHOUT ROWID
"""


def reset_folder(folder: Path) -> None:
    """Create ``folder`` and delete anything already inside it."""

    folder.mkdir(parents=True, exist_ok=True)
    for child in folder.iterdir():
        if child.is_dir():
            shutil.rmtree(child)
        else:
            child.unlink()


class OrderedStore:
    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.RLock()
        self._closed = False
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(
                str(self.path),
                check_same_thread=False,
                isolation_level=None,
            )
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA synchronous=NORMAL")
            self._conn.execute(_SCHEMA)
        except sqlite3.Error as e:
            raise StorageError(f"Could not open store {self.path}: {e}") from e

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        if self._closed:
            raise StorageError(f"Store is closed: {self.path}")
        try:
            return self._conn.execute(sql, params)
        except sqlite3.Error as e:
            raise StorageError(f"{e} ({self.path.name})") from e

    def put(self, key: bytes, value: bytes) -> None:
        with self._lock:
            self._execute(
                "INSERT OR REPLACE INTO entries (key, value) VALUES (?, ?)",
                (bytes(key), bytes(value)),
            )

    def get(self, key: bytes) -> bytes | None:
        with self._lock:
            row = self._execute(
                "SELECT value FROM entries WHERE key = ?", (bytes(key),)
            ).fetchone()
        if row is None:
            return None
        return bytes(row[0])

    def delete(self, key: bytes) -> None:
        with self._lock:
            self._execute("DELETE FROM entries WHERE key = ?", (bytes(key),))

    def first(self, n: int) -> list[tuple[bytes, bytes]]:
        """Up to ``n`` entries with the smallest keys, ascending."""
        if n <= 0:
            return []
        with self._lock:
            rows = self._execute(
                "SELECT key, value FROM entries ORDER BY key LIMIT ?", (n,)
            ).fetchall()
        return [(bytes(k), bytes(v)) for k, v in rows]

    def cursor(self) -> Iterator[tuple[bytes, bytes]]:
        """Ascending iterator over a snapshot of all entries."""
        with self._lock:
            rows = self._execute(
                "SELECT key, value FROM entries ORDER BY key"
            ).fetchall()
        for k, v in rows:
            yield bytes(k), bytes(v)

    def count(self) -> int:
        with self._lock:
            row = self._execute("SELECT COUNT(*) FROM entries").fetchone()
        return int(row[0])

    def clear(self) -> None:
        with self._lock:
            self._execute("DELETE FROM entries")

    def sync(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._execute("PRAGMA wal_checkpoint(PASSIVE)")

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            try:
                self._conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
                self._conn.close()
            except sqlite3.Error as e:
                logger.error("Error while closing store %s: %s", self.path, e)
            finally:
                self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed
