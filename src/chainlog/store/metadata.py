"""
SQLite-backed metadata store.

Holds the string-typed key/value pairs the signer depends on (``secret``,
``serial``, ``challenge``, ``initial_sync``) plus notification bookkeeping
(``last_alert:<kind>``), and shares its connection with the domain
projection tables so a projection update and its reads see one consistent
database.

Transactions are explicit: the connection runs in autocommit mode and
``transaction()`` issues ``BEGIN IMMEDIATE`` so the write lock is taken up
front. A single re-entrant lock guards the connection; it is safe to use
from ``asyncio.to_thread`` workers.
"""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

KEY_SECRET = "secret"
KEY_SERIAL = "serial"
KEY_CHALLENGE = "challenge"
KEY_INITIAL_SYNC = "initial_sync"
ALERT_KEY_PREFIX = "last_alert:"

_SCHEMA = (
    "CREATE TABLE IF NOT EXISTS metadata ("
    " key TEXT PRIMARY KEY,"
    " value TEXT NOT NULL)",
    "CREATE TABLE IF NOT EXISTS users ("
    " uuid TEXT PRIMARY KEY,"
    " login TEXT,"
    " userpassword TEXT,"
    " email TEXT,"
    " status TEXT,"
    " operator INTEGER NOT NULL DEFAULT 0,"
    " reader INTEGER NOT NULL DEFAULT 0)",
    "CREATE TABLE IF NOT EXISTS keys ("
    " uuid TEXT NOT NULL,"
    " fingerprint TEXT NOT NULL,"
    " name TEXT,"
    " comment TEXT,"
    " PRIMARY KEY (uuid, fingerprint))",
)


class MetadataStore:
    """Key/value metadata over a single SQLite connection."""

    def __init__(self, path: str | Path) -> None:
        self._path = str(path)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(
            self._path, check_same_thread=False, isolation_level=None
        )
        self._conn.row_factory = sqlite3.Row
        self._in_tx = False
        with self._lock:
            for stmt in _SCHEMA:
                self._conn.execute(stmt)

    @property
    def path(self) -> str:
        return self._path

    @contextmanager
    def transaction(self) -> Iterator[MetadataStore]:
        """All-or-nothing unit of work; rolls back on any exception."""
        with self._lock:
            if self._in_tx:
                raise RuntimeError("nested transactions are not supported")
            self._conn.execute("BEGIN IMMEDIATE")
            self._in_tx = True
            try:
                yield self
            except BaseException:
                self._in_tx = False
                self._conn.execute("ROLLBACK")
                raise
            self._in_tx = False
            self._conn.execute("COMMIT")

    @property
    def in_transaction(self) -> bool:
        return self._in_tx

    def get(self, key: str) -> str | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT value FROM metadata WHERE key = ?", (key,)
            ).fetchone()
        return None if row is None else str(row["value"])

    def put(self, key: str, value: str) -> None:
        """Insert or overwrite ``key``."""
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO metadata (key, value) VALUES (?, ?)",
                (key, value),
            )

    def update(self, key: str, value: str) -> int:
        """Overwrite an existing ``key``; returns the number of rows changed."""
        with self._lock:
            cur = self._conn.execute(
                "UPDATE metadata SET value = ? WHERE key = ?", (value, key)
            )
            return cur.rowcount

    def delete(self, key: str) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM metadata WHERE key = ?", (key,))

    def is_initialized(self) -> bool:
        return self.get(KEY_SECRET) is not None

    def serial(self) -> int:
        raw = self.get(KEY_SERIAL)
        return -1 if raw is None else int(raw, 10)

    def initial_sync(self) -> bool:
        return self.get(KEY_INITIAL_SYNC) == "1"

    def execute(self, sql: str, params: tuple[Any, ...] = ()) -> sqlite3.Cursor:
        with self._lock:
            return self._conn.execute(sql, params)

    def fetchone(self, sql: str, params: tuple[Any, ...] = ()) -> sqlite3.Row | None:
        with self._lock:
            return self._conn.execute(sql, params).fetchone()

    def fetchall(self, sql: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        with self._lock:
            return list(self._conn.execute(sql, params).fetchall())

    def close(self) -> None:
        with self._lock:
            self._conn.close()
