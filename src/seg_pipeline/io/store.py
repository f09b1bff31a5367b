"""Key-ordered record store backed by SQLite.

Keys are stored as BLOBs, which SQLite compares with memcmp, so cursor order
is byte order of the keys.  A store is opened either ``"new"`` (the path must
not exist yet) or ``"read"`` (the path must be an existing store).
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Literal

from loguru import logger

from seg_pipeline.errors import StoreError, StoreOpenError

__all__ = ["Cursor", "RecordStore", "Transaction", "open_store"]

# ---------------------------------------------------------------------------
# SQL statements
# ---------------------------------------------------------------------------
_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS records (
    key    BLOB PRIMARY KEY,
    value  BLOB NOT NULL
);
"""

_HAS_TABLE = "SELECT name FROM sqlite_master WHERE type='table' AND name='records';"

_INSERT = "INSERT OR REPLACE INTO records (key, value) VALUES (?, ?);"

_FIRST = "SELECT key, value FROM records ORDER BY key LIMIT 1;"

_NEXT = "SELECT key, value FROM records WHERE key > ? ORDER BY key LIMIT 1;"

_COUNT = "SELECT COUNT(*) FROM records;"

OpenMode = Literal["new", "read"]


def _as_key(key: bytes | str) -> bytes:
    return key.encode("utf-8") if isinstance(key, str) else bytes(key)


class Cursor:
    """Forward cursor over the store in key order.

    Starts positioned on the first record.  ``valid()`` turns False once
    ``next()`` moves past the last record.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._row: tuple[bytes, bytes] | None = None
        self.seek_to_first()

    def seek_to_first(self) -> None:
        self._row = self._conn.execute(_FIRST).fetchone()

    def valid(self) -> bool:
        return self._row is not None

    def key(self) -> bytes:
        if self._row is None:
            raise StoreError("Cursor is not positioned on a record")
        return bytes(self._row[0])

    def value(self) -> bytes:
        if self._row is None:
            raise StoreError("Cursor is not positioned on a record")
        return bytes(self._row[1])

    def next(self) -> None:
        if self._row is None:
            return
        self._row = self._conn.execute(_NEXT, (self._row[0],)).fetchone()


class Transaction:
    """Buffered writes, flushed to the store on ``commit()``."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._pending: list[tuple[bytes, bytes]] = []

    def put(self, key: bytes | str, value: bytes) -> None:
        self._pending.append((_as_key(key), value))

    def commit(self) -> None:
        if self._pending:
            self._conn.executemany(_INSERT, self._pending)
        self._conn.commit()
        self._pending.clear()


class RecordStore:
    """SQLite-backed key/value store of serialized records."""

    def __init__(self, path: Path, conn: sqlite3.Connection) -> None:
        self.path = path
        self._conn: sqlite3.Connection | None = conn

    @property
    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreError(f"Store {self.path} is closed")
        return self._conn

    def cursor(self) -> Cursor:
        return Cursor(self._connection)

    def transaction(self) -> Transaction:
        return Transaction(self._connection)

    def count(self) -> int:
        return int(self._connection.execute(_COUNT).fetchone()[0])

    def close(self) -> None:
        """Close the SQLite connection if open."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> RecordStore:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"RecordStore(path={str(self.path)!r})"


def _connect(path: Path) -> sqlite3.Connection:
    # The prefetch producer thread reads through a connection opened by the
    # consumer thread.
    conn = sqlite3.connect(str(path), check_same_thread=False)
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    return conn


def open_store(
    path: str | Path,
    mode: OpenMode = "read",
    backend: str = "sqlite",
) -> RecordStore:
    """Open a record store.

    Args:
        path: Store file path.
        mode: ``"new"`` creates a fresh store, ``"read"`` opens an existing one.
        backend: Storage backend name. Only ``"sqlite"`` is available.

    Raises:
        StoreError: Unknown backend.
        StoreOpenError: Path does not fit the requested mode.
    """
    if backend != "sqlite":
        raise StoreError(f"Unknown store backend: {backend!r}")
    path = Path(path)

    if mode == "new":
        if path.exists():
            raise StoreOpenError(f"Store already exists: {path}")
        if not path.parent.exists():
            raise StoreOpenError(f"Parent directory does not exist: {path.parent}")
        conn = _connect(path)
        conn.execute(_CREATE_TABLE)
        conn.commit()
        logger.info(f"Opened new record store: {path}")
        return RecordStore(path, conn)

    if mode == "read":
        if not path.is_file():
            raise StoreOpenError(f"Store not found: {path}")
        try:
            conn = _connect(path)
            has_table = conn.execute(_HAS_TABLE).fetchone() is not None
        except sqlite3.DatabaseError as e:
            raise StoreOpenError(f"Not a record store: {path} ({e})") from e
        if not has_table:
            conn.close()
            raise StoreOpenError(f"Not a record store: {path}")
        logger.info(f"Opened record store for reading: {path}")
        return RecordStore(path, conn)

    raise StoreOpenError(f"Unknown open mode: {mode!r}")
