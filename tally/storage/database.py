"""SQLite database connection manager."""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

logger = logging.getLogger(__name__)


class Database:
    """SQLite database with WAL mode and a bounded busy timeout.

    A file database holds two connections. Reads go through ``conn``;
    ``transaction()`` runs on a separate write connection, so readers in
    this process only ever see committed data, exactly like readers in
    another process. Write transactions are serialized by a lock and may
    be opened from any thread.

    ``:memory:`` databases exist only inside one connection, so reads and
    writes share it there and uncommitted writes are visible to readers.
    """

    def __init__(self, path: str | Path, busy_timeout: float = 5.0):
        self.path = path if str(path) == ":memory:" else Path(path).expanduser().resolve()
        self.busy_timeout = busy_timeout
        self._conn: sqlite3.Connection | None = None
        self._write_conn: sqlite3.Connection | None = None
        self._connect_lock = threading.Lock()
        self._write_lock = threading.RLock()

    @property
    def is_memory(self) -> bool:
        return str(self.path) == ":memory:"

    def _ensure_dir(self) -> None:
        if not self.is_memory:
            self.path.parent.mkdir(parents=True, exist_ok=True)

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            str(self.path),
            timeout=self.busy_timeout,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout * 1000)}")
        return conn

    def connect(self) -> sqlite3.Connection:
        """Open the read connection with optimal settings."""
        with self._connect_lock:
            if self._conn is None:
                self._ensure_dir()
                self._conn = self._open()
                logger.debug("Connected to database: %s", self.path)
            return self._conn

    @property
    def conn(self) -> sqlite3.Connection:
        return self.connect()

    def write_connection(self) -> sqlite3.Connection:
        """The connection write transactions run on."""
        if self.is_memory:
            return self.connect()
        with self._connect_lock:
            if self._write_conn is None:
                self._ensure_dir()
                self._write_conn = self._open()
                logger.debug("Opened write connection: %s", self.path)
            return self._write_conn

    def close(self) -> None:
        with self._connect_lock:
            for conn in (self._write_conn, self._conn):
                if conn is not None:
                    conn.close()
            if self._conn is not None or self._write_conn is not None:
                logger.debug("Closed database connection")
            self._conn = None
            self._write_conn = None

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Cursor, None, None]:
        """Context manager for a write transaction.

        Takes the write lock up front (BEGIN IMMEDIATE) so a busy database
        fails at the start rather than half-way through. Any exception rolls
        the whole transaction back. Nesting on one thread joins the outer
        transaction.
        """
        with self._write_lock:
            conn = self.write_connection()
            cursor = conn.cursor()
            if conn.in_transaction:
                yield cursor
                return
            cursor.execute("BEGIN IMMEDIATE")
            try:
                yield cursor
                conn.commit()
            except BaseException:
                conn.rollback()
                raise

    def execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        """Execute a single SQL statement."""
        return self.conn.execute(sql, params)

    def executemany(self, sql: str, params_seq: list[tuple]) -> sqlite3.Cursor:
        """Execute a SQL statement against multiple parameter sets."""
        return self.conn.executemany(sql, params_seq)

    def executescript(self, sql: str) -> None:
        """Execute a multi-statement SQL script on the write connection."""
        with self._write_lock:
            self.write_connection().executescript(sql)

    def fetchone(self, sql: str, params: tuple = ()) -> sqlite3.Row | None:
        """Execute and fetch one result."""
        return self.conn.execute(sql, params).fetchone()

    def fetchall(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        """Execute and fetch all results."""
        return self.conn.execute(sql, params).fetchall()

    def schema_version(self) -> int:
        """Get the current schema version. Returns 0 if no schema exists."""
        try:
            row = self.fetchone(
                "SELECT MAX(version) as v FROM _schema_version"
            )
            return row["v"] if row and row["v"] is not None else 0
        except sqlite3.OperationalError:
            return 0

    def __enter__(self) -> "Database":
        self.connect()
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"Database({self.path})"
