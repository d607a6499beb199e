"""SQLite database layer shared by the segment and day stores."""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Sequence, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class StorageError(Exception):
    """The database is unavailable or a statement failed."""


def open_database(path: PathLike, *, check_same_thread: bool = True) -> sqlite3.Connection:
    """Open (and initialize) the SQLite database."""
    conn = sqlite3.connect(
        path,
        isolation_level=None,
        check_same_thread=check_same_thread,
    )
    conn.row_factory = sqlite3.Row
    try:
        enable_foreign_keys(conn)
        initialize_schema(conn)
    except sqlite3.Error:
        conn.close()
        raise
    return conn


def enable_foreign_keys(conn: sqlite3.Connection) -> None:
    conn.execute("PRAGMA foreign_keys = ON;")


def initialize_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS days (
            id INTEGER PRIMARY KEY,
            start_of_day_timestamp INTEGER NOT NULL,
            year INTEGER NOT NULL,
            month INTEGER NOT NULL,
            day INTEGER NOT NULL,
            total_worked_duration INTEGER NOT NULL DEFAULT 0
        );

        CREATE UNIQUE INDEX IF NOT EXISTS idx_days_start_of_day
            ON days(start_of_day_timestamp);

        CREATE TABLE IF NOT EXISTS work_segments (
            id INTEGER PRIMARY KEY,
            start_timestamp INTEGER NOT NULL,
            stop_timestamp INTEGER NOT NULL,
            day_id INTEGER REFERENCES days(id) ON DELETE SET NULL
        );

        CREATE INDEX IF NOT EXISTS idx_segments_day_id
            ON work_segments(day_id);

        CREATE INDEX IF NOT EXISTS idx_segments_start
            ON work_segments(start_timestamp);
        """
    )


class Database:
    """A single shared connection that may be unavailable.

    If the file cannot be opened the failure is logged once at critical level
    and every later call raises :class:`StorageError` instead of crashing the
    process. Statements are serialized with a re-entrant lock so the
    connection can be shared by the web server's worker threads.
    """

    def __init__(self, conn: Optional[sqlite3.Connection], path: Optional[PathLike] = None) -> None:
        self._conn = conn
        self.path = path
        self._lock = threading.RLock()

    @classmethod
    def open(cls, path: PathLike) -> "Database":
        try:
            conn = open_database(path, check_same_thread=False)
        except (sqlite3.Error, OSError):
            logger.critical("Failed to open database at %s", path, exc_info=True)
            return cls(None, path)
        logger.debug("Opened database at %s", path)
        return cls(conn, path)

    @property
    def is_available(self) -> bool:
        return self._conn is not None

    def close(self) -> None:
        with self._lock:
            if self._conn is None:
                return
            self._conn.close()
            self._conn = None

    def execute(self, sql: str, params: Sequence[object] = ()) -> sqlite3.Cursor:
        with self._lock:
            conn = self._require()
            try:
                return conn.execute(sql, params)
            except sqlite3.Error as exc:
                raise StorageError(f"Statement failed: {exc}") from exc

    def fetchall(self, sql: str, params: Sequence[object] = ()) -> list[sqlite3.Row]:
        with self._lock:
            cur = self.execute(sql, params)
            try:
                return cur.fetchall()
            except sqlite3.Error as exc:
                raise StorageError(f"Fetch failed: {exc}") from exc

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group statements into one unit; nested use joins the outer unit."""
        with self._lock:
            conn = self._require()
            if conn.in_transaction:
                yield
                return
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as exc:
                raise StorageError(f"Could not begin transaction: {exc}") from exc
            try:
                yield
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            try:
                conn.execute("COMMIT")
            except sqlite3.Error as exc:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise StorageError(f"Commit failed: {exc}") from exc

    def _require(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageError(f"Database at {self.path} is unavailable")
        return self._conn
