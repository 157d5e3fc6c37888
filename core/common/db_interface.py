"""
core/common/db_interface.py
===========================

Shared interface + helpers for SQLite-backed modules.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from threading import RLock
from typing import Iterator, Optional
import sqlite3


def create_sqlite_connection(
    db_path: Path | str,
    *,
    check_same_thread: bool = False,
    foreign_keys: bool = False,
) -> sqlite3.Connection:
    """Create a sqlite3 connection with common defaults.

    The connection runs in autocommit mode (``isolation_level=None``) so that
    transaction boundaries are owned by :meth:`SQLiteRepository.transaction`.
    """
    if str(db_path) != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path), check_same_thread=check_same_thread, isolation_level=None)
    conn.row_factory = sqlite3.Row
    if foreign_keys:
        conn.execute("PRAGMA foreign_keys = ON")
    return conn


class DatabaseAccess(ABC):
    """Interface for modules that depend on a database."""

    @property
    @abstractmethod
    def db_path(self) -> Path:
        raise NotImplementedError

    @abstractmethod
    def connect(self) -> sqlite3.Connection:
        raise NotImplementedError


class SQLiteRepository(DatabaseAccess):
    """Default SQLite implementation with a shared, lock-guarded connection."""

    def __init__(
        self,
        db_path: Path | str,
        *,
        check_same_thread: bool = False,
        foreign_keys: bool = False,
    ) -> None:
        self._db_path = Path(db_path)
        self._conn: Optional[sqlite3.Connection] = None
        self._check_same_thread = check_same_thread
        self._foreign_keys = foreign_keys
        self._lock = RLock()
        self._depth = 0

    @property
    def db_path(self) -> Path:
        return self._db_path

    @property
    def conn(self) -> sqlite3.Connection:
        return self.connect()

    def connect(self) -> sqlite3.Connection:
        with self._lock:
            if self._conn is None:
                self._conn = create_sqlite_connection(
                    self._db_path,
                    check_same_thread=self._check_same_thread,
                    foreign_keys=self._foreign_keys,
                )
            return self._conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the block inside ``BEGIN IMMEDIATE`` ... ``COMMIT``.

        Re-entrant: nested calls join the outermost transaction. Any exception
        rolls the whole unit back and propagates.
        """
        with self._lock:
            conn = self.connect()
            if self._depth:
                self._depth += 1
                try:
                    yield conn
                finally:
                    self._depth -= 1
                return
            conn.execute("BEGIN IMMEDIATE")
            self._depth = 1
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            else:
                conn.execute("COMMIT")
            finally:
                self._depth = 0

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                try:
                    self._conn.close()
                finally:
                    self._conn = None
