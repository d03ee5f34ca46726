"""
Connection pooling for the SQLite gateway.
"""

import os
import queue
import sqlite3
import threading
from contextlib import contextmanager
from typing import Iterator

from loganalyzer.errors import StorageUnavailable


class SQLiteConnectionPool:
    """Bounded pool of SQLite connections shared by concurrent requests.

    Connections are created lazily up to ``max_size`` and handed out through
    ``connection()``, which always returns them to the pool; a connection that
    saw an error is rolled back before it is reused.
    """

    def __init__(self, db_path: str, max_size: int = 5, acquire_timeout: float = 10.0):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._db_path = db_path
        self._max_size = max_size
        self._acquire_timeout = acquire_timeout
        self._idle: queue.LifoQueue[sqlite3.Connection] = queue.LifoQueue(maxsize=max_size)
        self._lock = threading.Lock()
        self._created = 0
        self._closed = False
        if db_path != ":memory:":
            directory = os.path.dirname(db_path)
            os.makedirs(directory if directory else ".", exist_ok=True)

    def _new_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=30, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _acquire(self) -> sqlite3.Connection:
        with self._lock:
            if self._closed:
                raise StorageUnavailable("Connection pool is closed")
            try:
                return self._idle.get_nowait()
            except queue.Empty:
                if self._created < self._max_size:
                    self._created += 1
                    try:
                        return self._new_connection()
                    except sqlite3.Error:
                        self._created -= 1
                        raise
        try:
            return self._idle.get(timeout=self._acquire_timeout)
        except queue.Empty as e:
            raise StorageUnavailable(
                f"Timed out after {self._acquire_timeout:g}s waiting for a database connection"
            ) from e

    def _release(self, conn: sqlite3.Connection) -> None:
        with self._lock:
            if self._closed:
                conn.close()
                self._created -= 1
                return
        self._idle.put_nowait(conn)

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Borrow a connection for one unit of work; commits on success."""
        conn = self._acquire()
        try:
            yield conn
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            self._release(conn)

    @property
    def size(self) -> int:
        return self._created

    def close(self) -> None:
        """Close idle connections; borrowed ones are closed on release."""
        with self._lock:
            self._closed = True
            while True:
                try:
                    conn = self._idle.get_nowait()
                except queue.Empty:
                    break
                conn.close()
                self._created -= 1
