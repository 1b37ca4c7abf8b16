"""SQLite connection pool shared by the reward store helpers."""
import logging
import sqlite3
import threading
from contextlib import contextmanager
from queue import Empty, Queue
from typing import Generator

logger = logging.getLogger(__name__)

class SQLiteConnectionPool:
    """Thread-safe SQLite connection pool.

    Connections are handed to whichever worker thread asks for them, so they
    are opened with ``check_same_thread=False``; a connection is only ever
    used by one borrower at a time.
    """

    def __init__(self, database: str, max_connections: int = 5, timeout: float = 10.0):
        self.database = database
        self.max_connections = max_connections
        self.timeout = timeout
        self._pool: Queue[sqlite3.Connection] = Queue(maxsize=max_connections)
        self._lock = threading.Lock()
        self._created_connections = 0

    def _create_connection(self) -> sqlite3.Connection:
        """Create a new SQLite connection with row access by column name."""
        conn = sqlite3.connect(self.database, timeout=self.timeout, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Borrow a connection, creating one while under ``max_connections``."""
        connection = None
        try:
            connection = self._pool.get(block=False)
        except Empty:
            with self._lock:
                if self._created_connections < self.max_connections:
                    connection = self._create_connection()
                    self._created_connections += 1
                    logger.debug("Created new connection to %s (total: %s)", self.database, self._created_connections)
            if connection is None:
                connection = self._pool.get(block=True, timeout=self.timeout)

        try:
            yield connection
        finally:
            try:
                # Uncommitted work from the borrower is discarded.
                connection.rollback()
                self._pool.put(connection)
            except sqlite3.Error as e:
                logger.error("Error returning connection to pool: %s", e)
                try:
                    connection.close()
                except sqlite3.Error:
                    logger.debug("Closing a broken connection failed", exc_info=True)
                with self._lock:
                    self._created_connections -= 1

    def close_all(self) -> None:
        """Close every idle connection and reset the pool counters."""
        with self._lock:
            while True:
                try:
                    connection = self._pool.get(block=False)
                except Empty:
                    break
                try:
                    connection.close()
                except sqlite3.Error:
                    logger.debug("Closing pooled connection failed", exc_info=True)
                self._created_connections -= 1
            if self._created_connections < 0:
                self._created_connections = 0
