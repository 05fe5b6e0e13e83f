# Notes Vault: Core - SQLite connection helper and live database pool
#
# Every SQLite database in Notes Vault is opened through `connect()` so it
# gets the same PRAGMAs:
#
#   - WAL journal mode (concurrent readers + one writer)
#   - busy_timeout to avoid SQLITE_BUSY under contention
#   - foreign_keys enforcement on every connection
#
# The live notes database (db.sqlite) is shared through `DatabasePool`, an
# explicitly owned resource. A restore closes the pool completely before it
# renames the database file and reopens it only after the swap.

import logging
import queue
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Union

from ..exceptions import PoolClosed, StorageIOError

logger = logging.getLogger(__name__)


def connect(
    db_path: Union[str, Path],
    *,
    row_factory: bool = False,
    check_same_thread: bool = True,
) -> sqlite3.Connection:
    """Open a SQLite connection with WAL mode and safe PRAGMAs.

    Args:
        db_path: Path to the database file.
        row_factory: If True, set conn.row_factory = sqlite3.Row.
        check_same_thread: Passed to sqlite3.connect().

    Returns:
        sqlite3.Connection with WAL mode, busy_timeout, and foreign_keys.
    """
    conn = sqlite3.connect(str(db_path), check_same_thread=check_same_thread)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA busy_timeout=5000")
    conn.execute("PRAGMA foreign_keys=ON")
    if row_factory:
        conn.row_factory = sqlite3.Row
    return conn


class DatabasePool:
    """
    Connection pool for the live notes database.

    Connections are opened lazily up to ``max_size`` and handed out through
    the ``connection()`` context manager. ``close()`` waits until every
    borrowed connection has been returned, then closes them all and
    checkpoints the WAL so the database is a single self-contained file.

    Attributes:
        db_path: Path to the live database file
        max_size: Maximum number of open connections
    """

    def __init__(self, db_path: Union[str, Path], max_size: int = 5):
        self.db_path = Path(db_path)
        self.max_size = max_size
        self._idle: "queue.LifoQueue[sqlite3.Connection]" = queue.LifoQueue()
        self._all: List[sqlite3.Connection] = []
        self._in_use = 0
        self._open = True
        self._cond = threading.Condition()

    @property
    def is_open(self) -> bool:
        return self._open

    @contextmanager
    def connection(self, timeout: float = 30.0) -> Iterator[sqlite3.Connection]:
        """
        Borrow a connection from the pool.

        Usage:
            with pool.connection() as conn:
                conn.execute(...)

        Raises:
            PoolClosed: If the pool is closed (e.g. during a restore swap)
        """
        conn = self._acquire(timeout)
        try:
            yield conn
        finally:
            self._release(conn)

    def _acquire(self, timeout: float) -> sqlite3.Connection:
        with self._cond:
            if not self._open:
                raise PoolClosed("Database pool is closed")
            while True:
                try:
                    conn = self._idle.get_nowait()
                    break
                except queue.Empty:
                    pass
                if len(self._all) < self.max_size:
                    self.db_path.parent.mkdir(parents=True, exist_ok=True)
                    conn = connect(self.db_path, row_factory=True, check_same_thread=False)
                    self._all.append(conn)
                    break
                if not self._cond.wait(timeout):
                    raise StorageIOError("Timed out waiting for a database connection")
                if not self._open:
                    raise PoolClosed("Database pool is closed")
            self._in_use += 1
            return conn

    def _release(self, conn: sqlite3.Connection) -> None:
        with self._cond:
            self._in_use -= 1
            self._idle.put(conn)
            self._cond.notify_all()

    def close(self, timeout: float = 30.0) -> None:
        """
        Close every connection in the pool.

        New borrowers are refused immediately; the call blocks until all
        borrowed connections are returned.

        Raises:
            StorageIOError: If connections are still borrowed after ``timeout``
        """
        with self._cond:
            if not self._open:
                return
            self._open = False
            if not self._cond.wait_for(lambda: self._in_use == 0, timeout):
                self._open = True
                raise StorageIOError(
                    "Timed out waiting for database connections to be released"
                )
            while True:
                try:
                    self._idle.get_nowait()
                except queue.Empty:
                    break
            conns, self._all = self._all, []

        for index, conn in enumerate(conns):
            try:
                if index == 0:
                    conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
                conn.close()
            except sqlite3.Error as e:
                logger.warning("Error closing database connection: %s", e)
        logger.info("Database pool closed: %s", self.db_path)

    def reopen(self) -> None:
        """Allow connections again after ``close()``."""
        with self._cond:
            self._open = True
            self._cond.notify_all()
        logger.info("Database pool reopened: %s", self.db_path)
