# src/wpsched/storage/db.py
from __future__ import annotations

import sqlite3
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from wpsched.backoff import pause
from wpsched.logging import get_logger

_LOG = get_logger(__name__)


@dataclass(frozen=True)
class SQLiteDB:
    """
    SQLite connection factory, shared by every worker through the DB file.

    Notes:
    - Open one connection per operation and close it afterwards.
    - Apply pragmas on each connection.
    - Connecting retries forever with a fixed delay (store outages are
      waited out); pass a cancel event to abort the wait.
    """
    db_path: Path
    timeout_s: float = 5.0
    connect_retry_s: float = 30.0

    def connect(self, cancel: Optional[threading.Event] = None) -> sqlite3.Connection:
        attempt = 0
        while True:
            attempt += 1
            try:
                return self._open()
            except (sqlite3.OperationalError, OSError) as e:
                _LOG.warning(
                    "Connecting to %s failed (attempt %d): %s; retrying in %.1fs",
                    self.db_path,
                    attempt,
                    e,
                    self.connect_retry_s,
                )
            pause(self.connect_retry_s, cancel, what="connect")

    def _open(self) -> sqlite3.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.timeout_s,
            isolation_level=None,          # we manage transactions manually (BEGIN/COMMIT)
            # FastAPI may open and use a request connection on different
            # threadpool threads; a connection is never used concurrently.
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        try:
            self._apply_pragmas(conn)
        except sqlite3.Error:
            conn.close()
            raise
        return conn

    def _apply_pragmas(self, conn: sqlite3.Connection) -> None:
        cur = conn.cursor()
        # Readers don't block the writer holding the exclusive section
        cur.execute("PRAGMA journal_mode=WAL;")
        # Wait for a competing BEGIN IMMEDIATE instead of failing
        cur.execute(f"PRAGMA busy_timeout={int(self.timeout_s * 1000)};")
        cur.execute("PRAGMA synchronous=NORMAL;")
        cur.close()


def begin_immediate(
    conn: sqlite3.Connection,
    *,
    retry_s: Optional[float] = None,
    cancel: Optional[threading.Event] = None,
) -> None:
    """
    Enters the exclusive section: acquires the RESERVED lock immediately, so
    concurrent read-modify-write sequences on the table are serialized.

    With retry_s set, a busy store (another writer held the section past the
    busy timeout) is waited out: BEGIN is retried every retry_s seconds until
    it succeeds or `cancel` is set. Without it the busy error propagates.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            conn.execute("BEGIN IMMEDIATE;")
            return
        except sqlite3.OperationalError as e:
            if retry_s is None or not is_busy(e):
                raise
            _LOG.warning(
                "Exclusive section busy (attempt %d): %s; retrying in %.1fs",
                attempt,
                e,
                retry_s,
            )
        pause(retry_s, cancel, what="exclusive section")


def is_busy(err: sqlite3.OperationalError) -> bool:
    # Extended result codes keep the primary code in the low byte.
    code = getattr(err, "sqlite_errorcode", -1) & 0xFF
    return code in (sqlite3.SQLITE_BUSY, sqlite3.SQLITE_LOCKED)


def commit(conn: sqlite3.Connection) -> None:
    conn.execute("COMMIT;")


def rollback(conn: sqlite3.Connection) -> None:
    if conn.in_transaction:
        conn.execute("ROLLBACK;")
