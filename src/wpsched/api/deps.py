# src/wpsched/api/deps.py
from __future__ import annotations

import sqlite3
from typing import Generator

from fastapi import Depends, Request

from wpsched.config import Settings
from wpsched.storage import SQLiteDB, WorkPackageRepo


def get_settings(request: Request) -> Settings:
    """
    Per-request access to settings stored on app.state during startup.
    """
    return request.app.state.settings  # type: ignore[attr-defined]


def get_db(request: Request) -> SQLiteDB:
    """
    Per-request access to SQLiteDB stored on app.state during startup.
    """
    return request.app.state.db  # type: ignore[attr-defined]


def get_conn(
    db: SQLiteDB = Depends(get_db),
) -> Generator[sqlite3.Connection, None, None]:
    """
    Provides a per-request SQLite connection.
    """
    conn = db.connect()
    try:
        yield conn
    finally:
        conn.close()


def get_repo(
    conn: sqlite3.Connection = Depends(get_conn),
    db: SQLiteDB = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> WorkPackageRepo:
    """
    Provides a WorkPackageRepo bound to the request connection.

    A busy store is waited out rather than reported to the client.
    """
    return WorkPackageRepo(conn, settings.table, busy_retry_s=db.connect_retry_s)
