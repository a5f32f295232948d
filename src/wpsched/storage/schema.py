# src/wpsched/storage/schema.py
from __future__ import annotations

import re
import sqlite3

from wpsched.domain.errors import ConfigurationError, SchemaMismatchError
from wpsched.logging import get_logger

_LOG = get_logger(__name__)

# Same character class the login file accepts for values.
_TABLE_NAME_RE = re.compile(r"^[A-Za-z0-9_\-.]+$")

COLUMNS = ("row_id", "task_id", "wp_number", "status", "lock_owner_flag", "depend")


def quote_table(table: str) -> str:
    """
    Validates a table name and returns it as a quoted SQL identifier.
    """
    if not table or not _TABLE_NAME_RE.match(table):
        raise ConfigurationError(f"Invalid table name: {table!r}", details={"table": table})
    return f'"{table}"'


def ensure_table(conn: sqlite3.Connection, table: str) -> None:
    """
    Creates the work-package table if missing, otherwise checks its layout.

    Raises SchemaMismatchError when an existing table does not have exactly
    the expected column set; nothing is altered in that case.
    """
    name = quote_table(table)
    existing = _table_columns(conn, table)
    if existing:
        if set(existing) != set(COLUMNS):
            raise SchemaMismatchError(
                f'Table "{table}" has wrong layout',
                details={"expected": sorted(COLUMNS), "found": sorted(existing)},
            )
        return

    _LOG.info("Creating work-package table %s", name)
    conn.executescript(
        f"""
        CREATE TABLE IF NOT EXISTS {name}(
          row_id INTEGER PRIMARY KEY AUTOINCREMENT,
          task_id INTEGER NOT NULL,
          wp_number INTEGER NOT NULL,
          status INTEGER NOT NULL DEFAULT 0 CHECK (status BETWEEN 0 AND 4),
          lock_owner_flag INTEGER NOT NULL DEFAULT 0 CHECK (lock_owner_flag IN (0, 1)),
          depend INTEGER NOT NULL DEFAULT 0,
          UNIQUE (task_id, wp_number)
        );
        CREATE INDEX IF NOT EXISTS "{table}_task_idx" ON {name}(task_id);
        """
    )


def _table_columns(conn: sqlite3.Connection, table: str) -> list[str]:
    rows = conn.execute("SELECT name FROM pragma_table_info(?);", (table,)).fetchall()
    return [r["name"] for r in rows]
