from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from wpsched.backoff import BackoffPolicy
from wpsched.domain.errors import ConfigurationError
from wpsched.storage import DEFAULT_TABLE, SQLiteDB
from wpsched.storage.schema import quote_table


def _get_env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigurationError(f"Environment variable {name} must be an int, got: {raw!r}") from e
    return value


def _get_env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw


# -------------------------
# Login file
# -------------------------

_NAME_RE = re.compile(r"[A-Za-z0-9_]+")
_VALUE_RE = re.compile(r"[A-Za-z0-9_\-.]+")

_LOGIN_KEYS = {
    "server": "server",
    "database": "database",
    "user": "user",
    "password": "password",
    "table": "table",
    # spelling used by older login files
    "db_server": "server",
    "db_database": "database",
    "db_user": "user",
    "db_passwd": "password",
    "db_table": "table",
}


@dataclass(frozen=True)
class LoginData:
    server: str = ""
    database: str = ""
    user: str = ""
    password: str = ""
    table: str = ""

    @property
    def effective_table(self) -> str:
        """The table falls back to the user name, then to the default."""
        return self.table or self.user or DEFAULT_TABLE


def parse_login_file(path: Path) -> LoginData:
    """
    Parses a login file of `name = value` lines.

    - a `%` before the `=` comments the line out
    - the name must be one of the known keys, unknown names are ignored
    - the value must be exactly one token of [A-Za-z0-9_-.], otherwise the
      line is ignored
    """
    path = Path(path).expanduser()
    if not path.is_file():
        raise ConfigurationError(f"Login file not found: {path}", details={"path": str(path)})

    values: dict[str, str] = {}
    for line in path.read_text(encoding="utf-8").splitlines():
        lhs, sep, rhs = line.partition("=")
        if not sep or "%" in lhs:
            continue

        names = _NAME_RE.findall(lhs)
        if len(names) != 1 or names[0] not in _LOGIN_KEYS:
            continue

        tokens = _VALUE_RE.findall(rhs)
        if len(tokens) == 1:
            values[_LOGIN_KEYS[names[0]]] = tokens[0]

    return LoginData(**values)


# -------------------------
# Settings
# -------------------------

@dataclass(frozen=True)
class Settings:
    # Store
    db_path: Path
    table: str
    busy_timeout_ms: int
    connect_retry_ms: int

    # Polling
    claim_backoff_min_ms: int
    claim_backoff_max_ms: int
    lock_retry_ms: int

    # Admin API (used by wpsched.main when starting uvicorn programmatically)
    host: str
    port: int
    log_level: str

    def db(self) -> SQLiteDB:
        return SQLiteDB(
            self.db_path,
            timeout_s=self.busy_timeout_ms / 1000.0,
            connect_retry_s=self.connect_retry_ms / 1000.0,
        )

    def backoff(self) -> BackoffPolicy:
        return BackoffPolicy(
            claim_min_ms=self.claim_backoff_min_ms,
            claim_max_ms=self.claim_backoff_max_ms,
            lock_retry_ms=self.lock_retry_ms,
        )


def load_settings(login_file: Optional[Path] = None) -> Settings:
    """
    Loads settings from env vars with sane defaults.

    Env vars:
      - WPS_DB_PATH (default: ./var/wpsched.db)
      - WPS_TABLE (default: work_packages)
      - WPS_LOGIN_FILE (optional; its database/table override the two above)
      - WPS_BUSY_TIMEOUT_MS (default: 5000)
      - WPS_CONNECT_RETRY_MS (default: 30000)
      - WPS_CLAIM_BACKOFF_MIN_MS (default: 2000)
      - WPS_CLAIM_BACKOFF_MAX_MS (default: 10000)
      - WPS_LOCK_RETRY_MS (default: 10000)
      - WPS_HOST (default: 127.0.0.1)
      - WPS_PORT (default: 8000)
      - WPS_LOG_LEVEL (default: info)

    Raises ConfigurationError; nothing here touches the store.
    """
    db_path = Path(_get_env_str("WPS_DB_PATH", "./var/wpsched.db")).expanduser()
    table = _get_env_str("WPS_TABLE", DEFAULT_TABLE)

    if login_file is None and os.getenv("WPS_LOGIN_FILE"):
        login_file = Path(os.environ["WPS_LOGIN_FILE"])
    if login_file is not None:
        login = parse_login_file(login_file)
        if not login.database:
            raise ConfigurationError(
                f"Login file {login_file} does not define a database",
                details={"path": str(login_file)},
            )
        # Values can't hold path separators; the DB file sits next to the login file.
        db_path = Path(login_file).expanduser().parent / login.database
        table = login.effective_table

    quote_table(table)

    busy_timeout_ms = _get_env_int("WPS_BUSY_TIMEOUT_MS", 5_000)
    if busy_timeout_ms <= 0:
        raise ConfigurationError("WPS_BUSY_TIMEOUT_MS must be > 0")

    connect_retry_ms = _get_env_int("WPS_CONNECT_RETRY_MS", 30_000)
    if connect_retry_ms <= 0:
        raise ConfigurationError("WPS_CONNECT_RETRY_MS must be > 0")

    claim_min = _get_env_int("WPS_CLAIM_BACKOFF_MIN_MS", 2_000)
    claim_max = _get_env_int("WPS_CLAIM_BACKOFF_MAX_MS", 10_000)
    if claim_min < 0 or claim_max < claim_min:
        raise ConfigurationError("WPS_CLAIM_BACKOFF_MIN_MS must be >= 0 and <= WPS_CLAIM_BACKOFF_MAX_MS")

    lock_retry_ms = _get_env_int("WPS_LOCK_RETRY_MS", 10_000)
    if lock_retry_ms <= 0:
        raise ConfigurationError("WPS_LOCK_RETRY_MS must be > 0")

    host = _get_env_str("WPS_HOST", "127.0.0.1")
    port = _get_env_int("WPS_PORT", 8000)
    if not (1 <= port <= 65535):
        raise ConfigurationError("WPS_PORT must be between 1 and 65535")

    log_level = _get_env_str("WPS_LOG_LEVEL", "info").lower()

    return Settings(
        db_path=db_path,
        table=table,
        busy_timeout_ms=busy_timeout_ms,
        connect_retry_ms=connect_retry_ms,
        claim_backoff_min_ms=claim_min,
        claim_backoff_max_ms=claim_max,
        lock_retry_ms=lock_retry_ms,
        host=host,
        port=port,
        log_level=log_level,
    )
