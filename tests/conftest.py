# tests/conftest.py
import importlib
import itertools
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import pytest
from fastapi.testclient import TestClient

from wpsched.backoff import BackoffPolicy
from wpsched.engine import Scheduler
from wpsched.storage import SQLiteDB

_counter = itertools.count(1)

# Millisecond delays keep polling tests fast.
FAST_BACKOFF = BackoffPolicy(claim_min_ms=5, claim_max_ms=20, lock_retry_ms=10)

DEFAULT_ENV = {
    "WPS_TABLE": "work_packages",
    "WPS_CLAIM_BACKOFF_MIN_MS": "5",
    "WPS_CLAIM_BACKOFF_MAX_MS": "20",
    "WPS_LOCK_RETRY_MS": "10",
    "WPS_CONNECT_RETRY_MS": "10",
    "WPS_LOG_LEVEL": "warning",
}


@pytest.fixture()
def db(tmp_path: Path) -> SQLiteDB:
    """Fresh SQLite file per test."""
    return SQLiteDB(tmp_path / "wpsched.db", timeout_s=10.0, connect_retry_s=0.01)


@pytest.fixture()
def fast_backoff() -> BackoffPolicy:
    return FAST_BACKOFF


@pytest.fixture()
def make_task(db: SQLiteDB):
    """
    Creates a task and returns its handle.

    Usage:
      job = make_task(5)
      job = make_task(3, task_id=7)
    """

    def _make(wp_total: int, task_id: Optional[int] = None, **kwargs) -> Scheduler:
        kwargs.setdefault("backoff", FAST_BACKOFF)
        job, _ = Scheduler.create(db, wp_total, task_id, **kwargs)
        return job

    return _make


@pytest.fixture()
def connect(db: SQLiteDB):
    """Opens another handle on an existing task (another "worker")."""

    def _connect(task_id: int, **kwargs) -> Scheduler:
        kwargs.setdefault("backoff", FAST_BACKOFF)
        return Scheduler.connect(db, task_id, **kwargs)

    return _connect


def _apply_env(monkeypatch: pytest.MonkeyPatch, db_path: Path, overrides: Optional[dict[str, str]] = None) -> None:
    monkeypatch.setenv("WPS_DB_PATH", str(db_path))
    monkeypatch.delenv("WPS_LOGIN_FILE", raising=False)
    for k, v in DEFAULT_ENV.items():
        monkeypatch.setenv(k, v)
    if overrides:
        for k, v in overrides.items():
            monkeypatch.setenv(k, v)


@contextmanager
def _client_ctx(monkeypatch: pytest.MonkeyPatch, tmp_path: Path, *, overrides: Optional[dict[str, str]] = None,
                db_path: Optional[Path] = None) -> Iterator[TestClient]:
    if db_path is None:
        n = next(_counter)
        db_path = tmp_path / f"admin_{n}.db"

    _apply_env(monkeypatch, db_path, overrides)

    # Import after env is set; reload to avoid cross-test state
    app_mod = importlib.import_module("wpsched.api.app")
    importlib.reload(app_mod)

    with TestClient(app_mod.app) as client:
        yield client


@pytest.fixture()
def client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[TestClient]:
    """
    Admin API test client on a fresh sqlite db.
    """
    with _client_ctx(monkeypatch, tmp_path) as c:
        yield c


@pytest.fixture()
def client_factory(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """
    Factory for tests that need custom settings or a pre-populated DB.

    Usage:
      with client_factory(db_path=some_existing_db_path) as client:
          ...
    """

    def _make(*, overrides: Optional[dict[str, str]] = None, db_path: Optional[Path] = None):
        return _client_ctx(monkeypatch, tmp_path, overrides=overrides, db_path=db_path)

    return _make
