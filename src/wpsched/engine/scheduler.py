# src/wpsched/engine/scheduler.py
from __future__ import annotations

import random
import threading
import warnings
from contextlib import contextmanager
from enum import Enum
from typing import Iterator, Optional, Sequence, TypeVar, Union

from wpsched.backoff import BackoffPolicy, pause
from wpsched.config import Settings, load_settings
from wpsched.domain.errors import (
    LockOwnershipError,
    NoActiveWorkPackageError,
    TaskOverwriteWarning,
    ValidationError,
)
from wpsched.domain.models import TaskView
from wpsched.domain.states import ClaimMode, ResetMode, WPStatus
from wpsched.logging import get_logger
from wpsched.storage import DEFAULT_TABLE, SQLiteDB, WorkPackageRepo, ensure_table
from wpsched.storage.repo import require_positive_int

_LOG = get_logger(__name__)

E = TypeVar("E", bound=Enum)


class Scheduler:
    """
    Per-process handle on one task.

    Every worker process builds its own handle and talks to the others only
    through the shared table. The handle keeps:
    - the WP it currently holds (0 if none) and whether that WP owns the lock
    - a cached TaskView, refreshed by refresh() and never authoritative

    Polling loops (claim, lock, connect) sleep between attempts, never inside
    a transaction. Setting the `cancel` event aborts any of them with
    OperationCancelled.

    One active WP per handle: the advisory lock is recorded on the row of the
    held WP.

    create() and connect() take their store, table and backoff from a
    Settings object; with neither `db` nor `settings` given the settings are
    loaded from the environment (WPS_* variables, WPS_LOGIN_FILE). Explicit
    arguments win over settings.
    """

    def __init__(
        self,
        db: SQLiteDB,
        task_id: int,
        *,
        table: str = DEFAULT_TABLE,
        backoff: Optional[BackoffPolicy] = None,
        cancel: Optional[threading.Event] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        require_positive_int(task_id, "task_id")

        self._db = db
        self._table = table
        self._task_id = task_id
        self._backoff = backoff or BackoffPolicy()
        self._cancel = cancel
        self._rng = rng or random.Random()

        self._wp = 0
        self._has_lock = False
        self._view = TaskView(task_id=task_id, wp_total=0, wp_todo=0, wp_running=0, wp_finished=0)

    # -------------------------
    # Construction
    # -------------------------

    @classmethod
    def create(
        cls,
        db: Optional[SQLiteDB],
        wp_total: int,
        task_id: Optional[int] = None,
        *,
        settings: Optional[Settings] = None,
        table: Optional[str] = None,
        backoff: Optional[BackoffPolicy] = None,
        cancel: Optional[threading.Event] = None,
        rng: Optional[random.Random] = None,
    ) -> tuple["Scheduler", int]:
        """
        Creates a task of wp_total READY WPs and returns (handle, task_id).

        Creates the table if needed. An existing task with the same id is
        overwritten (TaskOverwriteWarning).
        """
        require_positive_int(wp_total, "wp_total")
        if task_id is not None:
            require_positive_int(task_id, "task_id")

        db, table, backoff = _resolve(db, settings, table, backoff)
        conn = db.connect(cancel)
        try:
            ensure_table(conn, table)
            new_id, replaced = WorkPackageRepo(
                conn, table, busy_retry_s=db.connect_retry_s, cancel=cancel
            ).create_task(wp_total, task_id)
        finally:
            conn.close()

        if replaced:
            _LOG.warning("Overwrote existing task %d (%d row(s) deleted)", new_id, replaced)
            warnings.warn(
                f"Overwriting existing task {new_id}",
                TaskOverwriteWarning,
                stacklevel=2,
            )

        handle = cls(db, new_id, table=table, backoff=backoff, cancel=cancel, rng=rng)
        handle.refresh()
        return handle, new_id

    @classmethod
    def connect(
        cls,
        db: Optional[SQLiteDB],
        task_id: int,
        *,
        settings: Optional[Settings] = None,
        table: Optional[str] = None,
        backoff: Optional[BackoffPolicy] = None,
        cancel: Optional[threading.Event] = None,
        rng: Optional[random.Random] = None,
    ) -> "Scheduler":
        """Binds a handle to an existing task id and loads its counters."""
        db, table, backoff = _resolve(db, settings, table, backoff)
        handle = cls(db, task_id, table=table, backoff=backoff, cancel=cancel, rng=rng)
        handle.refresh()
        return handle

    # -------------------------
    # Cached view
    # -------------------------

    @property
    def task_id(self) -> int:
        return self._task_id

    @property
    def wp(self) -> int:
        """The WP currently held by this handle, 0 if none."""
        return self._wp

    @property
    def has_lock(self) -> bool:
        return self._has_lock

    @property
    def table(self) -> str:
        return self._table

    @property
    def backoff(self) -> BackoffPolicy:
        return self._backoff

    @property
    def wp_total(self) -> int:
        return self._view.wp_total

    @property
    def wp_todo(self) -> int:
        return self._view.wp_todo

    @property
    def wp_running(self) -> int:
        return self._view.wp_running

    @property
    def wp_finished(self) -> int:
        return self._view.wp_finished

    @property
    def status(self) -> list[WPStatus]:
        return list(self._view.status)

    @property
    def depends(self) -> list[int]:
        return list(self._view.depends)

    def refresh(self) -> TaskView:
        """Re-reads the task's rows and updates the cached counters."""
        with self._repo() as repo:
            self._view = repo.get_task(self._task_id)
        return self._view

    # -------------------------
    # Work packages
    # -------------------------

    def claim(self, mode: Union[ClaimMode, str] = ClaimMode.DEFAULT) -> int:
        """
        Claims the next READY WP and returns its number, or 0 when no WP is
        left to run.

        While every READY WP waits on a dependency this blocks, retrying
        after a random claim backoff.

        A lock held by the previous WP is released by the first attempt.
        """
        mode = _coerce(ClaimMode, mode, "claim mode")
        if self._wp:
            _LOG.warning("Task %d: claiming while still holding WP %d", self._task_id, self._wp)

        attempts = 0
        while True:
            attempts += 1
            with self._repo() as repo:
                attempt = repo.try_claim(
                    self._task_id,
                    mode,
                    self._rng,
                    release_lock_wp=self._wp if self._has_lock else None,
                )
            self._has_lock = False

            if attempt.wp or attempt.waiting == 0:
                self._wp = attempt.wp
                return attempt.wp

            delay_s = self._backoff.claim_delay_s(self._rng)
            _LOG.debug(
                "Task %d: %d ready WP(s) gated by dependencies; retry %d in %.2fs",
                self._task_id,
                attempt.waiting,
                attempts,
                delay_s,
            )
            pause(delay_s, self._cancel, what="claim")

    def finish(self, wp: Optional[int] = None) -> int:
        """
        Marks a WP FINISHED (the held one by default) and releases the WPs
        depending on it. Also releases the lock if this handle holds it.

        Returns the number of released dependents.
        """
        target = self._wp if wp is None else wp
        if not target:
            raise NoActiveWorkPackageError("No WP is active.", details={"task_id": self._task_id})
        require_positive_int(target, "wp")

        with self._repo() as repo:
            released = repo.finish(
                self._task_id,
                target,
                lock_wp=self._wp if self._has_lock else None,
            )

        self._wp = 0
        self._has_lock = False
        return released

    def is_finished(self) -> bool:
        """
        True exactly once after all WPs have finished; the rows then move to
        TASK_DONE and later calls return False until a reset("all") starts a
        new cycle.
        """
        with self._repo() as repo:
            return repo.complete_if_all_finished(self._task_id)

    def suspend(self) -> int:
        with self._repo() as repo:
            return repo.suspend(self._task_id)

    def reset(
        self,
        mode: Union[ResetMode, str] = ResetMode.SUSPENDED,
        wps: Optional[Sequence[int]] = None,
    ) -> int:
        """
        Sets WPs back to READY.

        reset()                       suspended WPs
        reset("running")              running WPs (e.g. after a worker crash)
        reset("all")                  every WP
        reset("specific", [3, 7])     the listed WPs
        """
        mode = _coerce(ResetMode, mode, "reset mode")

        with self._repo() as repo:
            affected = repo.reset(self._task_id, mode, wps)

        if mode in (ResetMode.RUNNING, ResetMode.ALL) or (
            mode == ResetMode.SPECIFIC and self._wp in (wps or ())
        ):
            self._wp = 0
            self._has_lock = False
        return affected

    def delete_task(self) -> int:
        with self._repo() as repo:
            deleted = repo.delete_task(self._task_id)
        self._wp = 0
        self._has_lock = False
        self._view = TaskView(
            task_id=self._task_id, wp_total=0, wp_todo=0, wp_running=0, wp_finished=0
        )
        return deleted

    # -------------------------
    # Advisory lock
    # -------------------------

    def lock(self) -> None:
        """
        Enters the task-wide single-holder section.

        Waits (fixed lock retry delay, no timeout) while another WP holds it.
        """
        if not self._wp:
            raise NoActiveWorkPackageError(
                "Lock can not be acquired. No WP is active.",
                details={"task_id": self._task_id},
            )

        while True:
            with self._repo() as repo:
                acquired = repo.try_acquire_lock(self._task_id, self._wp)
            if acquired:
                self._has_lock = True
                return
            pause(self._backoff.lock_delay_s, self._cancel, what="lock")

    def unlock(self, force: bool = False) -> None:
        """
        Releases the lock held by the current WP.

        force=True clears the lock of the task whoever holds it.
        """
        if force:
            with self._repo() as repo:
                repo.force_release_lock(self._task_id)
            self._has_lock = False
            return

        owned = False
        if self._wp:
            with self._repo() as repo:
                owned = repo.release_lock(self._task_id, self._wp)
        if not owned:
            raise LockOwnershipError(
                "The current WP does not own the lock.",
                details={"task_id": self._task_id, "wp": self._wp},
            )
        self._has_lock = False

    @contextmanager
    def locked(self) -> Iterator[None]:
        """with job.locked(): ...  runs the block while holding the task lock."""
        self.lock()
        try:
            yield
        finally:
            if self._has_lock:
                self.unlock()

    # -------------------------
    # Dependencies
    # -------------------------

    def get_dependencies(self) -> list[int]:
        with self._repo() as repo:
            depends = repo.get_dependencies(self._task_id)
        self._view = self._view.model_copy(update={"depends": depends})
        return depends

    def set_dependencies(self, depends: Sequence[int]) -> int:
        """
        Sets the predecessor of every WP at once (depends[i] for WP i + 1,
        0 = none). Returns the number of changed rows.
        """
        with self._repo() as repo:
            changed = repo.set_dependencies(self._task_id, depends)
            self._view = repo.get_task(self._task_id)
        return changed

    # -------------------------
    # Helpers
    # -------------------------

    @contextmanager
    def _repo(self) -> Iterator[WorkPackageRepo]:
        # One connection per operation, closed before any backoff sleep.
        conn = self._db.connect(self._cancel)
        try:
            yield WorkPackageRepo(
                conn,
                self._table,
                busy_retry_s=self._db.connect_retry_s,
                cancel=self._cancel,
            )
        finally:
            conn.close()


def _resolve(
    db: Optional[SQLiteDB],
    settings: Optional[Settings],
    table: Optional[str],
    backoff: Optional[BackoffPolicy],
) -> tuple[SQLiteDB, str, Optional[BackoffPolicy]]:
    if db is None or settings is not None:
        settings = settings or load_settings()
        db = db or settings.db()
        table = table or settings.table
        backoff = backoff or settings.backoff()
    return db, table or DEFAULT_TABLE, backoff


def _coerce(enum_cls: type[E], value: object, what: str) -> E:
    try:
        return enum_cls(value)
    except ValueError as e:
        raise ValidationError(
            f"Invalid {what}: {value!r}",
            details={"allowed": [m.value for m in enum_cls]},
        ) from e
