# src/wpsched/storage/repo.py
from __future__ import annotations

import random
import sqlite3
import threading
from dataclasses import dataclass, field
from typing import Optional, Sequence

from wpsched.domain.errors import DependencyError, NotFoundError, ValidationError
from wpsched.domain.models import TaskSummary, TaskView
from wpsched.domain.states import ClaimMode, ResetMode, WPStatus
from wpsched.logging import get_logger

from .db import begin_immediate, commit, rollback
from .schema import quote_table

_LOG = get_logger(__name__)

DEFAULT_TABLE = "work_packages"


@dataclass(frozen=True)
class ClaimAttempt:
    """
    Outcome of one claim attempt.

    wp > 0: the claimed wp_number.
    wp == 0 and waiting > 0: ready WPs exist but are all gated; retry later.
    wp == 0 and waiting == 0: no work left.
    """
    wp: int
    waiting: int = 0


@dataclass
class WorkPackageRepo:
    """
    Repository encapsulating all SQL access to the work-package table.

    Important invariants:
    - Every read-decide-write runs inside one BEGIN IMMEDIATE transaction
      (the exclusive section) and is rolled back on any error.
    - Claiming is a guarded UPDATE (status=0 AND depend=0) whose row count
      must be 1.
    - Finishing a WP releases its dependents in the same transaction.
    - At most one row per task has lock_owner_flag=1.

    busy_retry_s: when set, a busy exclusive section is waited out (retried
    every busy_retry_s seconds, abortable through `cancel`) instead of raising.
    """
    conn: sqlite3.Connection
    table: str = DEFAULT_TABLE
    busy_retry_s: Optional[float] = None
    cancel: Optional[threading.Event] = None
    _t: str = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._t = quote_table(self.table)

    def _begin(self) -> None:
        begin_immediate(self.conn, retry_s=self.busy_retry_s, cancel=self.cancel)

    # -------------------------
    # Read operations
    # -------------------------

    def get_task(self, task_id: int) -> TaskView:
        """
        Reads all rows of a task. A task without rows yields wp_total == 0.
        """
        rows = self.conn.execute(
            f"""
            SELECT wp_number, status, lock_owner_flag, depend
            FROM {self._t}
            WHERE task_id = ?
            ORDER BY wp_number ASC;
            """,
            (task_id,),
        ).fetchall()

        status = [WPStatus(r["status"]) for r in rows]
        locked = [r["wp_number"] for r in rows if r["lock_owner_flag"]]

        return TaskView(
            task_id=task_id,
            wp_total=len(rows),
            wp_todo=sum(1 for s in status if s == WPStatus.READY),
            wp_running=sum(1 for s in status if s == WPStatus.RUNNING),
            wp_finished=sum(1 for s in status if s in (WPStatus.FINISHED, WPStatus.TASK_DONE)),
            status=status,
            depends=[int(r["depend"]) for r in rows],
            locked_wp=locked[0] if locked else None,
        )

    def require_task(self, task_id: int) -> TaskView:
        view = self.get_task(task_id)
        if view.wp_total == 0:
            raise NotFoundError(f"Task not found: {task_id}", details={"task_id": task_id})
        return view

    def list_tasks(self) -> list[TaskSummary]:
        rows = self.conn.execute(
            f"""
            SELECT task_id,
                   COUNT(*) AS wp_total,
                   SUM(CASE WHEN status = ? THEN 1 ELSE 0 END) AS wp_todo,
                   SUM(CASE WHEN status = ? THEN 1 ELSE 0 END) AS wp_running,
                   SUM(CASE WHEN status IN (?, ?) THEN 1 ELSE 0 END) AS wp_finished
            FROM {self._t}
            GROUP BY task_id
            ORDER BY task_id ASC;
            """,
            (
                WPStatus.READY.value,
                WPStatus.RUNNING.value,
                WPStatus.FINISHED.value,
                WPStatus.TASK_DONE.value,
            ),
        ).fetchall()
        return [
            TaskSummary(
                task_id=r["task_id"],
                wp_total=r["wp_total"],
                wp_todo=r["wp_todo"],
                wp_running=r["wp_running"],
                wp_finished=r["wp_finished"],
            )
            for r in rows
        ]

    def get_dependencies(self, task_id: int) -> list[int]:
        rows = self.conn.execute(
            f"SELECT depend FROM {self._t} WHERE task_id = ? ORDER BY wp_number ASC;",
            (task_id,),
        ).fetchall()
        return [int(r["depend"]) for r in rows]

    # -------------------------
    # Task lifecycle
    # -------------------------

    def create_task(self, wp_total: int, task_id: Optional[int] = None) -> tuple[int, int]:
        """
        Inserts wp_total READY rows for a task in a single transaction.

        Behavior:
        - task_id omitted: allocate max(task_id) + 1 (1 on an empty table)
        - task_id given and already populated: its rows are deleted first

        Returns (task_id, number of replaced rows).
        """
        require_positive_int(wp_total, "wp_total")
        if task_id is not None:
            require_positive_int(task_id, "task_id")

        try:
            self._begin()

            replaced = 0
            if task_id is None:
                row = self.conn.execute(f"SELECT MAX(task_id) AS m FROM {self._t};").fetchone()
                task_id = 1 if row["m"] is None else int(row["m"]) + 1
            else:
                replaced = self.conn.execute(
                    f"DELETE FROM {self._t} WHERE task_id = ?;", (task_id,)
                ).rowcount

            self.conn.executemany(
                f"INSERT INTO {self._t}(task_id, wp_number, status, lock_owner_flag, depend) "
                f"VALUES (?, ?, ?, 0, 0);",
                ((task_id, n, WPStatus.READY.value) for n in range(1, wp_total + 1)),
            )

            commit(self.conn)
        except Exception:
            rollback(self.conn)
            raise

        _LOG.info("Created task %d with %d WP(s) (replaced %d row(s))", task_id, wp_total, replaced)
        return task_id, replaced

    def delete_task(self, task_id: int) -> int:
        try:
            self._begin()
            deleted = self.conn.execute(
                f"DELETE FROM {self._t} WHERE task_id = ?;", (task_id,)
            ).rowcount
            commit(self.conn)
        except Exception:
            rollback(self.conn)
            raise
        _LOG.info("Deleted task %d (%d row(s))", task_id, deleted)
        return deleted

    # -------------------------
    # State machine
    # -------------------------

    def try_claim(
        self,
        task_id: int,
        mode: ClaimMode = ClaimMode.DEFAULT,
        rng: Optional[random.Random] = None,
        *,
        release_lock_wp: Optional[int] = None,
    ) -> ClaimAttempt:
        """
        One claim attempt: READY & depend=0 -> RUNNING.

        release_lock_wp: wp_number whose lock flag is cleared in the same
        transaction (the caller moves on from a WP that holds the lock).

        The caller owns the retry loop; this never sleeps.
        """
        try:
            self._begin()

            if release_lock_wp is not None:
                self.conn.execute(
                    f"UPDATE {self._t} SET lock_owner_flag = 0 WHERE task_id = ? AND wp_number = ?;",
                    (task_id, release_lock_wp),
                )

            candidates = self.conn.execute(
                f"""
                SELECT row_id, wp_number
                FROM {self._t}
                WHERE task_id = ?
                  AND status = ?
                  AND depend = 0
                ORDER BY wp_number ASC
                {"LIMIT 1" if mode == ClaimMode.DEFAULT else ""};
                """,
                (task_id, WPStatus.READY.value),
            ).fetchall()

            if candidates:
                pick = candidates[0] if mode == ClaimMode.DEFAULT else (rng or random).choice(candidates)

                # Guard again in the UPDATE; only a row count of 1 is a claim.
                updated = self.conn.execute(
                    f"""
                    UPDATE {self._t}
                    SET status = ?
                    WHERE row_id = ?
                      AND status = ?
                      AND depend = 0;
                    """,
                    (WPStatus.RUNNING.value, pick["row_id"], WPStatus.READY.value),
                ).rowcount
                commit(self.conn)

                if updated == 1:
                    _LOG.debug("Task %d: claimed WP %d", task_id, pick["wp_number"])
                    return ClaimAttempt(wp=int(pick["wp_number"]))
                return ClaimAttempt(wp=0, waiting=len(candidates))

            waiting = self.conn.execute(
                f"SELECT COUNT(*) AS c FROM {self._t} WHERE task_id = ? AND status = ?;",
                (task_id, WPStatus.READY.value),
            ).fetchone()["c"]
            commit(self.conn)
            return ClaimAttempt(wp=0, waiting=int(waiting))
        except Exception:
            rollback(self.conn)
            raise

    def finish(self, task_id: int, wp: int, *, lock_wp: Optional[int] = None) -> int:
        """
        Marks a WP FINISHED and releases every row depending on it.

        lock_wp: wp_number whose lock flag is cleared in the same transaction
        (the caller's lock, if it holds one).

        Returns the number of released dependents.
        """
        try:
            self._begin()

            updated = self.conn.execute(
                f"UPDATE {self._t} SET status = ? WHERE task_id = ? AND wp_number = ?;",
                (WPStatus.FINISHED.value, task_id, wp),
            ).rowcount
            if updated == 0:
                raise NotFoundError(
                    f"WP {wp} not found in task {task_id}",
                    details={"task_id": task_id, "wp": wp},
                )

            released = self.conn.execute(
                f"UPDATE {self._t} SET depend = 0 WHERE task_id = ? AND depend = ?;",
                (task_id, wp),
            ).rowcount

            if lock_wp is not None:
                self.conn.execute(
                    f"UPDATE {self._t} SET lock_owner_flag = 0 WHERE task_id = ? AND wp_number = ?;",
                    (task_id, lock_wp),
                )

            commit(self.conn)
        except Exception:
            rollback(self.conn)
            raise

        _LOG.debug("Task %d: finished WP %d, released %d dependent(s)", task_id, wp, released)
        return int(released)

    def complete_if_all_finished(self, task_id: int) -> bool:
        """
        FINISHED -> TASK_DONE for the whole task, once.

        Fires only when every row is FINISHED; a task already marked
        TASK_DONE (wholly or partly) returns False.
        """
        try:
            self._begin()

            statuses = [
                WPStatus(r["status"])
                for r in self.conn.execute(
                    f"SELECT status FROM {self._t} WHERE task_id = ?;", (task_id,)
                ).fetchall()
            ]
            done = bool(statuses) and all(s == WPStatus.FINISHED for s in statuses)
            if done:
                self.conn.execute(
                    f"UPDATE {self._t} SET status = ? WHERE task_id = ?;",
                    (WPStatus.TASK_DONE.value, task_id),
                )

            commit(self.conn)
        except Exception:
            rollback(self.conn)
            raise

        if done:
            _LOG.info("Task %d: all %d WP(s) finished", task_id, len(statuses))
        return done

    def suspend(self, task_id: int) -> int:
        """READY -> SUSPENDED for every row of the task."""
        try:
            self._begin()
            affected = self.conn.execute(
                f"UPDATE {self._t} SET status = ? WHERE task_id = ? AND status = ?;",
                (WPStatus.SUSPENDED.value, task_id, WPStatus.READY.value),
            ).rowcount
            commit(self.conn)
        except Exception:
            rollback(self.conn)
            raise
        _LOG.info("Task %d: suspended %d WP(s)", task_id, affected)
        return int(affected)

    def reset(
        self,
        task_id: int,
        mode: ResetMode = ResetMode.SUSPENDED,
        wps: Optional[Sequence[int]] = None,
    ) -> int:
        """
        Sets a subset of the task's rows back to READY.

        - suspended: SUSPENDED rows
        - running: RUNNING rows, their lock flags cleared
        - all: every row, lock flags cleared
        - specific: the listed wp_numbers, their lock flags cleared
        """
        wp_list: list[int] = []
        if mode == ResetMode.SPECIFIC:
            if not wps:
                raise ValidationError("Reset mode 'specific' requires WP numbers")
            for wp in wps:
                require_positive_int(wp, "wp")
            wp_list = sorted(set(wps))

        try:
            self._begin()

            if mode == ResetMode.SUSPENDED:
                cur = self.conn.execute(
                    f"UPDATE {self._t} SET status = ? WHERE task_id = ? AND status = ?;",
                    (WPStatus.READY.value, task_id, WPStatus.SUSPENDED.value),
                )
            elif mode == ResetMode.RUNNING:
                cur = self.conn.execute(
                    f"""
                    UPDATE {self._t}
                    SET status = ?, lock_owner_flag = 0
                    WHERE task_id = ? AND status = ?;
                    """,
                    (WPStatus.READY.value, task_id, WPStatus.RUNNING.value),
                )
            elif mode == ResetMode.ALL:
                cur = self.conn.execute(
                    f"UPDATE {self._t} SET status = ?, lock_owner_flag = 0 WHERE task_id = ?;",
                    (WPStatus.READY.value, task_id),
                )
            else:
                wp_total = self.conn.execute(
                    f"SELECT COUNT(*) AS c FROM {self._t} WHERE task_id = ?;", (task_id,)
                ).fetchone()["c"]
                out_of_range = [wp for wp in wp_list if wp > wp_total]
                if out_of_range:
                    raise ValidationError(
                        "WP numbers out of range",
                        details={"wp_total": wp_total, "invalid": out_of_range},
                    )
                cur = self.conn.execute(
                    f"""
                    UPDATE {self._t}
                    SET status = ?, lock_owner_flag = 0
                    WHERE task_id = ?
                      AND wp_number IN ({",".join("?" for _ in wp_list)});
                    """,
                    (WPStatus.READY.value, task_id, *wp_list),
                )

            affected = cur.rowcount
            commit(self.conn)
        except Exception:
            rollback(self.conn)
            raise

        _LOG.info("Task %d: reset(%s) affected %d WP(s)", task_id, mode.value, affected)
        return int(affected)

    # -------------------------
    # Advisory lock
    # -------------------------

    def try_acquire_lock(self, task_id: int, wp: int) -> bool:
        """
        Sets the lock flag on wp's row if no row of the task holds it.

        Returns True when wp holds the lock afterwards (including when it
        already held it), False when another WP owns it.
        """
        try:
            self._begin()

            holder = self.conn.execute(
                f"""
                SELECT wp_number FROM {self._t}
                WHERE task_id = ? AND lock_owner_flag = 1
                LIMIT 1;
                """,
                (task_id,),
            ).fetchone()

            if holder is None:
                updated = self.conn.execute(
                    f"UPDATE {self._t} SET lock_owner_flag = 1 WHERE task_id = ? AND wp_number = ?;",
                    (task_id, wp),
                ).rowcount
                if updated == 0:
                    raise NotFoundError(
                        f"WP {wp} not found in task {task_id}",
                        details={"task_id": task_id, "wp": wp},
                    )
                acquired = True
            else:
                acquired = int(holder["wp_number"]) == wp

            commit(self.conn)
        except Exception:
            rollback(self.conn)
            raise

        _LOG.debug("Task %d: WP %d lock attempt -> %s", task_id, wp, acquired)
        return acquired

    def release_lock(self, task_id: int, wp: int) -> bool:
        """
        Clears wp's lock flag if it holds it. Returns False (no write) if not.
        """
        try:
            self._begin()

            row = self.conn.execute(
                f"""
                SELECT row_id, lock_owner_flag FROM {self._t}
                WHERE task_id = ? AND wp_number = ?;
                """,
                (task_id, wp),
            ).fetchone()

            owned = row is not None and bool(row["lock_owner_flag"])
            if owned:
                self.conn.execute(
                    f"UPDATE {self._t} SET lock_owner_flag = 0 WHERE row_id = ?;",
                    (row["row_id"],),
                )

            commit(self.conn)
        except Exception:
            rollback(self.conn)
            raise
        return owned

    def force_release_lock(self, task_id: int) -> int:
        """Clears every lock flag of the task, whoever owns it."""
        try:
            self._begin()
            affected = self.conn.execute(
                f"UPDATE {self._t} SET lock_owner_flag = 0 WHERE task_id = ? AND lock_owner_flag = 1;",
                (task_id,),
            ).rowcount
            commit(self.conn)
        except Exception:
            rollback(self.conn)
            raise
        if affected:
            _LOG.warning("Task %d: lock force-released", task_id)
        return int(affected)

    # -------------------------
    # Dependencies
    # -------------------------

    def set_dependencies(self, task_id: int, depends: Sequence[int]) -> int:
        """
        Replaces the dependency vector of a task (one entry per WP, in
        wp_number order; 0 = no dependency).

        The whole vector is validated before any write; only rows whose
        value changes are updated. Returns the number of changed rows.
        """
        values = list(depends)
        for v in values:
            if isinstance(v, bool) or not isinstance(v, int):
                raise DependencyError("Dependencies must be integers", details={"value": repr(v)})

        try:
            self._begin()

            rows = self.conn.execute(
                f"""
                SELECT row_id, wp_number, depend FROM {self._t}
                WHERE task_id = ?
                ORDER BY wp_number ASC;
                """,
                (task_id,),
            ).fetchall()

            wp_total = len(rows)
            if len(values) != wp_total:
                raise DependencyError(
                    "Dependencies must have one entry per WP",
                    details={"wp_total": wp_total, "given": len(values)},
                )

            invalid = [v for v in values if v < 0 or v > wp_total]
            if invalid:
                raise DependencyError(
                    "Dependencies can not exceed the number of WPs",
                    details={"wp_total": wp_total, "invalid": invalid},
                )

            self_deps = [r["wp_number"] for r, v in zip(rows, values) if v == r["wp_number"]]
            if self_deps:
                raise DependencyError(
                    "A WP can not depend on itself",
                    details={"wps": self_deps},
                )

            changes = [(v, r["row_id"]) for r, v in zip(rows, values) if int(r["depend"]) != v]
            if changes:
                self.conn.executemany(
                    f"UPDATE {self._t} SET depend = ? WHERE row_id = ?;",
                    changes,
                )

            commit(self.conn)
        except Exception:
            rollback(self.conn)
            raise

        _LOG.info("Task %d: updated %d dependency value(s)", task_id, len(changes))
        return len(changes)


def require_positive_int(value: object, name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationError(f"{name} must be an integer >= 1", details={name: repr(value)})
