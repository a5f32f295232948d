"""
wpsched: work-package scheduling for independent worker processes that
share nothing but a SQLite table.

    job, task_id = Scheduler.create(db, wp_total=100)      # once
    job = Scheduler.connect(db, task_id)                     # on every worker
    job = Scheduler.connect(None, task_id)                   # db, table and backoff from WPS_* settings
    while wp := job.claim():
        ...                                                  # the work
        job.finish()
    if job.is_finished():                                    # true once per task
        ...                                                  # post-processing
"""

from .backoff import BackoffPolicy
from .domain import ClaimMode, ResetMode, WPStatus
from .engine import Scheduler, run_worker
from .storage import SQLiteDB

__all__ = [
    "BackoffPolicy",
    "ClaimMode",
    "ResetMode",
    "WPStatus",
    "Scheduler",
    "run_worker",
    "SQLiteDB",
]
