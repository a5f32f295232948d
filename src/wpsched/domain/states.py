# src/wpsched/domain/states.py
from __future__ import annotations

from enum import IntEnum, StrEnum


class WPStatus(IntEnum):
    """
    Work-package states stored in the DB (status column).

    Transitions:
      - READY -> RUNNING: claimed by a worker (only when depend == 0)
      - RUNNING -> FINISHED: reported finished by the worker
      - FINISHED -> TASK_DONE: all rows of the task at once, by the first
        successful completion check
      - READY -> SUSPENDED: suspend
      - any -> READY: reset (per selected subset)
    """

    READY = 0
    RUNNING = 1
    FINISHED = 2
    TASK_DONE = 3
    SUSPENDED = 4


class ClaimMode(StrEnum):
    DEFAULT = "default"
    RANDOM = "random"


class ResetMode(StrEnum):
    SUSPENDED = "suspended"
    RUNNING = "running"
    ALL = "all"
    SPECIFIC = "specific"
