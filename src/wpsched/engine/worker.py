# src/wpsched/engine/worker.py
from __future__ import annotations

import time
from typing import Callable, Optional, Union

from wpsched.domain.states import ClaimMode
from wpsched.logging import get_logger

from .scheduler import Scheduler

_LOG = get_logger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


def run_worker(
    scheduler: Scheduler,
    fn: Callable[[int], None],
    *,
    mode: Union[ClaimMode, str] = ClaimMode.DEFAULT,
    on_task_done: Optional[Callable[[], None]] = None,
) -> int:
    """
    Standard worker loop: claim a WP, run fn(wp), report it finished, until
    the task has no WP left. Returns the number of WPs processed here.

    After the loop, the first worker to observe that every WP has finished
    runs on_task_done (task-wide post-processing). Other workers skip it.

    If fn raises, the WP is left RUNNING (like a crashed worker) and the
    exception propagates; reset("running") makes such WPs claimable again.
    """
    processed = 0
    while True:
        wp = scheduler.claim(mode)
        if not wp:
            break

        start = now_ms()
        _LOG.info("Task %d: running WP %d", scheduler.task_id, wp)
        try:
            fn(wp)
        except Exception:
            _LOG.exception("Task %d: WP %d raised; left RUNNING", scheduler.task_id, wp)
            raise

        scheduler.finish()
        processed += 1
        _LOG.info("Task %d: finished WP %d in %dms", scheduler.task_id, wp, now_ms() - start)

    if scheduler.is_finished():
        _LOG.info("Task %d: all WPs finished", scheduler.task_id)
        if on_task_done is not None:
            on_task_done()

    return processed
