# tests/test_claim.py
import random
import threading
import time

import pytest

from wpsched.domain.errors import OperationCancelled, ValidationError
from wpsched.domain.states import WPStatus


def test_random_claim_returns_each_wp_once(make_task):
    job = make_task(10, rng=random.Random(1234))

    claimed = []
    while True:
        wp = job.claim("random")
        if not wp:
            break
        claimed.append(wp)

    assert sorted(claimed) == list(range(1, 11))
    assert job.wp == 0


def test_invalid_claim_mode(make_task):
    job = make_task(2)
    with pytest.raises(ValidationError):
        job.claim("newest")
    assert job.refresh().wp_todo == 2


def test_claim_skips_suspended_and_finished(make_task):
    job = make_task(3)
    assert job.claim() == 1
    job.finish()
    job.suspend()

    # wp 2 and 3 are suspended, nothing READY remains
    assert job.claim() == 0
    assert job.refresh().status == [WPStatus.FINISHED, WPStatus.SUSPENDED, WPStatus.SUSPENDED]


def test_concurrent_claimants_never_share_a_wp(make_task, connect):
    n_wps, n_workers = 40, 6
    job = make_task(n_wps)
    results: list[list[int]] = [[] for _ in range(n_workers)]
    errors: list[BaseException] = []

    def worker(idx: int) -> None:
        try:
            handle = connect(job.task_id)
            while True:
                wp = handle.claim()
                if not wp:
                    return
                results[idx].append(wp)
                handle.finish()
        except BaseException as e:  # surfaced by the assertion below
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(n_workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert not errors
    flat = [wp for r in results for wp in r]
    assert len(flat) == n_wps
    assert set(flat) == set(range(1, n_wps + 1))


def test_more_claimants_than_wps(make_task, connect):
    job = make_task(3)
    claimed: list[int] = []
    mutex = threading.Lock()

    def worker() -> None:
        wp = connect(job.task_id).claim("random")
        with mutex:
            claimed.append(wp)

    threads = [threading.Thread(target=worker) for _ in range(7)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    got = [wp for wp in claimed if wp]
    assert sorted(got) == [1, 2, 3]
    assert claimed.count(0) == 4


def test_claim_waits_for_gated_wp(make_task, connect):
    job = make_task(2)
    job.set_dependencies([2, 0])
    assert job.claim() == 2

    result: list[int] = []
    waiter = threading.Thread(target=lambda: result.append(connect(job.task_id).claim()))
    waiter.start()

    time.sleep(0.2)
    assert waiter.is_alive()
    assert result == []

    job.finish()
    waiter.join(timeout=10)
    assert result == [1]


def test_cancel_aborts_gated_claim(make_task, connect):
    job = make_task(2)
    job.set_dependencies([2, 0])
    assert job.claim() == 2

    cancel = threading.Event()
    worker = connect(job.task_id, cancel=cancel)
    timer = threading.Timer(0.1, cancel.set)
    timer.start()
    try:
        with pytest.raises(OperationCancelled):
            worker.claim()
    finally:
        timer.cancel()

    # The gated WP was not touched
    assert worker.refresh().status == [WPStatus.READY, WPStatus.RUNNING]
