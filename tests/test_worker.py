# tests/test_worker.py
import threading

import pytest

from wpsched.domain.states import WPStatus
from wpsched.engine import run_worker


def test_worker_runs_every_wp_and_post_processes_once(make_task, connect):
    job = make_task(5)
    seen: list[int] = []
    done_calls: list[int] = []

    processed = run_worker(job, seen.append, on_task_done=lambda: done_calls.append(1))

    assert processed == 5
    assert seen == [1, 2, 3, 4, 5]
    assert done_calls == [1]

    # A late worker finds nothing to do and skips post-processing
    late = connect(job.task_id)
    assert run_worker(late, seen.append, on_task_done=lambda: done_calls.append(1)) == 0
    assert done_calls == [1]


def test_parallel_workers_respect_dependencies(make_task, connect):
    job = make_task(8)
    job.set_dependencies([0, 1, 2, 3, 0, 0, 0, 0])

    order: list[int] = []
    mutex = threading.Lock()
    done_calls: list[int] = []
    counts: list[int] = []

    def work(wp: int) -> None:
        with mutex:
            order.append(wp)

    def on_done() -> None:
        with mutex:
            done_calls.append(1)

    def run() -> None:
        counts.append(run_worker(connect(job.task_id), work, mode="random", on_task_done=on_done))

    threads = [threading.Thread(target=run) for _ in range(3)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert sum(counts) == 8
    assert sorted(order) == list(range(1, 9))
    # chain 1 -> 2 -> 3 -> 4
    assert order.index(1) < order.index(2) < order.index(3) < order.index(4)
    assert done_calls == [1]


def test_failing_work_leaves_wp_running(make_task):
    job = make_task(3)

    def boom(wp: int) -> None:
        if wp == 2:
            raise RuntimeError("simulated crash")

    with pytest.raises(RuntimeError):
        run_worker(job, boom)

    assert job.refresh().status == [WPStatus.FINISHED, WPStatus.RUNNING, WPStatus.READY]

    job.reset("running")
    assert run_worker(job, lambda wp: None) == 2
