# tests/test_create.py
import sqlite3

import pytest

from wpsched.domain.errors import SchemaMismatchError, TaskOverwriteWarning, ValidationError
from wpsched.domain.states import WPStatus
from wpsched.engine import Scheduler
from wpsched.storage import SQLiteDB


def test_create_on_empty_table_then_claim_in_order(db: SQLiteDB, fast_backoff):
    job, task_id = Scheduler.create(db, 5, backoff=fast_backoff)

    assert task_id == 1
    assert job.wp_total == 5
    assert job.wp_todo == 5
    assert job.status == [WPStatus.READY] * 5
    assert job.depends == [0] * 5

    claimed = [job.claim() for _ in range(5)]
    assert claimed == [1, 2, 3, 4, 5]
    assert job.claim() == 0

    job.refresh()
    assert job.wp_running == 5
    assert job.wp_todo == 0


def test_task_ids_are_allocated_after_max(db: SQLiteDB):
    _, first = Scheduler.create(db, 2)
    _, explicit = Scheduler.create(db, 2, task_id=10)
    _, nxt = Scheduler.create(db, 2)

    assert first == 1
    assert explicit == 10
    assert nxt == 11


def test_create_with_existing_id_overwrites(db: SQLiteDB, make_task, connect):
    job = make_task(5)
    job.claim()
    job.claim()
    job.finish()

    with pytest.warns(TaskOverwriteWarning):
        new_job, task_id = Scheduler.create(db, 3, task_id=job.task_id)

    assert task_id == job.task_id
    view = connect(task_id).refresh()
    assert view.wp_total == 3
    assert view.status == [WPStatus.READY] * 3
    assert new_job.wp_total == 3


def test_create_leaves_other_tasks_alone(make_task, connect):
    a = make_task(4)
    b = make_task(2)
    assert a.claim() == 1

    with pytest.warns(TaskOverwriteWarning):
        make_task(6, task_id=b.task_id)

    assert connect(a.task_id).refresh().status == [WPStatus.RUNNING] + [WPStatus.READY] * 3


@pytest.mark.parametrize("wp_total", [0, -1, True, 2.5])
def test_create_rejects_invalid_wp_total(db: SQLiteDB, wp_total):
    with pytest.raises(ValidationError):
        Scheduler.create(db, wp_total)


def test_create_rejects_invalid_task_id(db: SQLiteDB):
    with pytest.raises(ValidationError):
        Scheduler.create(db, 3, task_id=0)


def test_schema_mismatch_is_fatal(db: SQLiteDB):
    conn = sqlite3.connect(str(db.db_path))
    try:
        conn.execute("CREATE TABLE work_packages(job INTEGER PRIMARY KEY, task INTEGER, wp INTEGER);")
        conn.commit()
    finally:
        conn.close()

    with pytest.raises(SchemaMismatchError) as exc:
        Scheduler.create(db, 3)
    assert exc.value.code == "SCHEMA_MISMATCH"


def test_delete_task(make_task, connect):
    job = make_task(3)
    other = make_task(2)

    assert job.delete_task() == 3
    assert job.wp_total == 0

    gone = connect(job.task_id)
    assert gone.wp_total == 0
    assert gone.claim() == 0
    assert connect(other.task_id).wp_total == 2


def test_connect_loads_counters(make_task, connect):
    job = make_task(4)
    job.claim()
    job.finish()
    job.claim()

    worker = connect(job.task_id)
    assert worker.wp_total == 4
    assert worker.wp_todo == 2
    assert worker.wp_running == 1
    assert worker.wp_finished == 1
    assert worker.wp == 0


def test_custom_table_name(db: SQLiteDB, fast_backoff):
    job, task_id = Scheduler.create(db, 2, table="alice_jobs-v2", backoff=fast_backoff)
    assert task_id == 1
    assert job.claim() == 1

    # Separate table: the default one has no tasks
    other, other_id = Scheduler.create(db, 1)
    assert other_id == 1
