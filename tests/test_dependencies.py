# tests/test_dependencies.py
import pytest

from wpsched.domain.errors import DependencyError
from wpsched.domain.states import WPStatus


def test_dependency_blocks_until_predecessor_finishes(make_task, connect):
    job = make_task(5)
    assert job.set_dependencies([0, 0, 1, 0, 0]) == 1
    assert job.depends == [0, 0, 1, 0, 0]

    first = connect(job.task_id)
    assert first.claim() == 1

    # wp 3 is gated on wp 1
    others = [connect(job.task_id) for _ in range(3)]
    assert [h.claim() for h in others] == [2, 4, 5]
    assert job.refresh().status[2] == WPStatus.READY

    assert first.finish() == 1
    assert job.get_dependencies() == [0, 0, 0, 0, 0]

    assert job.claim() == 3


def test_finish_releases_every_dependent(make_task):
    job = make_task(4)
    job.set_dependencies([0, 1, 1, 2])

    assert job.claim() == 1
    assert job.finish() == 2
    assert job.get_dependencies() == [0, 0, 0, 2]

    assert job.claim() == 2
    job.finish()
    assert job.get_dependencies() == [0, 0, 0, 0]


def test_only_changed_rows_are_written(make_task):
    job = make_task(3)
    assert job.set_dependencies([0, 1, 2]) == 2
    assert job.set_dependencies([0, 1, 2]) == 0
    assert job.set_dependencies([0, 1, 0]) == 1


@pytest.mark.parametrize(
    "depends",
    [
        [0, 0],            # too short
        [0, 0, 0, 0],      # too long
        [0, 0, 4],         # out of range
        [0, -1, 0],        # negative
        [0, 2, 0],         # wp 2 depends on itself
        [0, 1, "1"],       # not an int
    ],
)
def test_invalid_dependencies_write_nothing(make_task, depends):
    job = make_task(3)
    job.set_dependencies([0, 1, 0])

    with pytest.raises(DependencyError):
        job.set_dependencies(depends)

    assert job.get_dependencies() == [0, 1, 0]


def test_gated_wp_is_never_claimed_randomly(make_task):
    job = make_task(6)
    job.set_dependencies([0, 1, 1, 1, 1, 1])

    assert job.claim("random") == 1
    view = job.refresh()
    assert view.status[1:] == [WPStatus.READY] * 5
