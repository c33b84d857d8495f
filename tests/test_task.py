# tests/test_task.py
import pytest

from taskcore.domain.errors import DependenciesNotSatisfiedError, InvalidTransitionError
from taskcore.domain.states import TaskStatus
from taskcore.domain.task import Task


def _task(task_id: str = "t1", **fields) -> Task:
    return Task(id=task_id, project_id="p1", title="T", **fields)


def _resolver(*tasks: Task):
    by_id = {t.id: t for t in tasks}
    return by_id.get


def test_lifecycle_start_complete_then_start_again_is_rejected():
    task = _task()
    task.start()
    assert task.status == TaskStatus.IN_PROGRESS

    task.complete({"answer": 42})
    assert task.status == TaskStatus.COMPLETED
    assert task.result == {"answer": 42}
    assert task.completed_at == task.updated_at

    with pytest.raises(InvalidTransitionError) as exc:
        task.start()
    assert exc.value.details["from"] == "completed"
    assert exc.value.details["to"] == "in_progress"
    assert exc.value.details["id"] == "t1"
    assert task.status == TaskStatus.COMPLETED


def test_rejected_operation_leaves_task_untouched():
    task = _task()
    before = (task.status, task.updated_at, dict(task.metadata))
    with pytest.raises(InvalidTransitionError):
        task.pause()
    assert (task.status, task.updated_at, dict(task.metadata)) == before


def test_updated_at_strictly_increases():
    task = _task()
    seen = [task.updated_at]
    task.start()
    seen.append(task.updated_at)
    task.pause()
    seen.append(task.updated_at)
    task.resume()
    seen.append(task.updated_at)
    assert seen == sorted(seen)
    assert len(set(seen)) == len(seen)


def test_fail_records_reason_and_retry_clears_it():
    task = _task()
    task.start()
    task.fail("disk full")
    assert task.status == TaskStatus.FAILED
    assert task.metadata["failure_reason"] == "disk full"

    task.retry()
    assert task.status == TaskStatus.PENDING
    assert "failure_reason" not in task.metadata


def test_cancel_records_reason():
    task = _task()
    task.cancel("not needed")
    assert task.status == TaskStatus.CANCELLED
    assert task.metadata["cancel_reason"] == "not needed"


def test_pause_and_resume():
    task = _task()
    task.start()
    task.pause()
    assert task.can_resume()
    assert not task.can_start()
    with pytest.raises(InvalidTransitionError):
        task.start()
    task.resume()
    assert task.status == TaskStatus.IN_PROGRESS


def test_resume_requires_paused():
    task = _task()
    assert not task.can_resume()
    with pytest.raises(InvalidTransitionError):
        task.resume()


def test_schedule_then_start():
    task = _task()
    task.schedule()
    assert task.status == TaskStatus.SCHEDULED
    assert not task.can_schedule()
    task.start()
    assert task.status == TaskStatus.IN_PROGRESS


def test_predicates_do_not_mutate():
    task = _task()
    assert task.can_start() and task.can_cancel() and task.can_schedule()
    assert not (task.can_pause() or task.can_complete() or task.can_fail() or task.can_retry())
    assert task.status == TaskStatus.PENDING


def test_start_with_incomplete_dependency_fails():
    dep = _task("dep")
    task = _task("t1", dependencies={"dep"})
    with pytest.raises(DependenciesNotSatisfiedError) as exc:
        task.start(_resolver(dep))
    assert exc.value.details["unmet"] == ["dep"]
    assert task.status == TaskStatus.PENDING


def test_dependency_gate_is_checked_regardless_of_own_status():
    dep = _task("dep")
    for status in (TaskStatus.COMPLETED, TaskStatus.PAUSED, TaskStatus.IN_PROGRESS, TaskStatus.FAILED):
        task = _task("t1", dependencies={"dep"}, status=status)
        with pytest.raises(DependenciesNotSatisfiedError):
            task.start(_resolver(dep))
        assert task.status == status


def test_missing_dependency_counts_as_unmet():
    task = _task("t1", dependencies={"ghost"})
    with pytest.raises(DependenciesNotSatisfiedError):
        task.start(_resolver())
    with pytest.raises(DependenciesNotSatisfiedError):
        task.start()


def test_start_once_dependency_completed():
    dep = _task("dep", status=TaskStatus.COMPLETED)
    task = _task("t1", dependencies={"dep"})
    task.start(_resolver(dep))
    assert task.status == TaskStatus.IN_PROGRESS


def test_self_dependency_is_rejected():
    with pytest.raises(ValueError):
        _task("t1", dependencies={"t1"})


def test_apply_status_routes_through_named_operations():
    task = _task()
    task.apply_status(TaskStatus.IN_PROGRESS)
    task.apply_status(TaskStatus.PAUSED)
    task.apply_status(TaskStatus.IN_PROGRESS)
    assert task.status == TaskStatus.IN_PROGRESS
    task.apply_status(TaskStatus.FAILED, reason="boom")
    assert task.metadata["failure_reason"] == "boom"
    task.apply_status(TaskStatus.PENDING)
    assert task.status == TaskStatus.PENDING

    with pytest.raises(InvalidTransitionError):
        task.apply_status(TaskStatus.COMPLETED)


def test_force_status_bypasses_table():
    task = _task(status=TaskStatus.COMPLETED)
    task.force_status(TaskStatus.IN_PROGRESS)
    assert task.status == TaskStatus.IN_PROGRESS
