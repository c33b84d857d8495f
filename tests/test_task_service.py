# tests/test_task_service.py
import pytest

from taskcore.domain.errors import (
    ConflictError,
    CycleDetectedError,
    DependenciesNotSatisfiedError,
    DependencyError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from taskcore.domain.models import TaskAction, TaskCreate, TaskFilter
from taskcore.domain.states import TaskPriority, TaskSource, TaskStatus


def _create(tasks, task_id=None, **fields):
    fields.setdefault("project_id", "p1")
    fields.setdefault("title", "T")
    return tasks.create_task(TaskCreate(id=task_id, **fields))


def test_create_task_defaults(tasks):
    task = _create(tasks, priority=TaskPriority.HIGH)
    assert task.id
    assert task.status == TaskStatus.PENDING
    assert task.source == TaskSource.MANAGED
    assert tasks.get_task(task.id).priority == TaskPriority.HIGH


def test_create_task_rejections(tasks):
    _create(tasks, "a")
    with pytest.raises(ConflictError):
        _create(tasks, "a")
    with pytest.raises(DependencyError):
        _create(tasks, "b", dependencies=["ghost"])
    with pytest.raises(ValueError):
        TaskCreate(id="c", project_id="p", title="t", dependencies=["c"])


def test_add_dependencies(tasks):
    _create(tasks, "a")
    _create(tasks, "b", dependencies=["a"])
    with pytest.raises(CycleDetectedError):
        tasks.add_dependencies("a", ["b"])
    with pytest.raises(ValidationError):
        tasks.add_dependencies("a", ["a"])


def test_perform_actions(tasks):
    _create(tasks, "a")
    assert tasks.perform("a", TaskAction.START).status == TaskStatus.IN_PROGRESS
    assert tasks.perform("a", "pause").status == TaskStatus.PAUSED
    assert tasks.perform("a", TaskAction.RESUME).status == TaskStatus.IN_PROGRESS
    done = tasks.perform("a", TaskAction.COMPLETE, result={"ok": True})
    assert done.status == TaskStatus.COMPLETED
    assert tasks.get_task("a").result == {"ok": True}

    with pytest.raises(InvalidTransitionError):
        tasks.perform("a", TaskAction.START)


def test_perform_start_checks_dependencies(tasks):
    _create(tasks, "a")
    _create(tasks, "b", dependencies=["a"])
    with pytest.raises(DependenciesNotSatisfiedError):
        tasks.perform("b", TaskAction.START)

    tasks.perform("a", TaskAction.START)
    tasks.perform("a", TaskAction.COMPLETE)
    assert tasks.perform("b", TaskAction.START).status == TaskStatus.IN_PROGRESS


def test_fail_and_retry(tasks):
    _create(tasks, "a")
    tasks.perform("a", TaskAction.START)
    failed = tasks.perform("a", TaskAction.FAIL, reason="oops")
    assert failed.metadata["failure_reason"] == "oops"
    assert tasks.perform("a", TaskAction.RETRY).status == TaskStatus.PENDING


def test_list_and_delete(tasks):
    _create(tasks, "a", project_id="p1")
    _create(tasks, "b", project_id="p2")
    items, total = tasks.list_tasks(TaskFilter(project_id="p1"))
    assert [t.id for t in items] == ["a"]
    assert total == 1

    tasks.delete_task("a")
    with pytest.raises(NotFoundError):
        tasks.get_task("a")
    with pytest.raises(NotFoundError):
        tasks.perform("a", TaskAction.START)
