# src/taskcore/engine/tasks.py
from __future__ import annotations

from typing import Any, Optional, Sequence

from taskcore.domain.errors import ConcurrentModificationError, NotFoundError, ValidationError
from taskcore.domain.models import TaskAction, TaskCreate, TaskFilter
from taskcore.domain.states import TaskSource, TaskStatus
from taskcore.domain.task import Task, new_task_id
from taskcore.logging import get_logger
from taskcore.storage.port import TaskStore

_LOG = get_logger(__name__)


class TaskService:
    """
    Managed-task operations on top of the persistence port.

    Every lifecycle action loads the task, runs the named operation on it and
    saves it as a compare-and-set; a concurrent modification is retried once.
    """

    def __init__(self, store: TaskStore) -> None:
        self._store = store

    def create_task(self, payload: TaskCreate) -> Task:
        task = Task(
            id=payload.id or new_task_id(),
            project_id=payload.project_id,
            title=payload.title,
            description=payload.description,
            type=payload.type,
            status=TaskStatus.PENDING,
            priority=payload.priority,
            source=TaskSource.MANAGED,
            dependencies=set(payload.dependencies),
            metadata=dict(payload.metadata),
        )
        self._store.insert(task)
        _LOG.info("Created task %s (%d dependencies)", task.id, len(task.dependencies))
        return task

    def add_dependencies(self, task_id: str, dep_ids: Sequence[str]) -> Task:
        if task_id in dep_ids:
            raise ValidationError("Task cannot depend on itself", details={"id": task_id})
        return self._store.add_dependencies(task_id, list(dict.fromkeys(dep_ids)))

    def get_task(self, task_id: str) -> Task:
        task = self._store.get(task_id)
        if task is None:
            raise NotFoundError(f"Task not found: {task_id}", details={"id": task_id})
        return task

    def list_tasks(self, flt: Optional[TaskFilter] = None) -> tuple[list[Task], int]:
        flt = flt or TaskFilter()
        return list(self._store.query(flt)), self._store.count(flt)

    def delete_task(self, task_id: str) -> None:
        self._store.delete(task_id)

    def perform(
        self,
        task_id: str,
        action: TaskAction,
        *,
        reason: Optional[str] = None,
        result: Optional[dict[str, Any]] = None,
    ) -> Task:
        action = TaskAction(action)
        for attempt in (1, 2):
            task = self.get_task(task_id)
            self._apply(task, action, reason, result)
            try:
                saved = self._store.save(task)
            except ConcurrentModificationError:
                if attempt == 2:
                    raise
                _LOG.info("Task %s changed concurrently; retrying %s once", task_id, action.value)
                continue
            _LOG.info("Task %s: %s -> %s", task_id, action.value, saved.status.value)
            return saved
        raise AssertionError("unreachable")

    def _apply(self, task: Task, action: TaskAction, reason: Optional[str], result: Optional[dict[str, Any]]) -> None:
        if action == TaskAction.START:
            task.start(self._store.get)
        elif action == TaskAction.PAUSE:
            task.pause()
        elif action == TaskAction.RESUME:
            task.resume()
        elif action == TaskAction.COMPLETE:
            task.complete(result)
        elif action == TaskAction.FAIL:
            task.fail(reason or "failed by request")
        elif action == TaskAction.CANCEL:
            task.cancel(reason)
        elif action == TaskAction.SCHEDULE:
            task.schedule()
        else:
            task.retry()
