# src/taskcore/domain/task.py
from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from .errors import DependenciesNotSatisfiedError, InvalidTransitionError
from .states import TaskPriority, TaskSource, TaskStatus, can_transition, transition

# Looks up another task by id (None if it does not exist).
TaskResolver = Callable[[str], Optional["Task"]]


def now_ms() -> int:
    return int(time.time() * 1000)


def new_task_id() -> str:
    return str(uuid.uuid4())


@dataclass
class Task:
    """
    Task aggregate.

    Status only moves through the named operations below; each one asks
    `states.transition` for permission and leaves the task untouched when
    the move is rejected.
    """

    id: str
    project_id: str
    title: str
    description: str = ""
    type: str = "task"
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    source: TaskSource = TaskSource.MANAGED
    created_at: int = field(default_factory=now_ms)
    updated_at: int = 0
    dependencies: set[str] = field(default_factory=set)
    metadata: dict[str, str] = field(default_factory=dict)

    natural_key: Optional[str] = None
    content_hash: Optional[str] = None
    result: Optional[dict[str, Any]] = None
    completed_at: Optional[int] = None
    version: int = 0

    def __post_init__(self) -> None:
        self.status = TaskStatus(self.status)
        self.priority = TaskPriority(self.priority)
        self.source = TaskSource(self.source)
        self.dependencies = set(self.dependencies)
        if self.id in self.dependencies:
            raise ValueError("task cannot depend on itself")
        if not self.updated_at:
            self.updated_at = self.created_at

    # -------------------------
    # Predicates (no mutation)
    # -------------------------

    def can_start(self) -> bool:
        return self.status != TaskStatus.PAUSED and can_transition(self.status, TaskStatus.IN_PROGRESS)

    def can_pause(self) -> bool:
        return can_transition(self.status, TaskStatus.PAUSED)

    def can_resume(self) -> bool:
        return self.status == TaskStatus.PAUSED and can_transition(self.status, TaskStatus.IN_PROGRESS)

    def can_complete(self) -> bool:
        return can_transition(self.status, TaskStatus.COMPLETED)

    def can_fail(self) -> bool:
        return can_transition(self.status, TaskStatus.FAILED)

    def can_cancel(self) -> bool:
        return can_transition(self.status, TaskStatus.CANCELLED)

    def can_schedule(self) -> bool:
        return can_transition(self.status, TaskStatus.SCHEDULED)

    def can_retry(self) -> bool:
        return can_transition(self.status, TaskStatus.PENDING)

    # -------------------------
    # Named operations
    # -------------------------

    def start(self, resolve: Optional[TaskResolver] = None) -> None:
        """
        PENDING/SCHEDULED -> IN_PROGRESS.

        The dependency gate is checked first: any dependency that does not
        resolve to a COMPLETED task fails the call regardless of own status.
        """
        unmet = self.unmet_dependencies(resolve)
        if unmet:
            raise DependenciesNotSatisfiedError(
                f"Task {self.id} has unfinished dependencies",
                details={"id": self.id, "unmet": unmet},
            )
        if self.status == TaskStatus.PAUSED:
            # resuming is a different operation
            raise self._rejected(TaskStatus.IN_PROGRESS, operation="start")
        self._move(TaskStatus.IN_PROGRESS)

    def pause(self) -> None:
        self._move(TaskStatus.PAUSED)

    def resume(self) -> None:
        if self.status != TaskStatus.PAUSED:
            raise self._rejected(TaskStatus.IN_PROGRESS, operation="resume")
        self._move(TaskStatus.IN_PROGRESS)

    def complete(self, result: Optional[dict[str, Any]] = None) -> None:
        self._move(TaskStatus.COMPLETED)
        self.result = dict(result) if result is not None else None
        self.completed_at = self.updated_at

    def fail(self, reason: str) -> None:
        self._move(TaskStatus.FAILED)
        self.metadata["failure_reason"] = str(reason)

    def cancel(self, reason: Optional[str] = None) -> None:
        self._move(TaskStatus.CANCELLED)
        if reason:
            self.metadata["cancel_reason"] = str(reason)

    def schedule(self) -> None:
        self._move(TaskStatus.SCHEDULED)

    def retry(self) -> None:
        """Explicit retry of a failed task (FAILED -> PENDING); never automatic."""
        self._move(TaskStatus.PENDING)
        self.metadata.pop("failure_reason", None)

    def apply_status(
        self,
        target: TaskStatus,
        *,
        resolve: Optional[TaskResolver] = None,
        reason: Optional[str] = None,
        result: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Reaches `target` through the named operation that leads there from the
        current status. Used by bulk operations that only know a target.
        """
        target = TaskStatus(target)
        if target == TaskStatus.IN_PROGRESS:
            if self.status == TaskStatus.PAUSED:
                self.resume()
            else:
                self.start(resolve)
        elif target == TaskStatus.PAUSED:
            self.pause()
        elif target == TaskStatus.COMPLETED:
            self.complete(result)
        elif target == TaskStatus.FAILED:
            self.fail(reason or "marked failed")
        elif target == TaskStatus.CANCELLED:
            self.cancel(reason)
        elif target == TaskStatus.SCHEDULED:
            self.schedule()
        else:
            self.retry()

    def force_status(self, status: TaskStatus) -> None:
        """
        Sets status without consulting the transition table.
        Only the sync engine's rollback may call this.
        """
        self.status = TaskStatus(status)
        self.touch()

    # -------------------------
    # Helpers
    # -------------------------

    def unmet_dependencies(self, resolve: Optional[TaskResolver]) -> list[str]:
        if not self.dependencies:
            return []
        unmet: list[str] = []
        for dep_id in sorted(self.dependencies):
            dep = resolve(dep_id) if resolve is not None else None
            if dep is None or dep.status != TaskStatus.COMPLETED:
                unmet.append(dep_id)
        return unmet

    def touch(self) -> None:
        # updated_at must strictly increase even when the clock does not.
        self.updated_at = max(now_ms(), self.updated_at + 1)

    def _move(self, target: TaskStatus) -> None:
        try:
            self.status = transition(self.status, target)
        except InvalidTransitionError as e:
            e.details = {**(e.details or {}), "id": self.id}
            raise
        self.touch()

    def _rejected(self, target: TaskStatus, *, operation: str) -> InvalidTransitionError:
        return InvalidTransitionError(
            f"Cannot {operation} task {self.id}: {self.status.value} -> {target.value}",
            details={"id": self.id, "from": self.status.value, "to": target.value, "operation": operation},
        )
