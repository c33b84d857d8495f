# src/taskcore/storage/port.py
from __future__ import annotations

from typing import Optional, Protocol, Sequence

from taskcore.domain.models import TaskFilter
from taskcore.domain.states import TaskStatus
from taskcore.domain.task import Task


class TaskStore(Protocol):
    """
    Persistence port consumed by the core.

    Implementations must give at least read-committed isolation per task row
    and make `save` a compare-and-set on `Task.version`.
    """

    def get(self, task_id: str) -> Optional[Task]: ...

    def get_by_natural_key(self, key: str) -> Optional[Task]: ...

    def insert(self, task: Task) -> Task:
        """Persists a new task (rejecting duplicates, missing deps and cycles)."""
        ...

    def save(self, task: Task) -> Task:
        """
        Writes an existing task as a compare-and-set on `task.version` (the
        version it was loaded at). A moved version raises
        ConcurrentModificationError; on success the version is bumped in place.
        """
        ...

    def delete(self, task_id: str) -> None: ...

    def query(self, flt: Optional[TaskFilter] = None) -> Sequence[Task]: ...

    def count(self, flt: Optional[TaskFilter] = None) -> int: ...

    def add_dependencies(self, task_id: str, dep_ids: Sequence[str]) -> Task: ...

    def list_status_history(self, task_id: str, limit: int = 5) -> Sequence[TaskStatus]:
        """Newest first, bounded to `limit` entries."""
        ...
