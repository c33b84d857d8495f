# src/taskcore/domain/states.py
from __future__ import annotations

from enum import StrEnum

from .errors import InvalidTransitionError


class TaskStatus(StrEnum):
    """
    Lifecycle states of a task.

    Semantics:
      - PENDING: created, not started; may be waiting on dependencies
      - SCHEDULED: accepted for a later start
      - IN_PROGRESS: being worked on (a workflow run holds the task)
      - PAUSED: suspended, may resume
      - COMPLETED / CANCELLED: terminal
      - FAILED: terminal unless explicitly retried (back to PENDING)
    """

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"
    SCHEDULED = "scheduled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: frozenset[TaskStatus] = frozenset({TaskStatus.COMPLETED, TaskStatus.CANCELLED})

# Single source of truth for legal moves. Anything not listed is rejected.
_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.SCHEDULED, TaskStatus.CANCELLED}),
    TaskStatus.SCHEDULED: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED}),
    TaskStatus.IN_PROGRESS: frozenset(
        {TaskStatus.PAUSED, TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED}
    ),
    TaskStatus.PAUSED: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.CANCELLED: frozenset(),
    TaskStatus.FAILED: frozenset({TaskStatus.PENDING}),
}


def allowed_transitions(current: TaskStatus) -> frozenset[TaskStatus]:
    return _TRANSITIONS[TaskStatus(current)]


def can_transition(current: TaskStatus, target: TaskStatus) -> bool:
    """
    Pure and total: every (current, target) pair of known statuses has an answer.
    Self-transitions are not in the table and are therefore rejected.
    """
    return TaskStatus(target) in _TRANSITIONS[TaskStatus(current)]


def transition(current: TaskStatus, target: TaskStatus) -> TaskStatus:
    """
    Returns the target status if the move is legal, otherwise raises
    InvalidTransitionError naming both ends. Has no side effects.
    """
    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"Invalid status transition: {TaskStatus(current).value} -> {TaskStatus(target).value}",
            details={"from": TaskStatus(current).value, "to": TaskStatus(target).value},
        )
    return TaskStatus(target)


class TaskPriority(StrEnum):
    """Ordered priority: LOW < MEDIUM < HIGH < CRITICAL."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, TaskPriority):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, TaskPriority):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, TaskPriority):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, TaskPriority):
            return NotImplemented
        return self.rank >= other.rank


_PRIORITY_RANK = {
    TaskPriority.LOW: 0,
    TaskPriority.MEDIUM: 1,
    TaskPriority.HIGH: 2,
    TaskPriority.CRITICAL: 3,
}


class TaskSource(StrEnum):
    MANUAL = "manual"    # discovered from an external system
    MANAGED = "managed"  # created directly


class RunStatus(StrEnum):
    """Workflow run lifecycle: CREATED -> RUNNING -> {SUCCEEDED, FAILED, CANCELLED}."""

    CREATED = "created"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.SUCCEEDED, RunStatus.FAILED, RunStatus.CANCELLED)
