# src/taskcore/domain/errors.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class TaskCoreError(Exception):
    """
    Base domain error.

    Every error carries a stable `code` and JSON-friendly `details`, so reports
    and the API layer can render a precise diagnostic without re-querying state.
    """
    message: str
    code: str = "TASKCORE_ERROR"
    details: Optional[dict[str, Any]] = None

    def __str__(self) -> str:
        return self.message


@dataclass
class ValidationError(TaskCoreError):
    code: str = "VALIDATION_ERROR"


@dataclass
class NotFoundError(TaskCoreError):
    code: str = "NOT_FOUND"


@dataclass
class ConflictError(TaskCoreError):
    code: str = "CONFLICT"


@dataclass
class DependencyError(TaskCoreError):
    code: str = "DEPENDENCY_ERROR"


@dataclass
class CycleDetectedError(TaskCoreError):
    code: str = "CYCLE_DETECTED"


@dataclass
class ConcurrentModificationError(TaskCoreError):
    code: str = "CONCURRENT_MODIFICATION"


# -------------------------
# Task lifecycle
# -------------------------


@dataclass
class InvalidTransitionError(TaskCoreError):
    code: str = "INVALID_TRANSITION"


@dataclass
class DependenciesNotSatisfiedError(TaskCoreError):
    code: str = "DEPENDENCIES_NOT_SATISFIED"


# -------------------------
# Registry / builder
# -------------------------


@dataclass
class BuildError(TaskCoreError):
    """Structured build failure: `code` is the kind, details carry the offending key."""
    code: str = "BUILD_ERROR"


@dataclass
class DuplicateKeyError(BuildError):
    code: str = "DUPLICATE_KEY"


@dataclass
class InvalidDefinitionError(BuildError):
    code: str = "INVALID_DEFINITION"


@dataclass
class UnresolvedDependencyError(BuildError):
    code: str = "UNRESOLVED_DEPENDENCY"


# -------------------------
# Orchestration
# -------------------------


@dataclass
class TaskBusyError(TaskCoreError):
    code: str = "TASK_BUSY"


@dataclass
class StepTimeoutError(TaskCoreError):
    code: str = "STEP_TIMEOUT"


@dataclass
class StepFailedError(TaskCoreError):
    code: str = "STEP_FAILED"


class TransientStepError(Exception):
    """
    Raised by step executables to flag a failure as retryable
    (I/O hiccup, driver not ready, ...). Anything else is fatal for the step.
    """
    transient = True


# -------------------------
# Sync engine
# -------------------------


@dataclass
class InvalidSyncTransitionError(TaskCoreError):
    code: str = "INVALID_SYNC_TRANSITION"


@dataclass
class NoSuchHistoricalStatusError(TaskCoreError):
    code: str = "NO_SUCH_HISTORICAL_STATUS"
