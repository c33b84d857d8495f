"""
Domain layer for taskcore.

- states: TaskStatus state machine, priority/source/run enums
- task: Task aggregate and its named lifecycle operations
- models: pydantic models for definitions, runs and reports
- errors: domain-level exceptions
"""

from .states import (
    RunStatus,
    TaskPriority,
    TaskSource,
    TaskStatus,
    allowed_transitions,
    can_transition,
    transition,
)
from .task import Task
from .models import (
    BatchReport,
    ErrorResponse,
    ManualTaskRecord,
    RollbackReport,
    StepResult,
    SyncReport,
    TaskCreate,
    TaskFilter,
    TaskView,
    UnitCategory,
    UnitDefinition,
    UnitKind,
    ValidationReport,
    WorkflowRun,
)
from .errors import (
    TaskCoreError,
    BuildError,
    ConcurrentModificationError,
    ConflictError,
    CycleDetectedError,
    DependenciesNotSatisfiedError,
    DependencyError,
    DuplicateKeyError,
    InvalidDefinitionError,
    InvalidSyncTransitionError,
    InvalidTransitionError,
    NoSuchHistoricalStatusError,
    NotFoundError,
    StepFailedError,
    StepTimeoutError,
    TaskBusyError,
    TransientStepError,
    UnresolvedDependencyError,
    ValidationError,
)

__all__ = [
    "TaskStatus",
    "TaskPriority",
    "TaskSource",
    "RunStatus",
    "allowed_transitions",
    "can_transition",
    "transition",
    "Task",
    "TaskCreate",
    "TaskFilter",
    "TaskView",
    "UnitCategory",
    "UnitDefinition",
    "UnitKind",
    "ManualTaskRecord",
    "StepResult",
    "WorkflowRun",
    "SyncReport",
    "BatchReport",
    "RollbackReport",
    "ValidationReport",
    "ErrorResponse",
    "TaskCoreError",
    "BuildError",
    "ConcurrentModificationError",
    "ConflictError",
    "CycleDetectedError",
    "DependenciesNotSatisfiedError",
    "DependencyError",
    "DuplicateKeyError",
    "InvalidDefinitionError",
    "InvalidSyncTransitionError",
    "InvalidTransitionError",
    "NoSuchHistoricalStatusError",
    "NotFoundError",
    "StepFailedError",
    "StepTimeoutError",
    "TaskBusyError",
    "TransientStepError",
    "UnresolvedDependencyError",
    "ValidationError",
]
