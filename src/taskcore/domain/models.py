from __future__ import annotations

from enum import StrEnum
from typing import Annotated, Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .states import RunStatus, TaskPriority, TaskSource, TaskStatus
from .task import Task


TaskId = Annotated[str, Field(min_length=1, max_length=256)]
UnitKey = Annotated[str, Field(min_length=1, max_length=256, pattern=r"^[A-Za-z0-9_.\-]+$")]


# -------------------------
# Tasks
# -------------------------


class TaskCreate(BaseModel):
    """
    Input model for creating a managed task.
    """
    model_config = ConfigDict(extra="forbid")

    id: Optional[TaskId] = None
    project_id: Annotated[str, Field(min_length=1, max_length=256)]
    title: Annotated[str, Field(min_length=1, max_length=512)]
    description: str = ""
    type: Annotated[str, Field(min_length=1, max_length=128)] = "task"
    priority: TaskPriority = TaskPriority.MEDIUM
    dependencies: list[TaskId] = Field(default_factory=list)
    metadata: dict[str, str] = Field(default_factory=dict)

    @field_validator("dependencies")
    @classmethod
    def _validate_dependencies(cls, deps: list[str], info) -> list[str]:
        if len(deps) != len(set(deps)):
            raise ValueError("dependencies must not contain duplicates")

        task_id = info.data.get("id")
        if task_id and task_id in deps:
            raise ValueError("task cannot depend on itself")

        return deps


class TaskView(BaseModel):
    """
    Output model for a single task.
    """
    model_config = ConfigDict(extra="forbid")

    id: str
    project_id: str
    title: str
    description: str
    type: str
    status: TaskStatus
    priority: TaskPriority
    source: TaskSource
    created_at: int
    updated_at: int
    completed_at: Optional[int] = None
    dependencies: list[str] = Field(default_factory=list)
    metadata: dict[str, str] = Field(default_factory=dict)
    natural_key: Optional[str] = None
    content_hash: Optional[str] = None
    result: Optional[dict[str, Any]] = None
    version: int

    @classmethod
    def from_task(cls, task: Task) -> "TaskView":
        return cls(
            id=task.id,
            project_id=task.project_id,
            title=task.title,
            description=task.description,
            type=task.type,
            status=task.status,
            priority=task.priority,
            source=task.source,
            created_at=task.created_at,
            updated_at=task.updated_at,
            completed_at=task.completed_at,
            dependencies=sorted(task.dependencies),
            metadata=dict(task.metadata),
            natural_key=task.natural_key,
            content_hash=task.content_hash,
            result=task.result,
            version=task.version,
        )


class TaskListResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    tasks: list[TaskView]
    total: int


class TaskFilter(BaseModel):
    """Query filter for the persistence port; unset fields do not filter."""
    model_config = ConfigDict(extra="forbid")

    project_id: Optional[str] = None
    status: Optional[TaskStatus] = None
    source: Optional[TaskSource] = None
    type: Optional[str] = None
    limit: Annotated[int, Field(ge=1, le=10_000)] = 200
    offset: Annotated[int, Field(ge=0)] = 0


class TaskAction(StrEnum):
    START = "start"
    PAUSE = "pause"
    RESUME = "resume"
    COMPLETE = "complete"
    FAIL = "fail"
    CANCEL = "cancel"
    SCHEDULE = "schedule"
    RETRY = "retry"


class TaskActionRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reason: Optional[str] = None
    result: Optional[dict[str, Any]] = None


class DependenciesAdd(BaseModel):
    model_config = ConfigDict(extra="forbid")

    dependencies: list[TaskId] = Field(min_length=1)


class ErrorResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    error: str
    code: str
    details: dict = Field(default_factory=dict)


# -------------------------
# Units
# -------------------------


class UnitKind(StrEnum):
    FRAMEWORK = "framework"
    STEP = "step"
    WORKFLOW = "workflow"


class UnitCategory(StrEnum):
    ANALYSIS = "analysis"
    TESTING = "testing"
    REFACTORING = "refactoring"
    DEPLOYMENT = "deployment"
    TASK = "task"
    GIT = "git"
    GENERATE = "generate"
    CHAT = "chat"
    AI = "ai"


FRAMEWORK_CATEGORIES: frozenset[UnitCategory] = frozenset(
    {UnitCategory.ANALYSIS, UnitCategory.TESTING, UnitCategory.REFACTORING, UnitCategory.DEPLOYMENT}
)


class UnitDefinition(BaseModel):
    """
    Registrable definition of a Framework, Step or Workflow.

    `depends_on` entries are `key` or `category/key`; they are resolved lazily
    at build time. Workflows list their ordered step keys in `steps`.
    `settings` may carry per-unit policy (`max_attempts`, `timeout_ms`).
    """
    model_config = ConfigDict(extra="forbid", frozen=True, arbitrary_types_allowed=True)

    key: UnitKey
    category: UnitCategory
    kind: UnitKind = UnitKind.STEP
    version: str = "1.0.0"
    description: str = ""
    capabilities: frozenset[str] = Field(default_factory=frozenset)
    depends_on: tuple[str, ...] = ()
    steps: tuple[str, ...] = ()
    settings: dict[str, Any] = Field(default_factory=dict)
    executable_ref: Optional[Callable[..., Any]] = Field(default=None, exclude=True)

    @model_validator(mode="after")
    def _validate_shape(self):
        if self.kind == UnitKind.FRAMEWORK and self.category not in FRAMEWORK_CATEGORIES:
            raise ValueError(f"framework category must be one of {sorted(c.value for c in FRAMEWORK_CATEGORIES)}")
        if self.kind == UnitKind.WORKFLOW:
            if not self.steps:
                raise ValueError("workflow must declare at least one step")
        elif self.executable_ref is None:
            raise ValueError("executable_ref is required")
        if self.key in self.depends_on or f"{self.category.value}/{self.key}" in self.depends_on:
            raise ValueError("unit cannot depend on itself")
        return self

    @property
    def qualified_key(self) -> str:
        return f"{self.category.value}/{self.key}"

    @property
    def required_keys(self) -> tuple[str, ...]:
        """Everything that must resolve at build time: declared deps, then workflow steps."""
        seen: dict[str, None] = {}
        for ref in (*self.depends_on, *self.steps):
            seen.setdefault(ref, None)
        return tuple(seen)


class UnitView(BaseModel):
    model_config = ConfigDict(extra="forbid")

    key: str
    category: UnitCategory
    kind: UnitKind
    version: str
    description: str
    capabilities: list[str]
    depends_on: list[str]
    steps: list[str]

    @classmethod
    def from_definition(cls, d: UnitDefinition) -> "UnitView":
        return cls(
            key=d.key,
            category=d.category,
            kind=d.kind,
            version=d.version,
            description=d.description,
            capabilities=sorted(d.capabilities),
            depends_on=list(d.depends_on),
            steps=list(d.steps),
        )


# -------------------------
# Workflow runs
# -------------------------


class StepResult(BaseModel):
    """Audit record for one step of a run (diagnosis, not replay)."""
    model_config = ConfigDict(extra="forbid")

    key: str
    attempts: int
    duration_ms: int
    success: bool
    error_code: Optional[str] = None
    error: Optional[str] = None


class WorkflowRun(BaseModel):
    """
    Ephemeral execution record. Created at orchestration start and finalized
    when the run reaches a terminal status; not persisted by the core.
    """
    model_config = ConfigDict(extra="forbid")

    run_id: str
    workflow_key: str
    task_id: str
    status: RunStatus = RunStatus.CREATED
    started_at: Optional[int] = None
    finished_at: Optional[int] = None
    step_results: list[StepResult] = Field(default_factory=list)
    error: Optional[str] = None
    error_code: Optional[str] = None
    output: dict[str, Any] = Field(default_factory=dict)

    @property
    def final_status(self) -> Optional[RunStatus]:
        return self.status if self.status.is_terminal else None


class RunCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    workflow_key: Annotated[str, Field(min_length=1)]
    task_id: TaskId
    context: dict[str, Any] = Field(default_factory=dict)


# -------------------------
# Sync engine
# -------------------------


class ManualTaskRecord(BaseModel):
    """One task as observed in an external, non-authoritative source."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    natural_key: Annotated[str, Field(min_length=1)]
    title: Annotated[str, Field(min_length=1)]
    content: str = ""
    content_hash: Annotated[str, Field(min_length=1)]
    implied_status: Optional[TaskStatus] = None
    project_id: Optional[str] = None
    type: Optional[str] = None
    priority: Optional[TaskPriority] = None
    metadata: dict[str, str] = Field(default_factory=dict)


class TransitionIssue(BaseModel):
    model_config = ConfigDict(extra="forbid")

    task_id: str
    from_status: TaskStatus
    to_status: TaskStatus


class ItemError(BaseModel):
    model_config = ConfigDict(extra="forbid")

    task_id: Optional[str] = None
    natural_key: Optional[str] = None
    code: str
    reason: str


class SyncReport(BaseModel):
    model_config = ConfigDict(extra="forbid")

    imported: list[str] = Field(default_factory=list)
    updated: list[str] = Field(default_factory=list)
    unchanged: list[str] = Field(default_factory=list)
    invalid_transitions: list[TransitionIssue] = Field(default_factory=list)
    errors: list[ItemError] = Field(default_factory=list)
    missing: list[str] = Field(default_factory=list)


class SyncRequest(BaseModel):
    """Records to reconcile; when omitted the configured manual source is scanned."""
    model_config = ConfigDict(extra="forbid")

    records: Optional[list[ManualTaskRecord]] = None


class RunCancel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reason: Optional[str] = None


class BatchTransitionRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    task_ids: list[TaskId] = Field(min_length=1)
    target_status: TaskStatus
    reason: Optional[str] = None


class BatchReport(BaseModel):
    model_config = ConfigDict(extra="forbid")

    target_status: TaskStatus
    successful: list[str] = Field(default_factory=list)
    failed: list[ItemError] = Field(default_factory=list)

    @property
    def successful_count(self) -> int:
        return len(self.successful)

    @property
    def failed_count(self) -> int:
        return len(self.failed)


class RollbackRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    task_ids: list[TaskId] = Field(min_length=1)
    previous_status: TaskStatus


class RollbackItem(BaseModel):
    model_config = ConfigDict(extra="forbid")

    task_id: str
    from_status: TaskStatus
    to_status: TaskStatus


class RollbackReport(BaseModel):
    model_config = ConfigDict(extra="forbid")

    previous_status: TaskStatus
    rolled_back: list[RollbackItem] = Field(default_factory=list)
    failed: list[ItemError] = Field(default_factory=list)


class ValidationItem(BaseModel):
    model_config = ConfigDict(extra="forbid")

    task_id: str
    valid: bool
    current_status: Optional[TaskStatus] = None
    reason: Optional[str] = None


class ValidationReport(BaseModel):
    model_config = ConfigDict(extra="forbid")

    target_status: TaskStatus
    results: list[ValidationItem] = Field(default_factory=list)

    @property
    def valid_count(self) -> int:
        return sum(1 for r in self.results if r.valid)

    @property
    def invalid_count(self) -> int:
        return sum(1 for r in self.results if not r.valid)
