# src/taskcore/api/routes.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends, Query, Response
from fastapi.responses import JSONResponse

from taskcore.domain.errors import (
    ConcurrentModificationError,
    ConflictError,
    DuplicateKeyError,
    NotFoundError,
    TaskBusyError,
    TaskCoreError,
    ValidationError,
)
from taskcore.domain.models import (
    BatchReport,
    BatchTransitionRequest,
    DependenciesAdd,
    ErrorResponse,
    RollbackReport,
    RollbackRequest,
    RunCancel,
    RunCreate,
    SyncReport,
    SyncRequest,
    TaskAction,
    TaskActionRequest,
    TaskCreate,
    TaskFilter,
    TaskListResponse,
    TaskView,
    UnitCategory,
    UnitView,
    ValidationReport,
    WorkflowRun,
)
from taskcore.domain.states import TaskSource, TaskStatus
from taskcore.engine import Orchestrator, StatusSyncEngine, TaskService, UnitRegistry
from taskcore.logging import get_logger
from taskcore.sources import ManualSource

from .deps import get_manual_source, get_orchestrator, get_registry, get_sync_engine, get_task_service

_LOG = get_logger(__name__)
router = APIRouter()


def _http_status(err: TaskCoreError) -> int:
    if isinstance(err, NotFoundError):
        return 404
    if isinstance(err, (ConflictError, DuplicateKeyError, TaskBusyError, ConcurrentModificationError)):
        return 409
    return 400


def _error_response(err: TaskCoreError) -> JSONResponse:
    payload = ErrorResponse(
        error=err.message,
        code=err.code,
        details=err.details or {},
    ).model_dump()
    return JSONResponse(status_code=_http_status(err), content=payload)


@router.get("/healthz")
def healthz() -> dict:
    return {"ok": True}


# -------------------------
# Tasks
# -------------------------


@router.post("/tasks", response_model=TaskView, status_code=201)
def create_task(
    payload: TaskCreate,
    tasks: TaskService = Depends(get_task_service),
):
    """
    Create a managed task.

    Notes:
    - Dependencies must already exist.
    - Cycle creation is rejected.
    """
    try:
        return TaskView.from_task(tasks.create_task(payload))
    except TaskCoreError as e:
        return _error_response(e)


@router.get("/tasks", response_model=TaskListResponse)
def list_tasks(
    project_id: Optional[str] = None,
    status: Optional[TaskStatus] = None,
    source: Optional[TaskSource] = None,
    type: Optional[str] = None,
    limit: int = Query(default=200, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    tasks: TaskService = Depends(get_task_service),
):
    flt = TaskFilter(project_id=project_id, status=status, source=source, type=type, limit=limit, offset=offset)
    items, total = tasks.list_tasks(flt)
    return TaskListResponse(tasks=[TaskView.from_task(t) for t in items], total=total)


@router.get("/tasks/{task_id}", response_model=TaskView)
def get_task(
    task_id: str,
    tasks: TaskService = Depends(get_task_service),
):
    try:
        return TaskView.from_task(tasks.get_task(task_id))
    except TaskCoreError as e:
        return _error_response(e)


@router.delete("/tasks/{task_id}", status_code=204)
def delete_task(
    task_id: str,
    tasks: TaskService = Depends(get_task_service),
):
    try:
        tasks.delete_task(task_id)
    except TaskCoreError as e:
        return _error_response(e)
    return Response(status_code=204)


@router.post("/tasks/{task_id}/dependencies", response_model=TaskView)
def add_dependencies(
    task_id: str,
    payload: DependenciesAdd,
    tasks: TaskService = Depends(get_task_service),
):
    try:
        return TaskView.from_task(tasks.add_dependencies(task_id, payload.dependencies))
    except TaskCoreError as e:
        return _error_response(e)


@router.post("/tasks/{task_id}/{action}", response_model=TaskView)
def perform_action(
    task_id: str,
    action: TaskAction,
    payload: Optional[TaskActionRequest] = Body(default=None),
    tasks: TaskService = Depends(get_task_service),
):
    payload = payload or TaskActionRequest()
    try:
        task = tasks.perform(task_id, action, reason=payload.reason, result=payload.result)
        return TaskView.from_task(task)
    except TaskCoreError as e:
        return _error_response(e)


# -------------------------
# Units
# -------------------------


@router.get("/units", response_model=list[UnitView])
def list_units(registry: UnitRegistry = Depends(get_registry)):
    return [UnitView.from_definition(d) for d in registry.list_all()]


@router.get("/units/{category}", response_model=list[UnitView])
def list_units_by_category(category: UnitCategory, registry: UnitRegistry = Depends(get_registry)):
    return [UnitView.from_definition(d) for d in registry.list_by_category(category)]


# -------------------------
# Workflow runs
# -------------------------


@router.post("/runs", response_model=WorkflowRun, status_code=202)
def start_run(
    payload: RunCreate,
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """
    Queue a workflow run for a task. Poll GET /runs/{run_id} for the outcome.
    """
    try:
        return orchestrator.start(payload.workflow_key, payload.task_id, payload.context)
    except TaskCoreError as e:
        return _error_response(e)


@router.get("/runs/{run_id}", response_model=WorkflowRun)
def get_run(run_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)):
    try:
        return orchestrator.status(run_id)
    except TaskCoreError as e:
        return _error_response(e)


@router.post("/runs/{run_id}/cancel", response_model=WorkflowRun)
def cancel_run(
    run_id: str,
    payload: Optional[RunCancel] = Body(default=None),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    try:
        return orchestrator.cancel(run_id, payload.reason if payload else None)
    except TaskCoreError as e:
        return _error_response(e)


# -------------------------
# Status sync
# -------------------------


@router.post("/sync", response_model=SyncReport)
def sync(
    payload: Optional[SyncRequest] = Body(default=None),
    engine: StatusSyncEngine = Depends(get_sync_engine),
    source: Optional[ManualSource] = Depends(get_manual_source),
):
    """
    Reconcile the manual source with the store.

    Records in the body are synced as given; otherwise the configured
    manual source is scanned.
    """
    if payload is not None and payload.records is not None:
        return engine.sync(payload.records)
    if source is None:
        return _error_response(
            ValidationError("No manual source configured (set TASKCORE_MANUAL_ROOT)", details={})
        )
    return engine.sync_from(source)


@router.post("/sync/batch-transition", response_model=BatchReport)
def batch_transition(payload: BatchTransitionRequest, engine: StatusSyncEngine = Depends(get_sync_engine)):
    return engine.batch_transition(payload.task_ids, payload.target_status, reason=payload.reason)


@router.post("/sync/rollback", response_model=RollbackReport)
def rollback(payload: RollbackRequest, engine: StatusSyncEngine = Depends(get_sync_engine)):
    return engine.rollback(payload.task_ids, payload.previous_status)


@router.post("/sync/validate", response_model=ValidationReport)
def validate(payload: BatchTransitionRequest, engine: StatusSyncEngine = Depends(get_sync_engine)):
    return engine.validate(payload.task_ids, payload.target_status)
