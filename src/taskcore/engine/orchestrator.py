# src/taskcore/engine/orchestrator.py
from __future__ import annotations

import os
import threading
import time
import uuid
from collections import OrderedDict
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Mapping, Optional

from taskcore.domain.errors import (
    ConcurrentModificationError,
    DependenciesNotSatisfiedError,
    InvalidDefinitionError,
    InvalidTransitionError,
    NotFoundError,
    StepTimeoutError,
    TaskBusyError,
    TaskCoreError,
)
from taskcore.domain.models import StepResult, WorkflowRun
from taskcore.domain.states import RunStatus, TaskStatus
from taskcore.domain.task import Task, now_ms
from taskcore.logging import get_logger
from taskcore.storage.port import TaskStore

from .builder import RunnableUnit, UnitBuilder, WorkflowUnit
from .context import CancelToken, ExecutionContext
from .locks import TaskLocks

_LOG = get_logger(__name__)

RetryPredicate = Callable[[BaseException], bool]


def is_transient(exc: BaseException) -> bool:
    """Default retry policy: only errors the step itself flags as transient."""
    return bool(getattr(exc, "transient", False))


@dataclass(frozen=True)
class OrchestratorConfig:
    """
    Runtime config for workflow execution.
    """
    max_workers: int = os.cpu_count() or 1
    step_max_attempts: int = 3
    step_timeout_ms: int = 30_000
    step_backoff_ms: int = 200
    step_backoff_max_ms: int = 10_000

    # Finished runs kept for status() polling
    run_history_size: int = 1_000


@dataclass
class _RunHandle:
    run: WorkflowRun
    workflow: WorkflowUnit
    token: CancelToken
    context: ExecutionContext
    lock: threading.Lock = field(default_factory=threading.Lock)


class Orchestrator:
    """
    Runs workflows against tasks.

    - Steps of one run execute strictly in order on one worker; each attempt
      gets a copy of the accumulated context and runs under a timeout.
    - Only errors flagged transient are retried, with exponential backoff.
    - A task is held by at most one run (per-task lock); a second request
      fails with TaskBusyError instead of queueing.
    - Cancellation is cooperative and observed between steps.
    - Runs for different tasks execute concurrently on a bounded pool.
    """

    def __init__(
        self,
        builder: UnitBuilder,
        store: TaskStore,
        cfg: Optional[OrchestratorConfig] = None,
        *,
        services: Optional[Mapping[str, Any]] = None,
        retry_predicate: RetryPredicate = is_transient,
    ) -> None:
        self._cfg = cfg or OrchestratorConfig()
        if self._cfg.max_workers <= 0:
            raise ValueError("max_workers must be > 0")
        if self._cfg.step_max_attempts <= 0:
            raise ValueError("step_max_attempts must be > 0")

        self._builder = builder
        self._store = store
        self._services: dict[str, Any] = dict(services or {})
        self._retry = retry_predicate

        self._locks = TaskLocks()
        self._runs: OrderedDict[str, _RunHandle] = OrderedDict()
        self._runs_lock = threading.Lock()

        self._executor = ThreadPoolExecutor(
            max_workers=self._cfg.max_workers,
            thread_name_prefix="taskcore-run",
        )

    # -------------------------
    # Public API
    # -------------------------

    def bind_service(self, name: str, service: Any) -> None:
        """Adds a collaborator handed to built units (before runs start)."""
        self._services[name] = service

    def run(
        self,
        workflow_key: str,
        task_id: str,
        initial_context: Optional[Mapping[str, Any]] = None,
    ) -> WorkflowRun:
        """Executes a workflow on the calling thread and returns the finished run."""
        handle = self._prepare(workflow_key, task_id, initial_context)
        return self._execute(handle)

    def submit(
        self,
        workflow_key: str,
        task_id: str,
        initial_context: Optional[Mapping[str, Any]] = None,
    ) -> Future[WorkflowRun]:
        """
        Queues a run on the worker pool. Build errors, unknown tasks and
        TaskBusyError are raised here, before anything is queued.
        """
        return self._dispatch(self._prepare(workflow_key, task_id, initial_context))

    def start(
        self,
        workflow_key: str,
        task_id: str,
        initial_context: Optional[Mapping[str, Any]] = None,
    ) -> WorkflowRun:
        """Like submit, but returns the queued run record for status() polling."""
        handle = self._prepare(workflow_key, task_id, initial_context)
        self._dispatch(handle)
        return self._snapshot(handle)

    def cancel(self, run_id: str, reason: Optional[str] = None) -> WorkflowRun:
        handle = self._handle(run_id)
        handle.token.cancel(reason or "cancelled by request")
        _LOG.info("Cancellation requested for run %s", run_id)
        return self._snapshot(handle)

    def status(self, run_id: str) -> WorkflowRun:
        return self._snapshot(self._handle(run_id))

    def is_busy(self, task_id: str) -> bool:
        return self._locks.is_held(task_id)

    def shutdown(self, *, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait, cancel_futures=False)

    # -------------------------
    # Run lifecycle
    # -------------------------

    def _prepare(
        self,
        workflow_key: str,
        task_id: str,
        initial_context: Optional[Mapping[str, Any]],
    ) -> _RunHandle:
        workflow = self._builder.build_key(workflow_key, self._services)
        if not isinstance(workflow, WorkflowUnit):
            raise InvalidDefinitionError(
                f"Unit {workflow_key!r} is not a workflow",
                details={"key": workflow_key},
            )

        if not self._locks.try_acquire(task_id):
            raise TaskBusyError(f"Task {task_id} already has an active run", details={"task_id": task_id})
        try:
            task = self._store.get(task_id)
            if task is None:
                raise NotFoundError(f"Task not found: {task_id}", details={"id": task_id})
            if task.status == TaskStatus.IN_PROGRESS:
                raise TaskBusyError(
                    f"Task {task_id} is already in progress",
                    details={"task_id": task_id, "status": task.status.value},
                )
        except BaseException:
            self._locks.release(task_id)
            raise

        run_id = str(uuid.uuid4())
        token = CancelToken()
        handle = _RunHandle(
            run=WorkflowRun(run_id=run_id, workflow_key=workflow.definition.qualified_key, task_id=task_id),
            workflow=workflow,
            token=token,
            context=ExecutionContext(
                task_id=task_id,
                run_id=run_id,
                data=dict(initial_context or {}),
                cancel_token=token,
                logger=get_logger("taskcore.runs"),
            ),
        )
        self._remember(handle)
        return handle

    def _dispatch(self, handle: _RunHandle) -> Future[WorkflowRun]:
        try:
            return self._executor.submit(self._execute, handle)
        except RuntimeError:
            self._locks.release(handle.run.task_id)
            with self._runs_lock:
                self._runs.pop(handle.run.run_id, None)
            raise

    def _execute(self, handle: _RunHandle) -> WorkflowRun:
        run = handle.run
        task_id = run.task_id
        try:
            with handle.lock:
                run.status = RunStatus.RUNNING
                run.started_at = now_ms()
            _LOG.info("Run %s started: workflow=%s task=%s", run.run_id, run.workflow_key, task_id)

            # Precondition, not a retried step: the task must be startable.
            try:
                self._transition_task(task_id, lambda t: t.start(self._store.get))
            except (InvalidTransitionError, DependenciesNotSatisfiedError, ConcurrentModificationError, NotFoundError) as e:
                self._finish(handle, RunStatus.FAILED, error=e)
                return self._snapshot(handle)

            outputs: dict[str, Any] = {}
            for step in handle.workflow.steps:
                if handle.token.cancelled:
                    break
                result, output = self._run_step(step, handle.context)
                with handle.lock:
                    run.step_results.append(result)
                if not result.success:
                    reason = f"Step {result.key} failed: {result.error}"
                    self._settle_task(handle, lambda t: t.fail(reason))
                    self._finish(handle, RunStatus.FAILED, error_code=result.error_code, error_message=reason)
                    return self._snapshot(handle)
                handle.context.data.update(output)
                outputs.update(output)

            if handle.token.cancelled:
                reason = handle.token.reason or "cancelled"
                self._settle_task(handle, lambda t: t.cancel(reason))
                self._finish(handle, RunStatus.CANCELLED, error_message=reason)
                return self._snapshot(handle)

            summary = {
                "run_id": run.run_id,
                "workflow_key": run.workflow_key,
                "steps": len(handle.workflow.steps),
                "outputs": sorted(outputs),
            }
            with handle.lock:
                run.output = outputs
            self._settle_task(handle, lambda t: t.complete(summary))
            self._finish(handle, RunStatus.SUCCEEDED)
            return self._snapshot(handle)
        except Exception as e:
            _LOG.exception("Run %s crashed", run.run_id)
            self._settle_task(handle, lambda t: t.fail(f"orchestrator error: {e!r}"))
            self._finish(handle, RunStatus.FAILED, error=e)
            return self._snapshot(handle)
        finally:
            self._locks.release(task_id)

    def _finish(
        self,
        handle: _RunHandle,
        status: RunStatus,
        *,
        error: Optional[BaseException] = None,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        run = handle.run
        with handle.lock:
            run.status = status
            run.finished_at = now_ms()
            if error is not None:
                run.error = str(error)
                run.error_code = getattr(error, "code", type(error).__name__)
            if error_message is not None:
                run.error = error_message
            if error_code is not None:
                run.error_code = error_code
        _LOG.info(
            "Run %s finished: status=%s steps=%d%s",
            run.run_id,
            status.value,
            len(run.step_results),
            f" error={run.error}" if run.error else "",
        )

    # -------------------------
    # Steps
    # -------------------------

    def _run_step(self, step: RunnableUnit, context: ExecutionContext) -> tuple[StepResult, dict[str, Any]]:
        settings = step.definition.settings
        max_attempts = int(settings.get("max_attempts", self._cfg.step_max_attempts))
        timeout_s = int(settings.get("timeout_ms", self._cfg.step_timeout_ms)) / 1000.0

        started = time.monotonic()
        attempt = 0
        while True:
            attempt += 1
            # Late writes from an abandoned (timed out) attempt must not leak.
            attempt_ctx = replace(context, data=dict(context.data))
            try:
                output = self._call_with_timeout(step, attempt_ctx, timeout_s)
                return self._step_result(step, attempt, started, success=True), output
            except Exception as e:
                if isinstance(e, StepTimeoutError):
                    _LOG.warning("Step %s timed out after %.3fs (attempt %d)", step.key, timeout_s, attempt)
                if attempt < max_attempts and self._retry(e):
                    delay = self._backoff_s(attempt)
                    _LOG.warning(
                        "Step %s attempt %d/%d failed transiently (%r); retrying in %.3fs",
                        step.key, attempt, max_attempts, e, delay,
                    )
                    if delay:
                        time.sleep(delay)
                    continue
                _LOG.error("Step %s failed after %d attempt(s): %r", step.key, attempt, e)
                return self._step_result(step, attempt, started, error=e), {}

    def _call_with_timeout(self, step: RunnableUnit, context: ExecutionContext, timeout_s: float) -> dict[str, Any]:
        # A dedicated daemon thread per attempt: a hung step is abandoned on
        # timeout instead of occupying a pool slot forever.
        box: dict[str, Any] = {}
        done = threading.Event()

        def _target() -> None:
            try:
                box["output"] = step.execute(context)
            except BaseException as e:  # handed back to the caller thread
                box["error"] = e
            finally:
                done.set()

        t = threading.Thread(target=_target, name=f"taskcore-step-{step.key}", daemon=True)
        t.start()
        if not done.wait(timeout=timeout_s):
            raise StepTimeoutError(
                f"Step {step.key} exceeded {timeout_s:.3f}s",
                details={"key": step.key, "timeout_ms": int(timeout_s * 1000)},
            )
        if "error" in box:
            raise box["error"]
        return box["output"]

    def _backoff_s(self, attempt: int) -> float:
        if self._cfg.step_backoff_ms <= 0:
            return 0.0
        delay_ms = min(self._cfg.step_backoff_ms * (2 ** (attempt - 1)), self._cfg.step_backoff_max_ms)
        return delay_ms / 1000.0

    @staticmethod
    def _step_result(
        step: RunnableUnit,
        attempts: int,
        started: float,
        *,
        success: bool = False,
        error: Optional[BaseException] = None,
    ) -> StepResult:
        error_code = None
        if error is not None:
            error_code = error.code if isinstance(error, StepTimeoutError) else "STEP_FAILED"
        return StepResult(
            key=step.key,
            attempts=attempts,
            duration_ms=int((time.monotonic() - started) * 1000),
            success=success,
            error_code=error_code,
            error=str(error) if error is not None else None,
        )

    # -------------------------
    # Task persistence
    # -------------------------

    def _transition_task(self, task_id: str, op: Callable[[Task], None]) -> Task:
        """
        Applies `op` to a fresh copy of the task and saves it. A concurrent
        modification is retried once against a reloaded task.
        """
        for attempt in (1, 2):
            task = self._store.get(task_id)
            if task is None:
                raise NotFoundError(f"Task not found: {task_id}", details={"id": task_id})
            op(task)
            try:
                return self._store.save(task)
            except ConcurrentModificationError:
                if attempt == 2:
                    raise
                _LOG.info("Task %s changed during run; reloading", task_id)
        raise AssertionError("unreachable")

    def _settle_task(self, handle: _RunHandle, op: Callable[[Task], None]) -> None:
        """Moves the task to the run's outcome; a failure here is recorded, not raised."""
        try:
            self._transition_task(handle.run.task_id, op)
        except TaskCoreError as e:
            _LOG.error("Run %s could not update task %s: %s", handle.run.run_id, handle.run.task_id, e)
            with handle.lock:
                handle.run.error = f"{handle.run.error + '; ' if handle.run.error else ''}task update failed: {e}"

    # -------------------------
    # Run bookkeeping
    # -------------------------

    def _remember(self, handle: _RunHandle) -> None:
        with self._runs_lock:
            self._runs[handle.run.run_id] = handle
            excess = len(self._runs) - self._cfg.run_history_size
            if excess <= 0:
                return
            # Oldest finished runs go first; live runs stay queryable.
            finished = [rid for rid, h in self._runs.items() if h.run.status.is_terminal]
            for rid in finished[:excess]:
                del self._runs[rid]

    def _handle(self, run_id: str) -> _RunHandle:
        with self._runs_lock:
            handle = self._runs.get(run_id)
        if handle is None:
            raise NotFoundError(f"Run not found: {run_id}", details={"run_id": run_id})
        return handle

    @staticmethod
    def _snapshot(handle: _RunHandle) -> WorkflowRun:
        with handle.lock:
            return handle.run.model_copy(deep=True)
