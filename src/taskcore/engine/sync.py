# src/taskcore/engine/sync.py
from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Iterable, Optional, Sequence

from taskcore.domain.errors import (
    ConcurrentModificationError,
    InvalidSyncTransitionError,
    NoSuchHistoricalStatusError,
    NotFoundError,
    TaskCoreError,
)
from taskcore.domain.models import (
    BatchReport,
    ItemError,
    ManualTaskRecord,
    RollbackItem,
    RollbackReport,
    SyncReport,
    TaskFilter,
    TransitionIssue,
    ValidationItem,
    ValidationReport,
)
from taskcore.domain.states import TaskSource, TaskStatus, can_transition
from taskcore.domain.task import Task, new_task_id
from taskcore.logging import get_logger
from taskcore.storage.port import TaskStore

if TYPE_CHECKING:
    from taskcore.sources.port import ManualSource

_LOG = get_logger(__name__)

NaturalKeyPolicy = Callable[[ManualTaskRecord], str]

# Upper bound for the "missing" scan over persisted manual tasks.
_MANUAL_SCAN_LIMIT = 10_000


def record_natural_key(record: ManualTaskRecord) -> str:
    return record.natural_key


class StatusSyncEngine:
    """
    Reconciles tasks observed in a manual source with the task store.

    - Every status change is validated against the transition table.
    - Each task is applied all-or-nothing (work on a copy, compare-and-set
      save, one retry on a concurrent modification); a bad item is reported
      and never blocks the rest of the batch.
    - Rollback is the one sanctioned bypass of the transition table and is
      limited to statuses found in the task's recent history.
    """

    def __init__(
        self,
        store: TaskStore,
        *,
        history_size: int = 5,
        natural_key: NaturalKeyPolicy = record_natural_key,
        default_project_id: str = "manual",
        default_type: str = "manual-doc",
    ) -> None:
        if history_size <= 0:
            raise ValueError("history_size must be > 0")
        self._store = store
        self._history_size = history_size
        self._natural_key = natural_key
        self._default_project_id = default_project_id
        self._default_type = default_type

    # -------------------------
    # Sync
    # -------------------------

    def sync(self, observed: Iterable[ManualTaskRecord]) -> SyncReport:
        report = SyncReport()

        records: dict[str, ManualTaskRecord] = {}
        for record in observed:
            key = self._natural_key(record)
            if key in records:
                report.errors.append(
                    ItemError(natural_key=key, code="DUPLICATE_NATURAL_KEY", reason="observed more than once")
                )
                continue
            records[key] = record

        # Diff
        new: list[tuple[str, ManualTaskRecord]] = []
        changed: list[tuple[str, ManualTaskRecord]] = []
        for key, record in records.items():
            existing = self._store.get_by_natural_key(key)
            if existing is None:
                new.append((key, record))
            elif existing.content_hash == record.content_hash:
                report.unchanged.append(existing.id)
            else:
                changed.append((key, record))

        for key, record in new:
            try:
                task = self._import(key, record)
            except TaskCoreError as e:
                _LOG.warning("Import of %s failed: %s", key, e)
                report.errors.append(ItemError(natural_key=key, code=e.code, reason=e.message))
            else:
                report.imported.append(task.id)

        for key, record in changed:
            self._sync_changed(key, record, report)

        observed_keys = set(records)
        for task in self._store.query(TaskFilter(source=TaskSource.MANUAL, limit=_MANUAL_SCAN_LIMIT)):
            if task.natural_key is not None and task.natural_key not in observed_keys:
                report.missing.append(task.id)

        _LOG.info(
            "Sync finished: imported=%d updated=%d unchanged=%d invalid=%d errors=%d missing=%d",
            len(report.imported),
            len(report.updated),
            len(report.unchanged),
            len(report.invalid_transitions),
            len(report.errors),
            len(report.missing),
        )
        return report

    def sync_from(self, source: "ManualSource") -> SyncReport:
        return self.sync(source.scan())

    def _import(self, key: str, record: ManualTaskRecord) -> Task:
        task = Task(
            id=new_task_id(),
            project_id=record.project_id or self._default_project_id,
            title=record.title,
            description=record.content,
            type=record.type or self._default_type,
            status=TaskStatus.PENDING,
            source=TaskSource.MANUAL,
            natural_key=key,
            content_hash=record.content_hash,
            metadata=dict(record.metadata),
        )
        if record.priority is not None:
            task.priority = record.priority
        if record.implied_status is not None and record.implied_status != TaskStatus.PENDING:
            # Imported tasks always start PENDING; keep what the source claimed.
            task.metadata["implied_status"] = record.implied_status.value
        self._store.insert(task)
        _LOG.info("Imported manual task %s (%s)", task.id, key)
        return task

    def _sync_changed(self, key: str, record: ManualTaskRecord, report: SyncReport) -> None:
        def _apply(task: Task) -> None:
            implied = record.implied_status
            status_change = implied is not None and implied != task.status
            if status_change and not can_transition(task.status, implied):
                raise InvalidSyncTransitionError(
                    f"Manual source implies {task.status.value} -> {implied.value} for task {task.id}",
                    details={"id": task.id, "from": task.status.value, "to": implied.value},
                )
            task.title = record.title
            task.description = record.content
            task.content_hash = record.content_hash
            task.metadata.update(record.metadata)
            task.metadata.pop("implied_status", None)
            if record.priority is not None:
                task.priority = record.priority
            task.touch()
            if status_change:
                task.apply_status(implied, resolve=self._store.get, reason="synced from manual source")

        try:
            task = self._update(lambda: self._store.get_by_natural_key(key), _apply, ident=key)
        except InvalidSyncTransitionError as e:
            details = e.details or {}
            report.invalid_transitions.append(
                TransitionIssue(
                    task_id=details["id"],
                    from_status=TaskStatus(details["from"]),
                    to_status=TaskStatus(details["to"]),
                )
            )
            _LOG.warning("Sync skipped %s: %s", key, e)
        except TaskCoreError as e:
            task_id = None if isinstance(e, NotFoundError) else (e.details or {}).get("id")
            report.errors.append(ItemError(task_id=task_id, natural_key=key, code=e.code, reason=e.message))
            _LOG.warning("Sync of %s failed: %s", key, e)
        else:
            report.updated.append(task.id)

    # -------------------------
    # Batch operations
    # -------------------------

    def batch_transition(
        self,
        task_ids: Sequence[str],
        target_status: TaskStatus,
        *,
        reason: Optional[str] = None,
    ) -> BatchReport:
        target = TaskStatus(target_status)
        report = BatchReport(target_status=target)
        for task_id in dict.fromkeys(task_ids):
            try:
                self._update(
                    lambda tid=task_id: self._store.get(tid),
                    lambda t: t.apply_status(target, resolve=self._store.get, reason=reason),
                    ident=task_id,
                )
            except TaskCoreError as e:
                report.failed.append(ItemError(task_id=task_id, code=e.code, reason=e.message))
            else:
                report.successful.append(task_id)

        _LOG.info(
            "Batch transition to %s: %d successful, %d failed",
            target.value,
            len(report.successful),
            len(report.failed),
        )
        return report

    def rollback(self, task_ids: Sequence[str], previous_status: TaskStatus) -> RollbackReport:
        previous = TaskStatus(previous_status)
        report = RollbackReport(previous_status=previous)
        for task_id in dict.fromkeys(task_ids):
            history = self._store.list_status_history(task_id, limit=self._history_size)
            if previous not in history:
                e = NoSuchHistoricalStatusError(
                    f"Task {task_id} has not recently held status {previous.value}",
                    details={"id": task_id, "status": previous.value, "history": [s.value for s in history]},
                )
                report.failed.append(ItemError(task_id=task_id, code=e.code, reason=e.message))
                continue

            held: dict[str, TaskStatus] = {}

            def _force(task: Task) -> None:
                held["from"] = task.status
                if task.status == TaskStatus.COMPLETED and previous != TaskStatus.COMPLETED:
                    task.completed_at = None
                    task.result = None
                task.force_status(previous)

            try:
                self._update(lambda tid=task_id: self._store.get(tid), _force, ident=task_id)
            except TaskCoreError as e:
                report.failed.append(ItemError(task_id=task_id, code=e.code, reason=e.message))
            else:
                report.rolled_back.append(RollbackItem(task_id=task_id, from_status=held["from"], to_status=previous))
                _LOG.info("Rolled back task %s: %s -> %s", task_id, held["from"].value, previous.value)
        return report

    def validate(self, task_ids: Sequence[str], target_status: TaskStatus) -> ValidationReport:
        """Dry run of batch_transition; nothing is written."""
        target = TaskStatus(target_status)
        report = ValidationReport(target_status=target)
        for task_id in dict.fromkeys(task_ids):
            task = self._store.get(task_id)
            if task is None:
                report.results.append(ValidationItem(task_id=task_id, valid=False, reason="task not found"))
                continue
            reason = None
            if not can_transition(task.status, target):
                reason = f"invalid transition {task.status.value} -> {target.value}"
            elif target == TaskStatus.IN_PROGRESS and task.status != TaskStatus.PAUSED:
                unmet = task.unmet_dependencies(self._store.get)
                if unmet:
                    reason = f"unfinished dependencies: {', '.join(unmet)}"
            report.results.append(
                ValidationItem(task_id=task_id, valid=reason is None, current_status=task.status, reason=reason)
            )
        return report

    # -------------------------
    # Helpers
    # -------------------------

    def _update(
        self,
        load: Callable[[], Optional[Task]],
        mutate: Callable[[Task], None],
        *,
        ident: str,
    ) -> Task:
        """
        Applies `mutate` to a freshly loaded task and saves it (compare-and-set).
        A concurrent modification is retried once; the stored task is never
        left half-updated because mutation happens on the loaded copy.
        """
        for attempt in (1, 2):
            task = load()
            if task is None:
                raise NotFoundError(f"Task not found: {ident}", details={"id": ident})
            mutate(task)
            try:
                return self._store.save(task)
            except ConcurrentModificationError:
                if attempt == 2:
                    raise
                _LOG.info("Concurrent modification of %s; retrying once", ident)
        raise AssertionError("unreachable")
