# src/taskcore/storage/repo.py
from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from taskcore.domain.errors import (
    ConcurrentModificationError,
    ConflictError,
    CycleDetectedError,
    DependencyError,
    NotFoundError,
)
from taskcore.domain.models import TaskFilter
from taskcore.domain.states import TaskPriority, TaskSource, TaskStatus
from taskcore.domain.task import Task, now_ms
from taskcore.logging import get_logger

from .db import SQLiteDB, immediate_transaction

_LOG = get_logger(__name__)

_COLUMNS = """
    id, project_id, title, description, type, status, priority, source,
    natural_key, content_hash, metadata, result,
    created_at, updated_at, completed_at, version
"""


@dataclass
class SQLiteTaskStore:
    """
    SQLite implementation of the TaskStore port.

    Important invariants:
    - Every write runs in a BEGIN IMMEDIATE transaction.
    - `save` is a compare-and-set on the version column.
    - Every status a task enters is appended to task_status_history.
    - Dependency edges are cycle-checked before insertion.
    """
    db: SQLiteDB

    # -------------------------
    # Read operations
    # -------------------------

    def get(self, task_id: str) -> Optional[Task]:
        with self.db.connection() as conn:
            row = conn.execute(f"SELECT {_COLUMNS} FROM tasks WHERE id = ?;", (task_id,)).fetchone()
            if not row:
                return None
            return self._row_to_task(conn, row)

    def get_by_natural_key(self, key: str) -> Optional[Task]:
        with self.db.connection() as conn:
            row = conn.execute(f"SELECT {_COLUMNS} FROM tasks WHERE natural_key = ?;", (key,)).fetchone()
            if not row:
                return None
            return self._row_to_task(conn, row)

    def require(self, task_id: str) -> Task:
        task = self.get(task_id)
        if task is None:
            raise NotFoundError(f"Task not found: {task_id}", details={"id": task_id})
        return task

    def query(self, flt: Optional[TaskFilter] = None) -> list[Task]:
        flt = flt or TaskFilter()
        where, params = self._where(flt)
        with self.db.connection() as conn:
            rows = conn.execute(
                f"""
                SELECT {_COLUMNS}
                FROM tasks
                {where}
                ORDER BY created_at ASC, id ASC
                LIMIT ? OFFSET ?;
                """,
                (*params, flt.limit, flt.offset),
            ).fetchall()
            return [self._row_to_task(conn, row) for row in rows]

    def count(self, flt: Optional[TaskFilter] = None) -> int:
        where, params = self._where(flt or TaskFilter())
        with self.db.connection() as conn:
            row = conn.execute(f"SELECT COUNT(*) AS c FROM tasks {where};", params).fetchone()
            return int(row["c"])

    def list_status_history(self, task_id: str, limit: int = 5) -> list[TaskStatus]:
        with self.db.connection() as conn:
            rows = conn.execute(
                """
                SELECT status
                FROM task_status_history
                WHERE task_id = ?
                ORDER BY seq DESC
                LIMIT ?;
                """,
                (task_id, limit),
            ).fetchall()
            return [TaskStatus(r["status"]) for r in rows]

    # -------------------------
    # Write operations
    # -------------------------

    def insert(self, task: Task) -> Task:
        """
        Inserts a task, its dependency edges and its first history entry.

        Behavior:
        - Reject if id (or natural key) exists
        - Reject if dependencies are missing
        - Reject if a cycle would be created by adding these edges
        """
        deps = sorted(task.dependencies)
        with self.db.connection() as conn, immediate_transaction(conn):
            if conn.execute("SELECT 1 FROM tasks WHERE id = ?;", (task.id,)).fetchone():
                raise ConflictError(f"Task already exists: {task.id}", details={"id": task.id})
            if task.natural_key is not None and conn.execute(
                "SELECT 1 FROM tasks WHERE natural_key = ?;", (task.natural_key,)
            ).fetchone():
                raise ConflictError(
                    f"Task with natural key already exists: {task.natural_key}",
                    details={"natural_key": task.natural_key},
                )

            self._check_dependencies(conn, task.id, deps)

            conn.execute(
                f"INSERT INTO tasks({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);",
                (*self._task_values(task), 0),
            )
            for dep in deps:
                conn.execute(
                    "INSERT INTO task_deps(task_id, depends_on_id) VALUES (?, ?);",
                    (task.id, dep),
                )
            self._record_status(conn, task.id, task.status, task.updated_at)

        task.version = 0
        return task

    def save(self, task: Task) -> Task:
        with self.db.connection() as conn, immediate_transaction(conn):
            current = conn.execute(
                "SELECT status, version FROM tasks WHERE id = ?;", (task.id,)
            ).fetchone()
            if not current:
                raise NotFoundError(f"Task not found: {task.id}", details={"id": task.id})
            if int(current["version"]) != task.version:
                raise ConcurrentModificationError(
                    f"Task {task.id} was modified concurrently",
                    details={"id": task.id, "expected": task.version, "actual": int(current["version"])},
                )

            conn.execute(
                """
                UPDATE tasks
                SET project_id = ?, title = ?, description = ?, type = ?,
                    status = ?, priority = ?, source = ?,
                    natural_key = ?, content_hash = ?, metadata = ?, result = ?,
                    updated_at = ?, completed_at = ?, version = version + 1
                WHERE id = ? AND version = ?;
                """,
                (
                    task.project_id,
                    task.title,
                    task.description,
                    task.type,
                    task.status.value,
                    task.priority.value,
                    task.source.value,
                    task.natural_key,
                    task.content_hash,
                    json.dumps(task.metadata, sort_keys=True),
                    _dump_optional(task.result),
                    task.updated_at,
                    task.completed_at,
                    task.id,
                    task.version,
                ),
            )
            if current["status"] != task.status.value:
                self._record_status(conn, task.id, task.status, task.updated_at)

        task.version += 1
        return task

    def add_dependencies(self, task_id: str, dep_ids: Sequence[str]) -> Task:
        """Adds edges task_id -> dep_ids after a reachability (cycle) check."""
        new = sorted(set(dep_ids))
        with self.db.connection() as conn, immediate_transaction(conn):
            if not conn.execute("SELECT 1 FROM tasks WHERE id = ?;", (task_id,)).fetchone():
                raise NotFoundError(f"Task not found: {task_id}", details={"id": task_id})
            self._check_dependencies(conn, task_id, new)
            for dep in new:
                conn.execute(
                    "INSERT OR IGNORE INTO task_deps(task_id, depends_on_id) VALUES (?, ?);",
                    (task_id, dep),
                )
            conn.execute(
                "UPDATE tasks SET updated_at = MAX(updated_at + 1, ?), version = version + 1 WHERE id = ?;",
                (now_ms(), task_id),
            )
        return self.require(task_id)

    def delete(self, task_id: str) -> None:
        with self.db.connection() as conn, immediate_transaction(conn):
            if not conn.execute("SELECT 1 FROM tasks WHERE id = ?;", (task_id,)).fetchone():
                raise NotFoundError(f"Task not found: {task_id}", details={"id": task_id})
            dependents = [
                r["task_id"]
                for r in conn.execute(
                    "SELECT task_id FROM task_deps WHERE depends_on_id = ? ORDER BY task_id;", (task_id,)
                ).fetchall()
            ]
            if dependents:
                raise ConflictError(
                    f"Task {task_id} is a dependency of other tasks",
                    details={"id": task_id, "dependents": dependents},
                )
            conn.execute("DELETE FROM tasks WHERE id = ?;", (task_id,))
        _LOG.info("Deleted task %s", task_id)

    # -------------------------
    # Helpers
    # -------------------------

    def _check_dependencies(self, conn: sqlite3.Connection, task_id: str, dep_ids: Sequence[str]) -> None:
        if not dep_ids:
            return
        if task_id in dep_ids:
            raise CycleDetectedError(
                f"Task {task_id} cannot depend on itself", details={"id": task_id}
            )
        missing = self._missing_task_ids(conn, dep_ids)
        if missing:
            raise DependencyError(
                "One or more dependencies do not exist",
                details={"missing": sorted(missing)},
            )
        if self._would_create_cycle(conn, task_id, dep_ids):
            raise CycleDetectedError(
                f"Adding dependencies would create a cycle for task {task_id}",
                details={"id": task_id, "dependencies": list(dep_ids)},
            )

    def _missing_task_ids(self, conn: sqlite3.Connection, ids: Sequence[str]) -> set[str]:
        rows = conn.execute(
            f"SELECT id FROM tasks WHERE id IN ({','.join('?' for _ in ids)});",
            tuple(ids),
        ).fetchall()
        return set(ids) - {r["id"] for r in rows}

    def _would_create_cycle(self, conn: sqlite3.Connection, task_id: str, dep_ids: Sequence[str]) -> bool:
        """
        Adding edges task_id -> dep_ids creates a cycle iff task_id is already
        reachable from one of dep_ids by following task -> depends_on edges.
        """
        placeholders = ",".join("?" for _ in dep_ids)
        row = conn.execute(
            f"""
            WITH RECURSIVE walk(node) AS (
              SELECT id FROM tasks WHERE id IN ({placeholders})
              UNION
              SELECT d.depends_on_id
              FROM task_deps d
              JOIN walk w ON d.task_id = w.node
            )
            SELECT 1 FROM walk WHERE node = ? LIMIT 1;
            """,
            (*dep_ids, task_id),
        ).fetchone()
        return row is not None

    def _record_status(self, conn: sqlite3.Connection, task_id: str, status: TaskStatus, at: int) -> None:
        conn.execute(
            "INSERT INTO task_status_history(task_id, status, recorded_at) VALUES (?, ?, ?);",
            (task_id, status.value, at),
        )

    def _get_dependencies(self, conn: sqlite3.Connection, task_id: str) -> set[str]:
        rows = conn.execute(
            "SELECT depends_on_id FROM task_deps WHERE task_id = ?;", (task_id,)
        ).fetchall()
        return {r["depends_on_id"] for r in rows}

    def _row_to_task(self, conn: sqlite3.Connection, row: sqlite3.Row) -> Task:
        return Task(
            id=row["id"],
            project_id=row["project_id"],
            title=row["title"],
            description=row["description"],
            type=row["type"],
            status=TaskStatus(row["status"]),
            priority=TaskPriority(row["priority"]),
            source=TaskSource(row["source"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            dependencies=self._get_dependencies(conn, row["id"]),
            metadata=json.loads(row["metadata"] or "{}"),
            natural_key=row["natural_key"],
            content_hash=row["content_hash"],
            result=json.loads(row["result"]) if row["result"] is not None else None,
            completed_at=row["completed_at"],
            version=int(row["version"]),
        )

    @staticmethod
    def _task_values(task: Task) -> tuple[Any, ...]:
        return (
            task.id,
            task.project_id,
            task.title,
            task.description,
            task.type,
            task.status.value,
            task.priority.value,
            task.source.value,
            task.natural_key,
            task.content_hash,
            json.dumps(task.metadata, sort_keys=True),
            _dump_optional(task.result),
            task.created_at,
            task.updated_at,
            task.completed_at,
        )

    @staticmethod
    def _where(flt: TaskFilter) -> tuple[str, tuple[Any, ...]]:
        clauses: list[str] = []
        params: list[Any] = []
        if flt.project_id is not None:
            clauses.append("project_id = ?")
            params.append(flt.project_id)
        if flt.status is not None:
            clauses.append("status = ?")
            params.append(flt.status.value)
        if flt.source is not None:
            clauses.append("source = ?")
            params.append(flt.source.value)
        if flt.type is not None:
            clauses.append("type = ?")
            params.append(flt.type)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, tuple(params)


def _dump_optional(value: Optional[dict[str, Any]]) -> Optional[str]:
    return json.dumps(value, sort_keys=True, default=str) if value is not None else None
