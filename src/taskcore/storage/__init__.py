# src/taskcore/storage/__init__.py
"""
Storage layer for taskcore (SQLite).

- port: the TaskStore protocol the core depends on
- db: connection factory + pragmas + transaction helpers
- migrations: numbered SQL migrations runner (schema in ./sql)
- repo: SQLiteTaskStore, the TaskStore implementation
"""

from .db import SQLiteDB
from .migrations import apply_migrations
from .port import TaskStore
from .repo import SQLiteTaskStore

__all__ = ["SQLiteDB", "apply_migrations", "TaskStore", "SQLiteTaskStore"]
