# tests/conftest.py
import importlib
import itertools
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import pytest
from fastapi.testclient import TestClient

from taskcore.domain.task import Task
from taskcore.engine import Orchestrator, OrchestratorConfig, StatusSyncEngine, TaskService, UnitBuilder, UnitRegistry
from taskcore.storage import SQLiteDB, SQLiteTaskStore

_counter = itertools.count(1)

DEFAULT_ENV = {
    "TASKCORE_MAX_WORKERS": "2",
    "TASKCORE_STEP_MAX_ATTEMPTS": "3",
    "TASKCORE_STEP_TIMEOUT_MS": "2000",
    "TASKCORE_STEP_BACKOFF_MS": "0",
    "TASKCORE_HISTORY_SIZE": "5",
    "TASKCORE_LOG_LEVEL": "warning",
    # server host/port are irrelevant for TestClient, but harmless if set elsewhere
}


def _apply_env(monkeypatch: pytest.MonkeyPatch, db_path: Path, overrides: Optional[dict[str, str]] = None) -> None:
    monkeypatch.setenv("TASKCORE_DB_PATH", str(db_path))
    monkeypatch.delenv("TASKCORE_MANUAL_ROOT", raising=False)
    for k, v in DEFAULT_ENV.items():
        monkeypatch.setenv(k, v)
    if overrides:
        for k, v in overrides.items():
            monkeypatch.setenv(k, v)


@contextmanager
def _client_ctx(monkeypatch: pytest.MonkeyPatch, tmp_path: Path, *, overrides: Optional[dict[str, str]] = None,
                db_path: Optional[Path] = None) -> Iterator[TestClient]:
    # Unique DB per client instance unless one is provided
    if db_path is None:
        n = next(_counter)
        db_path = tmp_path / f"tasks_{n}.db"

    _apply_env(monkeypatch, db_path, overrides)

    # Import after env is set; reload to avoid cross-test state
    app_mod = importlib.import_module("taskcore.api.app")
    importlib.reload(app_mod)

    with TestClient(app_mod.app) as client:
        yield client


@pytest.fixture()
def client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[TestClient]:
    """
    Default integration test client.
    Uses DEFAULT_ENV and a fresh sqlite db per test.
    """
    with _client_ctx(monkeypatch, tmp_path) as c:
        yield c


@pytest.fixture()
def client_factory(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """
    Factory for tests that need custom settings or a pre-populated DB.

    Usage:
      with client_factory(overrides={"TASKCORE_MANUAL_ROOT": str(root)}) as client:
          ...
    """

    def _make(*, overrides: Optional[dict[str, str]] = None, db_path: Optional[Path] = None):
        return _client_ctx(monkeypatch, tmp_path, overrides=overrides, db_path=db_path)

    return _make


# -------------------------
# Core fixtures (no HTTP)
# -------------------------


@pytest.fixture()
def store(tmp_path: Path) -> SQLiteTaskStore:
    db = SQLiteDB(tmp_path / "core.db")
    db.initialize()
    return SQLiteTaskStore(db)


@pytest.fixture()
def tasks(store: SQLiteTaskStore) -> TaskService:
    return TaskService(store)


@pytest.fixture()
def registry() -> UnitRegistry:
    return UnitRegistry()


@pytest.fixture()
def builder(registry: UnitRegistry) -> UnitBuilder:
    return UnitBuilder(registry)


@pytest.fixture()
def orchestrator(builder: UnitBuilder, store: SQLiteTaskStore) -> Iterator[Orchestrator]:
    cfg = OrchestratorConfig(max_workers=4, step_max_attempts=3, step_timeout_ms=2000, step_backoff_ms=0)
    orch = Orchestrator(builder, store, cfg)
    yield orch
    orch.shutdown(wait=True)


@pytest.fixture()
def sync_engine(store: SQLiteTaskStore) -> StatusSyncEngine:
    return StatusSyncEngine(store, history_size=5)


@pytest.fixture()
def make_task(store: SQLiteTaskStore):
    """Inserts a managed task; extra fields go straight to the Task constructor."""

    def _make(task_id: str, **fields) -> Task:
        fields.setdefault("project_id", "p1")
        fields.setdefault("title", f"Task {task_id}")
        return store.insert(Task(id=task_id, **fields))

    return _make
