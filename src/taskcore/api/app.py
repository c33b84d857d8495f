# src/taskcore/api/app.py
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from taskcore.config import Settings, load_settings
from taskcore.engine import (
    Orchestrator,
    OrchestratorConfig,
    StatusSyncEngine,
    TaskService,
    UnitBuilder,
    UnitRegistry,
    register_builtin_units,
)
from taskcore.logging import configure_logging, get_logger
from taskcore.sources import FilesystemManualSource
from taskcore.storage import SQLiteDB, SQLiteTaskStore

from .routes import router

_LOG = get_logger(__name__)


def _orchestrator_config(settings: Settings) -> OrchestratorConfig:
    return OrchestratorConfig(
        max_workers=settings.max_workers,
        step_max_attempts=settings.step_max_attempts,
        step_timeout_ms=settings.step_timeout_ms,
        step_backoff_ms=settings.step_backoff_ms,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Lifespan handler and composition root.

    Responsible for:
    - loading settings and configuring logging
    - running DB migrations
    - wiring store, registry, builder, orchestrator and sync engine
    - shutting the orchestrator's worker pool down
    """
    settings = load_settings()
    configure_logging(settings.log_level)

    db = SQLiteDB(settings.db_path)
    db.initialize()
    store = SQLiteTaskStore(db)

    registry = UnitRegistry()
    builder = UnitBuilder(registry)
    sync_engine = StatusSyncEngine(store, history_size=settings.history_size)
    manual_source = FilesystemManualSource(settings.manual_root) if settings.manual_root else None

    services = {"store": store, "sync_engine": sync_engine}
    if manual_source is not None:
        services["manual_source"] = manual_source
    orchestrator = Orchestrator(builder, store, _orchestrator_config(settings), services=services)
    register_builtin_units(registry)

    app.state.settings = settings
    app.state.db = db
    app.state.store = store
    app.state.tasks = TaskService(store)
    app.state.registry = registry
    app.state.builder = builder
    app.state.orchestrator = orchestrator
    app.state.sync_engine = sync_engine
    app.state.manual_source = manual_source

    _LOG.info("Startup complete (db=%s, manual_root=%s).", settings.db_path, settings.manual_root)

    try:
        yield
    finally:
        orchestrator.shutdown(wait=True)
        _LOG.info("Shutdown complete.")


app = FastAPI(
    title="taskcore",
    version="0.1.0",
    lifespan=lifespan,
)
app.include_router(router)
