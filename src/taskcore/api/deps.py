# src/taskcore/api/deps.py
from __future__ import annotations

from typing import Optional

from fastapi import Request

from taskcore.config import Settings
from taskcore.engine import Orchestrator, StatusSyncEngine, TaskService, UnitRegistry
from taskcore.sources import ManualSource


def get_settings(request: Request) -> Settings:
    """
    Per-request access to settings stored on app.state during startup.
    """
    return request.app.state.settings  # type: ignore[attr-defined]


def get_task_service(request: Request) -> TaskService:
    return request.app.state.tasks  # type: ignore[attr-defined]


def get_registry(request: Request) -> UnitRegistry:
    return request.app.state.registry  # type: ignore[attr-defined]


def get_orchestrator(request: Request) -> Orchestrator:
    return request.app.state.orchestrator  # type: ignore[attr-defined]


def get_sync_engine(request: Request) -> StatusSyncEngine:
    return request.app.state.sync_engine  # type: ignore[attr-defined]


def get_manual_source(request: Request) -> Optional[ManualSource]:
    """
    The configured manual source, or None when TASKCORE_MANUAL_ROOT is unset.
    """
    return request.app.state.manual_source  # type: ignore[attr-defined]
