"""
Execution engine for taskcore.

- registry: keyed store of unit definitions
- builder: validates definitions and produces runnable units
- orchestrator: runs workflows against tasks (retry, timeout, per-task lock)
- sync: reconciles manual sources and applies bulk status operations
- tasks: managed-task operations over the store
"""

from .builder import UnitBuilder
from .builtin import register_builtin_units
from .context import CancelToken, ExecutionContext
from .orchestrator import Orchestrator, OrchestratorConfig
from .registry import UnitRegistry
from .sync import StatusSyncEngine
from .tasks import TaskService

__all__ = [
    "UnitBuilder",
    "UnitRegistry",
    "Orchestrator",
    "OrchestratorConfig",
    "StatusSyncEngine",
    "TaskService",
    "CancelToken",
    "ExecutionContext",
    "register_builtin_units",
]
