# src/taskcore/engine/context.py
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Mapping, Optional

from taskcore.logging import get_logger

if TYPE_CHECKING:
    from .builder import RunnableUnit


class CancelToken:
    """
    Cooperative cancellation flag. The orchestrator checks it between steps;
    long-running steps may poll `cancelled` themselves.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: Optional[str] = None

    def cancel(self, reason: Optional[str] = None) -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def wait(self, timeout_s: float) -> bool:
        return self._event.wait(timeout=timeout_s)


@dataclass
class ExecutionContext:
    """
    What a unit sees when it executes.

    - `data`: key-value bag shared along a run; each step's output is merged in
    - `services`: external collaborators bound at build time (store, sources, ...)
    - `dependencies`: runnable units resolved from the unit's `depends_on`
    """
    task_id: Optional[str] = None
    run_id: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)
    cancel_token: CancelToken = field(default_factory=CancelToken)
    logger: logging.Logger = field(default_factory=get_logger)
    services: Mapping[str, Any] = field(default_factory=dict)
    dependencies: Mapping[str, "RunnableUnit"] = field(default_factory=dict)

    @property
    def cancelled(self) -> bool:
        return self.cancel_token.cancelled

    def service(self, name: str) -> Any:
        try:
            return self.services[name]
        except KeyError:
            raise LookupError(f"Service not bound in execution context: {name}") from None

    def scoped(
        self,
        *,
        services: Mapping[str, Any],
        dependencies: Mapping[str, "RunnableUnit"],
        logger: logging.Logger,
    ) -> "ExecutionContext":
        # Same data bag and token; unit-specific collaborators.
        return replace(self, services=services, dependencies=dependencies, logger=logger)
