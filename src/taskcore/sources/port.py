# src/taskcore/sources/port.py
from __future__ import annotations

from typing import Iterable, Protocol

from taskcore.domain.models import ManualTaskRecord


class ManualSource(Protocol):
    def scan(self) -> Iterable[ManualTaskRecord]:
        """Current snapshot of the source; never mutated by the core."""
        ...
