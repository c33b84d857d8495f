# src/taskcore/engine/locks.py
from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator


class ReadWriteLock:
    """
    Many readers or one writer. Waiting writers block new readers so a
    steady read load cannot starve registration.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class TaskLocks:
    """
    Per-task mutual exclusion for workflow runs. Acquisition never blocks:
    a held lock means another run owns the task.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._held: set[str] = set()

    def try_acquire(self, task_id: str) -> bool:
        with self._guard:
            if task_id in self._held:
                return False
            self._held.add(task_id)
            return True

    def release(self, task_id: str) -> None:
        with self._guard:
            self._held.discard(task_id)

    def is_held(self, task_id: str) -> bool:
        with self._guard:
            return task_id in self._held
