# src/taskcore/engine/registry.py
from __future__ import annotations

from typing import Callable, Iterator, Optional

from taskcore.domain.errors import DuplicateKeyError, NotFoundError
from taskcore.domain.models import UnitCategory, UnitDefinition, UnitKind
from taskcore.logging import get_logger

from .locks import ReadWriteLock

_LOG = get_logger(__name__)

# Called with the (category, key) whose definition was replaced or removed.
ReplaceListener = Callable[[UnitCategory, str], None]


class UnitRegistry:
    """
    Keyed, categorized store of unit definitions (frameworks, steps, workflows).

    Pure bookkeeping: nothing here builds or executes units.
    Reads run concurrently; register/unregister take the write lock.
    Iteration order is registration order.
    """

    def __init__(self) -> None:
        self._lock = ReadWriteLock()
        # dicts keep insertion order; overwrite keeps the original slot
        self._units: dict[tuple[UnitCategory, str], UnitDefinition] = {}
        self._listeners: list[ReplaceListener] = []

    def register(self, definition: UnitDefinition, *, overwrite: bool = False) -> UnitDefinition:
        """
        Adds a definition under (category, key).

        `depends_on` is not checked here; unknown keys fail at build time.
        Overwriting does not touch instances that were already built.
        """
        ident = (definition.category, definition.key)
        with self._lock.write():
            replaced = ident in self._units
            if replaced and not overwrite:
                raise DuplicateKeyError(
                    f"Unit already registered: {definition.qualified_key}",
                    details={"category": definition.category.value, "key": definition.key},
                )
            self._units[ident] = definition

        if replaced:
            _LOG.info("Replaced unit %s (version %s)", definition.qualified_key, definition.version)
            self._notify(*ident)
        else:
            _LOG.debug("Registered %s %s", definition.kind.value, definition.qualified_key)
        return definition

    def unregister(self, category: UnitCategory, key: str) -> UnitDefinition:
        ident = (UnitCategory(category), key)
        with self._lock.write():
            definition = self._units.pop(ident, None)
        if definition is None:
            raise NotFoundError(
                f"Unit not registered: {ident[0].value}/{key}",
                details={"category": ident[0].value, "key": key},
            )
        self._notify(*ident)
        return definition

    def get(self, category: UnitCategory, key: str) -> Optional[UnitDefinition]:
        with self._lock.read():
            return self._units.get((UnitCategory(category), key))

    def resolve(self, ref: str) -> Optional[UnitDefinition]:
        """
        Looks up a dependency reference: `category/key`, or a bare `key`
        matching the earliest-registered unit with that key.
        """
        if "/" in ref:
            category, _, key = ref.partition("/")
            try:
                return self.get(UnitCategory(category), key)
            except ValueError:
                return None
        with self._lock.read():
            for (_, key), definition in self._units.items():
                if key == ref:
                    return definition
        return None

    def list_by_category(self, category: UnitCategory) -> Iterator[UnitDefinition]:
        """Lazily yields the category's units in registration order."""
        category = UnitCategory(category)
        for definition in self._snapshot():
            if definition.category == category:
                yield definition

    def list_by_kind(self, kind: UnitKind) -> Iterator[UnitDefinition]:
        kind = UnitKind(kind)
        for definition in self._snapshot():
            if definition.kind == kind:
                yield definition

    def list_all(self) -> list[UnitDefinition]:
        return self._snapshot()

    def categories(self) -> list[UnitCategory]:
        seen: dict[UnitCategory, None] = {}
        for definition in self._snapshot():
            seen.setdefault(definition.category, None)
        return list(seen)

    def add_replace_listener(self, listener: ReplaceListener) -> None:
        with self._lock.write():
            self._listeners.append(listener)

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._units)

    def __contains__(self, ident: object) -> bool:
        with self._lock.read():
            return ident in self._units

    def _snapshot(self) -> list[UnitDefinition]:
        with self._lock.read():
            return list(self._units.values())

    def _notify(self, category: UnitCategory, key: str) -> None:
        with self._lock.read():
            listeners = list(self._listeners)
        for listener in listeners:
            listener(category, key)
