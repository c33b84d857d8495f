# src/taskcore/engine/builder.py
from __future__ import annotations

import inspect
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional, Protocol, Union

from pydantic import ValidationError as PydanticValidationError

from taskcore.domain.errors import InvalidDefinitionError, UnresolvedDependencyError
from taskcore.domain.models import UnitCategory, UnitDefinition, UnitKind
from taskcore.logging import get_logger, step_logger

from .context import ExecutionContext
from .registry import UnitRegistry

_LOG = get_logger(__name__)

StepOutput = Optional[Mapping[str, Any]]
Fingerprint = tuple[tuple[str, int], ...]


class RunnableUnit(Protocol):
    """What every built unit offers, whatever its kind."""

    @property
    def definition(self) -> UnitDefinition: ...

    @property
    def key(self) -> str: ...

    @property
    def category(self) -> UnitCategory: ...

    def execute(self, context: ExecutionContext) -> dict[str, Any]: ...


@dataclass(frozen=True)
class CallableUnit:
    """A step or framework bound to its executable, dependencies and services."""
    definition: UnitDefinition
    fn: Callable[[ExecutionContext], StepOutput]
    dependencies: Mapping[str, RunnableUnit] = field(default_factory=dict)
    services: Mapping[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return self.definition.key

    @property
    def category(self) -> UnitCategory:
        return self.definition.category

    def execute(self, context: ExecutionContext) -> dict[str, Any]:
        scoped = context.scoped(
            services=self.services,
            dependencies=self.dependencies,
            logger=step_logger(self.key),
        )
        output = self.fn(scoped)
        if output is None:
            return {}
        if not isinstance(output, Mapping):
            raise TypeError(
                f"Unit {self.definition.qualified_key} must return a mapping or None, got {type(output).__name__}"
            )
        return dict(output)


@dataclass(frozen=True)
class WorkflowUnit:
    """An ordered composition of built steps."""
    definition: UnitDefinition
    steps: tuple[RunnableUnit, ...]
    services: Mapping[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return self.definition.key

    @property
    def category(self) -> UnitCategory:
        return self.definition.category

    def execute(self, context: ExecutionContext) -> dict[str, Any]:
        """
        Plain sequential execution without retry/timeout policy; the
        Orchestrator drives `steps` itself when a task is involved.
        """
        merged: dict[str, Any] = {}
        for step in self.steps:
            if context.cancelled:
                break
            output = step.execute(context)
            context.data.update(output)
            merged.update(output)
        return merged


@dataclass
class _CacheEntry:
    unit: RunnableUnit
    # qualified keys of every unit this one was built from (transitively)
    closure: frozenset[str]


class UnitBuilder:
    """
    Validates definitions, resolves their dependencies through the registry
    and produces runnable units.

    Built units are cached per (category, key, services fingerprint); the
    cache entry for a unit, and for everything built on top of it, is evicted
    when the registry replaces or removes its definition.
    """

    def __init__(self, registry: UnitRegistry) -> None:
        self._registry = registry
        self._cache: dict[tuple[UnitCategory, str, Fingerprint], _CacheEntry] = {}
        self._lock = threading.Lock()
        registry.add_replace_listener(self.evict)

    def build(
        self,
        definition: Union[UnitDefinition, Mapping[str, Any]],
        services: Optional[Mapping[str, Any]] = None,
    ) -> RunnableUnit:
        """
        Build steps:
        1. validate the definition (raw mappings go through the pydantic schema)
        2. resolve every dependency, failing fast on the first missing key
        3. bind the executable to resolved dependencies and caller services
        4. cache the result when the definition is the registered one
        """
        definition = self.validate(definition)
        return self._build(definition, dict(services or {}), ())[0]

    def build_key(self, ref: str, services: Optional[Mapping[str, Any]] = None) -> RunnableUnit:
        definition = self._registry.resolve(ref)
        if definition is None:
            raise UnresolvedDependencyError(
                f"Unit not registered: {ref}", details={"key": ref}
            )
        return self.build(definition, services)

    @staticmethod
    def validate(definition: Union[UnitDefinition, Mapping[str, Any]]) -> UnitDefinition:
        if isinstance(definition, UnitDefinition):
            return definition
        try:
            return UnitDefinition.model_validate(dict(definition))
        except PydanticValidationError as e:
            key = definition.get("key") if isinstance(definition, Mapping) else None
            raise InvalidDefinitionError(
                f"Invalid unit definition: {key or '<unknown>'}",
                details={
                    "key": key,
                    "errors": [
                        {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]}
                        for err in e.errors()
                    ],
                },
            ) from e

    def evict(self, category: UnitCategory, key: str) -> None:
        qualified = f"{UnitCategory(category).value}/{key}"
        with self._lock:
            stale = [
                ident
                for ident, entry in self._cache.items()
                if (ident[0], ident[1]) == (category, key) or qualified in entry.closure
            ]
            for ident in stale:
                del self._cache[ident]
        if stale:
            _LOG.debug("Evicted %d cached unit(s) built from %s", len(stale), qualified)

    def cached_count(self) -> int:
        with self._lock:
            return len(self._cache)

    # -------------------------
    # Internals
    # -------------------------

    def _build(
        self,
        definition: UnitDefinition,
        services: dict[str, Any],
        stack: tuple[str, ...],
    ) -> tuple[RunnableUnit, frozenset[str]]:
        qualified = definition.qualified_key
        if qualified in stack:
            raise InvalidDefinitionError(
                f"Dependency cycle through {qualified}",
                details={"key": definition.key, "path": [*stack, qualified]},
            )

        ident = (definition.category, definition.key, _fingerprint(services))
        with self._lock:
            entry = self._cache.get(ident)
        if entry is not None and entry.unit.definition is definition:
            _LOG.debug("Build cache hit for %s", qualified)
            return entry.unit, entry.closure

        # Resolve everything before instantiating anything.
        resolved: list[tuple[str, UnitDefinition]] = []
        for ref in definition.required_keys:
            dep = self._registry.resolve(ref)
            if dep is None:
                raise UnresolvedDependencyError(
                    f"Unresolved dependency {ref!r} for unit {qualified}",
                    details={"key": ref, "unit": qualified},
                )
            resolved.append((ref, dep))

        built: dict[str, RunnableUnit] = {}
        closure: set[str] = set()
        for ref, dep in resolved:
            unit, dep_closure = self._build(dep, services, (*stack, qualified))
            built[ref] = unit
            closure.add(dep.qualified_key)
            closure.update(dep_closure)

        unit = self._instantiate(definition, built, services)
        entry = _CacheEntry(unit=unit, closure=frozenset(closure))
        # Only the registered definition is cached; an unregistered or
        # just-replaced one is built fresh every time.
        if self._registry.get(definition.category, definition.key) is not definition:
            return entry.unit, entry.closure
        with self._lock:
            existing = self._cache.get(ident)
            if existing is not None and existing.unit.definition is definition:
                entry = existing
            else:
                self._cache[ident] = entry
        return entry.unit, entry.closure

    def _instantiate(
        self,
        definition: UnitDefinition,
        dependencies: dict[str, RunnableUnit],
        services: dict[str, Any],
    ) -> RunnableUnit:
        if definition.kind == UnitKind.WORKFLOW:
            steps: list[RunnableUnit] = []
            for ref in definition.steps:
                step = dependencies[ref]
                if step.definition.kind != UnitKind.STEP:
                    raise InvalidDefinitionError(
                        f"Workflow {definition.qualified_key} lists {ref!r}, which is not a step",
                        details={"key": definition.key, "step": ref},
                    )
                steps.append(step)
            return WorkflowUnit(definition=definition, steps=tuple(steps), services=services)

        ref = definition.executable_ref
        if inspect.isclass(ref):
            try:
                instance = ref()
            except Exception as e:
                raise InvalidDefinitionError(
                    f"Cannot instantiate executable for {definition.qualified_key}: {e}",
                    details={"key": definition.key},
                ) from e
            fn = getattr(instance, "execute", None)
        else:
            fn = ref
        if not callable(fn):
            raise InvalidDefinitionError(
                f"Executable for {definition.qualified_key} is not callable",
                details={"key": definition.key},
            )
        return CallableUnit(definition=definition, fn=fn, dependencies=dependencies, services=services)


def _fingerprint(services: Mapping[str, Any]) -> Fingerprint:
    # Identity of the bound collaborators; equal services => same built unit.
    return tuple(sorted((name, id(obj)) for name, obj in services.items()))
