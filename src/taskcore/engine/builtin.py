# src/taskcore/engine/builtin.py
from __future__ import annotations

from typing import Any

from taskcore.domain.models import UnitCategory, UnitDefinition, UnitKind

from .context import ExecutionContext
from .registry import UnitRegistry


def scan_manual_tasks(ctx: ExecutionContext) -> dict[str, Any]:
    source = ctx.service("manual_source")
    records = list(source.scan())
    ctx.logger.info("Scanned %d manual task(s)", len(records))
    return {"records": records}


def sync_manual_tasks(ctx: ExecutionContext) -> dict[str, Any]:
    engine = ctx.service("sync_engine")
    report = engine.sync(ctx.data.get("records", []))
    return {"sync_report": report.model_dump(mode="json")}


BUILTIN_UNITS: tuple[UnitDefinition, ...] = (
    UnitDefinition(
        key="scan_manual_tasks",
        category=UnitCategory.TASK,
        kind=UnitKind.STEP,
        description="Reads the configured manual source",
        capabilities=frozenset({"manual-source"}),
        executable_ref=scan_manual_tasks,
    ),
    UnitDefinition(
        key="sync_manual_tasks",
        category=UnitCategory.TASK,
        kind=UnitKind.STEP,
        description="Reconciles scanned records with the task store",
        capabilities=frozenset({"status-sync"}),
        # sync is not idempotent while invalid transitions remain; never retry
        settings={"max_attempts": 1},
        executable_ref=sync_manual_tasks,
    ),
    UnitDefinition(
        key="manual_sync",
        category=UnitCategory.TASK,
        kind=UnitKind.WORKFLOW,
        description="Scan the manual source and sync it into the store",
        steps=("task/scan_manual_tasks", "task/sync_manual_tasks"),
    ),
)


def register_builtin_units(registry: UnitRegistry) -> None:
    for definition in BUILTIN_UNITS:
        registry.register(definition, overwrite=True)
