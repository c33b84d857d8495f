# tests/test_builtin_units.py
from taskcore.domain.models import UnitCategory, UnitKind
from taskcore.domain.states import RunStatus, TaskSource, TaskStatus
from taskcore.engine import Orchestrator, OrchestratorConfig, register_builtin_units
from taskcore.sources import FilesystemManualSource


def test_builtins_are_registered(registry):
    register_builtin_units(registry)
    register_builtin_units(registry)  # idempotent

    assert [d.key for d in registry.list_by_category(UnitCategory.TASK)] == [
        "scan_manual_tasks",
        "sync_manual_tasks",
        "manual_sync",
    ]
    assert registry.get(UnitCategory.TASK, "manual_sync").kind == UnitKind.WORKFLOW


def test_manual_sync_workflow(tmp_path, registry, builder, store, sync_engine, make_task):
    root = tmp_path / "roadmap"
    (root / "completed").mkdir(parents=True)
    (root / "completed" / "a.md").write_text("# Done thing\n", encoding="utf-8")
    (root / "b.md").write_text("# Open thing\n", encoding="utf-8")

    register_builtin_units(registry)
    make_task("sync-job")
    orch = Orchestrator(
        builder,
        store,
        OrchestratorConfig(max_workers=1, step_backoff_ms=0),
        services={"manual_source": FilesystemManualSource(root), "sync_engine": sync_engine},
    )
    try:
        run = orch.run("task/manual_sync", "sync-job")
    finally:
        orch.shutdown()

    assert run.status == RunStatus.SUCCEEDED
    assert [r.key for r in run.step_results] == ["scan_manual_tasks", "sync_manual_tasks"]
    assert len(run.output["sync_report"]["imported"]) == 2
    assert store.get("sync-job").status == TaskStatus.COMPLETED

    imported = store.get_by_natural_key("completed/a.md")
    assert imported.source == TaskSource.MANUAL
    assert imported.metadata["implied_status"] == "completed"


def test_manual_sync_without_source_fails_the_run(registry, orchestrator, make_task, store):
    register_builtin_units(registry)
    make_task("sync-job")

    run = orchestrator.run("manual_sync", "sync-job")

    assert run.status == RunStatus.FAILED
    assert "manual_source" in run.step_results[0].error
    assert store.get("sync-job").status == TaskStatus.FAILED
