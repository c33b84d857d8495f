# tests/test_store.py
import pytest

from taskcore.domain.errors import (
    ConcurrentModificationError,
    ConflictError,
    CycleDetectedError,
    DependencyError,
    NotFoundError,
)
from taskcore.domain.models import TaskFilter
from taskcore.domain.states import TaskSource, TaskStatus
from taskcore.domain.task import Task
from taskcore.storage import SQLiteDB, apply_migrations


def test_migrations_are_idempotent(tmp_path):
    db = SQLiteDB(tmp_path / "m.db")
    assert db.initialize() == 2
    assert db.initialize() == 0
    with db.connection() as conn:
        assert apply_migrations(conn) == 0


def test_insert_and_get_roundtrip(store, make_task):
    make_task("dep")
    make_task(
        "t1",
        description="d",
        type="analysis",
        dependencies={"dep"},
        metadata={"path": "roadmap/x.md"},
    )
    got = store.get("t1")
    assert got is not None
    assert got.dependencies == {"dep"}
    assert got.metadata == {"path": "roadmap/x.md"}
    assert got.status == TaskStatus.PENDING
    assert got.source == TaskSource.MANAGED
    assert got.version == 0
    assert store.get("nope") is None


def test_insert_rejects_duplicates_missing_deps_and_self_cycle(store, make_task):
    make_task("a")
    with pytest.raises(ConflictError):
        make_task("a")
    with pytest.raises(DependencyError) as exc:
        make_task("b", dependencies={"ghost"})
    assert exc.value.details["missing"] == ["ghost"]
    assert store.get("b") is None


def test_add_dependencies_rejects_cycles(store, make_task):
    make_task("a")
    make_task("b", dependencies={"a"})
    make_task("c", dependencies={"b"})

    with pytest.raises(CycleDetectedError):
        store.add_dependencies("a", ["c"])
    with pytest.raises(CycleDetectedError):
        store.add_dependencies("a", ["a"])

    make_task("d")
    updated = store.add_dependencies("a", ["d"])
    assert updated.dependencies == {"d"}
    assert updated.version == 1


def test_save_is_compare_and_set(store, make_task):
    make_task("t1")
    first = store.get("t1")
    second = store.get("t1")

    first.start()
    store.save(first)
    assert first.version == 1

    second.cancel("late")
    with pytest.raises(ConcurrentModificationError):
        store.save(second)
    assert store.get("t1").status == TaskStatus.IN_PROGRESS


def test_save_unknown_task_is_not_found(store):
    with pytest.raises(NotFoundError):
        store.save(Task(id="ghost", project_id="p", title="t"))


def test_status_history_is_newest_first_and_bounded(store, make_task):
    make_task("t1")
    task = store.get("t1")
    task.start()
    store.save(task)
    task.pause()
    store.save(task)
    task.title = "renamed"
    store.save(task)  # no status change, no history entry
    task.resume()
    store.save(task)

    assert store.list_status_history("t1", limit=10) == [
        TaskStatus.IN_PROGRESS,
        TaskStatus.PAUSED,
        TaskStatus.IN_PROGRESS,
        TaskStatus.PENDING,
    ]
    assert store.list_status_history("t1", limit=2) == [TaskStatus.IN_PROGRESS, TaskStatus.PAUSED]


def test_query_filters_and_count(store, make_task):
    make_task("a", project_id="p1", type="analysis")
    make_task("b", project_id="p2", type="analysis")
    make_task("m", project_id="p1", source=TaskSource.MANUAL, natural_key="roadmap/m.md")

    assert [t.id for t in store.query(TaskFilter(project_id="p1"))] == ["a", "m"]
    assert store.count(TaskFilter(type="analysis")) == 2
    assert [t.id for t in store.query(TaskFilter(source=TaskSource.MANUAL))] == ["m"]
    assert store.get_by_natural_key("roadmap/m.md").id == "m"
    assert len(store.query(TaskFilter(limit=1))) == 1


def test_natural_key_is_unique(store, make_task):
    make_task("m1", natural_key="k")
    with pytest.raises(ConflictError):
        make_task("m2", natural_key="k")


def test_delete(store, make_task):
    make_task("a")
    make_task("b", dependencies={"a"})

    with pytest.raises(ConflictError):
        store.delete("a")

    store.delete("b")
    store.delete("a")
    assert store.get("a") is None
    assert store.list_status_history("a") == []
    with pytest.raises(NotFoundError):
        store.delete("a")
