# tests/test_filesystem_source.py
import hashlib
from pathlib import Path

from taskcore.domain.states import TaskSource, TaskStatus
from taskcore.sources import FilesystemManualSource


def _write(root, rel: str, text: str):
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def test_scan_reads_markdown_files(tmp_path):
    _write(tmp_path, "roadmap/auth.md", "# Add login\n\nDetails here.\n")
    _write(tmp_path, "roadmap/notes.txt", "ignored")

    records = list(FilesystemManualSource(tmp_path).scan())

    assert len(records) == 1
    rec = records[0]
    assert rec.natural_key == "roadmap/auth.md"
    assert rec.title == "Add login"
    assert rec.content_hash == hashlib.sha256((tmp_path / "roadmap/auth.md").read_bytes()).hexdigest()
    assert rec.implied_status is None
    assert rec.metadata == {"path": "roadmap/auth.md"}


def test_title_falls_back_to_file_stem(tmp_path):
    _write(tmp_path, "cleanup-logs.md", "no heading here")
    (rec,) = FilesystemManualSource(tmp_path).scan()
    assert rec.title == "cleanup-logs"


def test_implied_status_from_directory(tmp_path):
    _write(tmp_path, "in-progress/a.md", "# A")
    _write(tmp_path, "completed/sub/b.md", "# B")
    _write(tmp_path, "backlog/c.md", "# C")

    statuses = {r.natural_key: r.implied_status for r in FilesystemManualSource(tmp_path).scan()}

    assert statuses == {
        "backlog/c.md": None,
        "completed/sub/b.md": TaskStatus.COMPLETED,
        "in-progress/a.md": TaskStatus.IN_PROGRESS,
    }


def test_status_line_overrides_directory(tmp_path):
    _write(tmp_path, "pending/a.md", "# A\n\n**Status:** done\n")
    (rec,) = FilesystemManualSource(tmp_path).scan()
    assert rec.implied_status == TaskStatus.COMPLETED


def test_missing_root_yields_nothing(tmp_path):
    assert list(FilesystemManualSource(tmp_path / "nope").scan()) == []


def test_scan_feeds_sync(tmp_path, sync_engine, store):
    root = tmp_path / "docs"
    _write(root, "a.md", "# A")
    source = FilesystemManualSource(root, project_id="roadmap")

    first = sync_engine.sync_from(source)
    assert len(first.imported) == 1
    task = store.get_by_natural_key("a.md")
    assert task.source == TaskSource.MANUAL
    assert task.project_id == "roadmap"
    assert task.title == "A"

    assert sync_engine.sync_from(source).unchanged == [task.id]

    _write(root, "a.md", "# A\n\nStatus: in-progress\n")
    changed = sync_engine.sync_from(source)
    assert changed.updated == [task.id]
    assert store.get(task.id).status == TaskStatus.IN_PROGRESS


def test_unreadable_file_is_skipped(tmp_path, monkeypatch, sync_engine, store):
    _write(tmp_path, "a.md", "# A")
    _write(tmp_path, "gone.md", "# Gone")
    _write(tmp_path, "z.md", "# Z")

    read_bytes = Path.read_bytes

    def flaky_read(self):
        if self.name == "gone.md":
            raise FileNotFoundError(str(self))
        return read_bytes(self)

    monkeypatch.setattr(Path, "read_bytes", flaky_read)
    source = FilesystemManualSource(tmp_path)

    assert [r.natural_key for r in source.scan()] == ["a.md", "z.md"]
    report = sync_engine.sync_from(source)
    assert len(report.imported) == 2
    assert report.errors == []
    assert store.get_by_natural_key("gone.md") is None
