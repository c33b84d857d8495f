# src/taskcore/sources/filesystem.py
from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

from taskcore.domain.models import ManualTaskRecord
from taskcore.domain.states import TaskStatus
from taskcore.logging import get_logger

_LOG = get_logger(__name__)

_STATUS_ALIASES: dict[str, TaskStatus] = {
    "pending": TaskStatus.PENDING,
    "todo": TaskStatus.PENDING,
    "in-progress": TaskStatus.IN_PROGRESS,
    "in_progress": TaskStatus.IN_PROGRESS,
    "paused": TaskStatus.PAUSED,
    "completed": TaskStatus.COMPLETED,
    "done": TaskStatus.COMPLETED,
    "cancelled": TaskStatus.CANCELLED,
    "failed": TaskStatus.FAILED,
    "scheduled": TaskStatus.SCHEDULED,
}

_STATUS_LINE = re.compile(r"^\s*\**status\**\s*:\s*\**\s*(?P<value>[A-Za-z_\-]+)", re.IGNORECASE | re.MULTILINE)
_HEADING = re.compile(r"^#\s+(?P<title>.+?)\s*#*\s*$", re.MULTILINE)


def parse_status(value: str) -> Optional[TaskStatus]:
    return _STATUS_ALIASES.get(value.strip().lower())


@dataclass(frozen=True)
class FilesystemManualSource:
    """
    Reads markdown task files under a roadmap directory.

    - natural key: POSIX path relative to `root`
    - title: first `# ` heading, else the file stem
    - content hash: SHA-256 of the raw bytes
    - implied status: a `Status: <value>` line, else the nearest directory
      named after a status (e.g. `roadmap/in-progress/x.md`)
    """
    root: Path
    pattern: str = "*.md"
    project_id: Optional[str] = None

    def scan(self) -> Iterator[ManualTaskRecord]:
        root = Path(self.root)
        if not root.is_dir():
            _LOG.warning("Manual source root does not exist: %s", root)
            return
        for path in sorted(root.rglob(self.pattern)):
            if not path.is_file():
                continue
            try:
                record = self.read(path)
            except OSError as e:
                _LOG.warning("Skipping unreadable manual task %s: %s", path, e)
                continue
            yield record

    def read(self, path: Path) -> ManualTaskRecord:
        raw = path.read_bytes()
        text = raw.decode("utf-8", errors="replace")
        rel = path.relative_to(self.root)

        heading = _HEADING.search(text)
        title = heading.group("title") if heading else path.stem

        return ManualTaskRecord(
            natural_key=rel.as_posix(),
            title=title,
            content=text,
            content_hash=hashlib.sha256(raw).hexdigest(),
            implied_status=self._implied_status(rel, text),
            project_id=self.project_id,
            metadata={"path": rel.as_posix()},
        )

    @staticmethod
    def _implied_status(rel: Path, text: str) -> Optional[TaskStatus]:
        m = _STATUS_LINE.search(text)
        if m:
            status = parse_status(m.group("value"))
            if status is not None:
                return status
        for part in reversed(rel.parts[:-1]):
            status = parse_status(part)
            if status is not None:
                return status
        return None
