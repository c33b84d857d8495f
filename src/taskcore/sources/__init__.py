"""
Manual task sources (external, non-authoritative views of tasks).

- port: the ManualSource protocol the sync engine scans
- filesystem: markdown roadmap directory adapter
"""

from .filesystem import FilesystemManualSource
from .port import ManualSource

__all__ = ["ManualSource", "FilesystemManualSource"]
