"""Domain layer definitions."""

from .scans import FileJob, ScanState

__all__ = [
    "FileJob",
    "ScanState",
]
