"""Infrastructure layer exports."""

from .persistence import InMemorySink, LocalFileSink, PersistenceSink
from .scans import InMemoryScanRepository, ScanRepository

__all__ = [
    "InMemoryScanRepository",
    "ScanRepository",
    "InMemorySink",
    "LocalFileSink",
    "PersistenceSink",
]
