"""Domain entities for scan bookkeeping."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class FileJob:
    """One discovered source file and how far it got through the pipeline."""

    job_id: str
    source_file: str
    kind: str
    status: str = "queued"
    stage: str | None = None
    error: str | None = None


@dataclass(slots=True)
class ScanState:
    """Bookkeeping for a single ``run_scan`` invocation."""

    scan_id: str
    root_path: str
    status: str = "running"
    started_at: str | None = None
    finished_at: str | None = None
    session_id: str | None = None
    jobs: list[FileJob] = field(default_factory=list)
    report: dict[str, Any] | None = None
