"""Infrastructure layer for scan bookkeeping."""
from __future__ import annotations

import threading
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Protocol

from toolmanager.domain import FileJob, ScanState


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ScanRepository(Protocol):
    """Persistence contract for scan state."""

    def create_scan(self, root_path: str) -> str: ...

    def attach_session(self, scan_id: str, session_id: str) -> None: ...

    def register_file(self, scan_id: str, job_id: str, source_file: str, kind: str) -> None: ...

    def update_job_status(
        self,
        scan_id: str,
        job_id: str,
        status: str,
        *,
        stage: str | None = None,
        error: str | None = None,
    ) -> None: ...

    def finish_scan(self, scan_id: str, status: str, report: dict[str, Any] | None = None) -> None: ...

    def get_scan_overview(self, scan_id: str) -> dict[str, object] | None: ...

    def list_jobs(self, scan_id: str, status: str | None = None) -> list[dict]: ...

    def list_scans(self) -> list[dict[str, object]]: ...

    def next_job_id(self) -> str: ...

    def reset(self) -> None: ...


class InMemoryScanRepository:
    """Thread-safe in-memory repository; staging workers report from pool threads."""

    def __init__(self) -> None:
        self._scans: dict[str, ScanState] = {}
        self._scan_counter = 0
        self._job_counter = 0
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # internal helpers
    # ------------------------------------------------------------------
    def _require(self, scan_id: str) -> ScanState:
        scan = self._scans.get(scan_id)
        if scan is None:
            raise KeyError(f"unknown scan: {scan_id}")
        return scan

    # ------------------------------------------------------------------
    # operations
    # ------------------------------------------------------------------
    def create_scan(self, root_path: str) -> str:
        with self._lock:
            self._scan_counter += 1
            scan_id = f"scan-{self._scan_counter:05d}"
            self._scans[scan_id] = ScanState(scan_id=scan_id, root_path=root_path, started_at=_now())
        return scan_id

    def attach_session(self, scan_id: str, session_id: str) -> None:
        with self._lock:
            self._require(scan_id).session_id = session_id

    def register_file(self, scan_id: str, job_id: str, source_file: str, kind: str) -> None:
        with self._lock:
            self._require(scan_id).jobs.append(FileJob(job_id=job_id, source_file=source_file, kind=kind))

    def update_job_status(
        self,
        scan_id: str,
        job_id: str,
        status: str,
        *,
        stage: str | None = None,
        error: str | None = None,
    ) -> None:
        with self._lock:
            for job in self._require(scan_id).jobs:
                if job.job_id == job_id:
                    job.status = status
                    job.stage = stage
                    job.error = error
                    break

    def finish_scan(self, scan_id: str, status: str, report: dict[str, Any] | None = None) -> None:
        with self._lock:
            scan = self._require(scan_id)
            scan.status = status
            scan.finished_at = _now()
            scan.report = report

    def get_scan_overview(self, scan_id: str) -> dict[str, object] | None:
        with self._lock:
            scan = self._scans.get(scan_id)
            if scan is None:
                return None
            return {
                "scan_id": scan.scan_id,
                "root_path": scan.root_path,
                "status": scan.status,
                "started_at": scan.started_at,
                "finished_at": scan.finished_at,
                "session_id": scan.session_id,
                "jobs": [asdict(job) for job in scan.jobs],
                "report": scan.report,
            }

    def list_jobs(self, scan_id: str, status: str | None = None) -> list[dict]:
        with self._lock:
            scan = self._scans.get(scan_id)
            if scan is None:
                return []
            return [asdict(job) for job in scan.jobs if status is None or job.status == status]

    def list_scans(self) -> list[dict[str, object]]:
        with self._lock:
            summaries = [
                {
                    "scan_id": scan.scan_id,
                    "root_path": scan.root_path,
                    "status": scan.status,
                    "started_at": scan.started_at,
                    "jobs": len(scan.jobs),
                    "failed": sum(1 for job in scan.jobs if job.status == "failed"),
                }
                for scan in self._scans.values()
            ]
        summaries.sort(key=lambda item: item["scan_id"], reverse=True)
        return summaries

    def next_job_id(self) -> str:
        with self._lock:
            self._job_counter += 1
            return f"job-{self._job_counter:05d}"

    def reset(self) -> None:
        with self._lock:
            self._scans.clear()
            self._scan_counter = 0
            self._job_counter = 0
