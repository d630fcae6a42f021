"""Application service layer for scan bookkeeping."""
from __future__ import annotations

from collections import Counter
from typing import Any

from toolmanager.infrastructure import InMemoryScanRepository, ScanRepository


class ScanService:
    """Coordinates scan-related use cases."""

    def __init__(self, repository: ScanRepository) -> None:
        self._repository = repository

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    def start_scan(self, root_path: str) -> str:
        return self._repository.create_scan(root_path)

    def attach_session(self, scan_id: str, session_id: str) -> None:
        self._repository.attach_session(scan_id, session_id)

    def finish_scan(self, scan_id: str, status: str, report: dict[str, Any] | None = None) -> None:
        self._repository.finish_scan(scan_id, status, report)

    # ------------------------------------------------------------------
    # per-file jobs
    # ------------------------------------------------------------------
    def register_file(self, scan_id: str, source_file: str, kind: str) -> str:
        job_id = self._repository.next_job_id()
        self._repository.register_file(scan_id, job_id, source_file, kind)
        return job_id

    def mark_running(self, scan_id: str, job_id: str, stage: str) -> None:
        self._repository.update_job_status(scan_id, job_id, "running", stage=stage)

    def mark_completed(self, scan_id: str, job_id: str) -> None:
        self._repository.update_job_status(scan_id, job_id, "completed", stage="done")

    def mark_failed(self, scan_id: str, job_id: str, stage: str, error: str) -> None:
        self._repository.update_job_status(scan_id, job_id, "failed", stage=stage, error=error)

    def mark_skipped(self, scan_id: str, job_id: str, reason: str) -> None:
        self._repository.update_job_status(scan_id, job_id, "skipped", error=reason)

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------
    def get_scan_overview(self, scan_id: str) -> dict[str, object] | None:
        return self._repository.get_scan_overview(scan_id)

    def failed_jobs(self, scan_id: str) -> list[dict]:
        return self._repository.list_jobs(scan_id, status="failed")

    def list_scans(self) -> list[dict[str, object]]:
        return self._repository.list_scans()

    def get_scan_progress(self, scan_id: str) -> dict[str, object] | None:
        overview = self.get_scan_overview(scan_id)
        if overview is None:
            return None
        jobs = overview.get("jobs") or []
        counter = Counter(job.get("status") for job in jobs)
        return {
            "scan_id": scan_id,
            "status": overview.get("status"),
            "total": len(jobs),
            "by_status": dict(counter),
        }

    # ------------------------------------------------------------------
    # testing helpers
    # ------------------------------------------------------------------
    def reset(self) -> None:
        self._repository.reset()


_repository = InMemoryScanRepository()
_service = ScanService(_repository)


def get_scan_service() -> ScanService:
    """Return the singleton scan service for the process."""

    return _service


def reset_scan_state() -> None:
    """Reset the in-memory store (used in tests)."""

    _service.reset()
