"""Application services."""

from .scans import ScanService, get_scan_service, reset_scan_state

__all__ = [
    "ScanService",
    "get_scan_service",
    "reset_scan_state",
]
