"""Runtime configuration read from the environment.

Recognised variables (a ``.env`` file in the working directory is honoured):

* ``TOOLMANAGER_WORKSPACES_ROOT`` – parent directory for session workspaces
  (default: the system temp directory)
* ``TOOLMANAGER_APP_NAME`` – workspace sub-folder name (default ``ToolManager``)
* ``TOOLMANAGER_OUTPUT_DIR`` – where the local persistence sink writes reports
* ``TOOLMANAGER_MAX_WORKERS`` – bounded concurrency for staging/parsing (default 1)
* ``TOOLMANAGER_PRESERVE_RESULTS`` – archive the results area on cleanup
* ``TOOLMANAGER_STRICT_INVARIANTS`` – re-check aggregate totals after combining
"""
from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

_TRUTHY = {"1", "true", "yes", "on"}


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in _TRUTHY


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


def workspaces_root() -> Path:
    env_root = os.getenv("TOOLMANAGER_WORKSPACES_ROOT")
    if env_root:
        return Path(env_root).expanduser().resolve()
    return Path(tempfile.gettempdir()) / "BRK CNC Management Dashboard"


@dataclass(frozen=True)
class ScanSettings:
    workspaces_root: Path
    app_name: str = "ToolManager"
    output_dir: Path | None = None
    max_workers: int = 1
    preserve_results: bool = False
    strict_invariants: bool = False

    @classmethod
    def from_env(cls) -> "ScanSettings":
        load_dotenv()
        output_dir = os.getenv("TOOLMANAGER_OUTPUT_DIR")
        return cls(
            workspaces_root=workspaces_root(),
            app_name=os.getenv("TOOLMANAGER_APP_NAME") or "ToolManager",
            output_dir=Path(output_dir).expanduser().resolve() if output_dir else None,
            max_workers=max(1, _env_int("TOOLMANAGER_MAX_WORKERS", 1)),
            preserve_results=_env_flag("TOOLMANAGER_PRESERVE_RESULTS"),
            strict_invariants=_env_flag("TOOLMANAGER_STRICT_INVARIANTS"),
        )
