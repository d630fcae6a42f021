"""Input discovery for a scan root.

Two kinds of files matter:

* inventory spreadsheets → ``inventory_spreadsheet`` (by extension)
* per-project usage exports named ``W1234AB01[A-Z].json`` → ``usage_record``

Everything else, including artefacts written by earlier runs, is ignored.
"""

from __future__ import annotations

import logging
import os
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from toolmanager.core.errors import DiscoveryWarning
from toolmanager.core.identity import ProjectIdentity, parse_project_identity
from toolmanager.core.schema import SourceKind

logger = logging.getLogger(__name__)

SPREADSHEET_SUFFIXES = {".xlsx", ".xls", ".xlsm"}
USAGE_SUFFIXES = {".json"}
GENERATED_MARKERS = ("BRK_fixed", "BRK_result", "ToolManager_Result")


@dataclass(frozen=True, slots=True)
class SourceFile:
    path: Path
    kind: SourceKind
    identity: ProjectIdentity | None = None


def is_generated(name: str) -> bool:
    return any(marker in name for marker in GENERATED_MARKERS)


def classify(path: str | Path) -> SourceFile | None:
    path = Path(path)
    if is_generated(path.name):
        return None
    suffix = path.suffix.lower()
    if suffix in SPREADSHEET_SUFFIXES:
        return SourceFile(path=path, kind="inventory_spreadsheet")
    if suffix in USAGE_SUFFIXES:
        identity = parse_project_identity(path.name)
        if identity is not None:
            return SourceFile(path=path, kind="usage_record", identity=identity)
    return None


def _warn_unreadable(path: str, exc: OSError) -> None:
    message = f"cannot read directory {path}: {exc.strerror or exc}"
    logger.warning(message)
    warnings.warn(message, DiscoveryWarning, stacklevel=3)


def scan(root_path: str | Path) -> Iterator[SourceFile]:
    """Yield classified files under ``root_path`` in sorted order.

    Unreadable sub-directories produce a :class:`DiscoveryWarning` and are
    skipped.  Symlinked directories are not followed.
    """

    root = Path(root_path)
    pending = [str(root)]
    while pending:
        current = pending.pop()
        try:
            with os.scandir(current) as iterator:
                entries = sorted(iterator, key=lambda entry: entry.name)
        except OSError as exc:
            _warn_unreadable(current, exc)
            continue

        subdirs: list[str] = []
        for entry in entries:
            try:
                if entry.is_dir(follow_symlinks=False):
                    subdirs.append(entry.path)
                    continue
                if not entry.is_file():
                    continue
            except OSError as exc:
                _warn_unreadable(entry.path, exc)
                continue
            source = classify(entry.path)
            if source is not None:
                yield source
        pending.extend(reversed(subdirs))
