"""Disposable per-scan staging area.

Every scan works on copies: source files are hashed and copied into a fresh
``session_<timestamp>_<random>`` directory and all derived artefacts are
written there as well.  The directory is removed when the scan ends,
optionally after archiving the ``results`` folder.
"""

from __future__ import annotations

import logging
import os
import secrets
import shutil
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterable

from toolmanager.core.errors import CopyError, WorkspaceFatal
from toolmanager.core.hashing import sha256_file
from toolmanager.core.settings import workspaces_root

logger = logging.getLogger(__name__)

DEFAULT_SUBDIRS = {
    "input": "input_files",
    "processed": "processed_files",
    "results": "results",
    "external": "external_files",
}
ARCHIVE_DIR = "archived_results"
SESSION_PREFIX = "session_"
DEFAULT_MAX_AGE = timedelta(hours=24)


@dataclass(frozen=True, slots=True)
class StagedFile:
    source_path: Path
    staged_path: Path
    content_hash: str
    modified_time: float
    category: str


def _base_root(base_path: str | Path | None) -> Path:
    if base_path:
        return Path(base_path).expanduser().resolve()
    return workspaces_root()


def is_within(path: Path, root: Path) -> bool:
    try:
        path.resolve().relative_to(root.resolve())
    except ValueError:
        return False
    return True


class SessionWorkspace:
    def __init__(self, session_id: str, root: Path, app_root: Path, *, preserve_results: bool = False) -> None:
        self.session_id = session_id
        self.root = root
        self.app_root = app_root
        self.preserve_results = preserve_results
        self.created_at = datetime.now()
        self._registry: dict[Path, StagedFile] = {}
        self._lock = threading.Lock()
        self._cleaned = False
        self._archive: Path | None = None

    # ------------------------------------------------------------------
    # construction
    # ------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        app_name: str,
        base_path: str | Path | None = None,
        *,
        source_roots: Iterable[str | Path] = (),
        preserve_results: bool = False,
    ) -> "SessionWorkspace":
        """Allocate ``<base>/<app_name>/session_<ts>_<rand>/`` with its sub-folders."""

        base = _base_root(base_path)
        app_root = base / app_name
        for source_root in source_roots:
            if is_within(app_root, Path(source_root)):
                raise WorkspaceFatal(f"workspace base {app_root} lies inside source root {source_root}")

        session_id = f"{SESSION_PREFIX}{time.time_ns() // 1_000_000}_{secrets.token_hex(4)}"
        root = app_root / session_id
        try:
            root.mkdir(parents=True, exist_ok=False)
            for sub in DEFAULT_SUBDIRS.values():
                (root / sub).mkdir()
        except OSError as exc:
            raise WorkspaceFatal(f"cannot create session workspace under {app_root}: {exc}") from exc

        logger.info("Created session workspace %s", root)
        return cls(session_id, root, app_root, preserve_results=preserve_results)

    def __enter__(self) -> "SessionWorkspace":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup(preserve_results=self.preserve_results)

    # ------------------------------------------------------------------
    # staging
    # ------------------------------------------------------------------
    def area(self, category: str) -> Path:
        sub = DEFAULT_SUBDIRS.get(category, category)
        if sub not in DEFAULT_SUBDIRS.values():
            raise ValueError(f"unknown workspace area: {category}")
        return self.root / sub

    def _reserve_name(self, folder: Path, filename: str) -> Path:
        candidate = folder / filename
        stem, suffix = Path(filename).stem, Path(filename).suffix
        counter = 1
        while candidate.exists():
            candidate = folder / f"{stem}_{counter}{suffix}"
            counter += 1
        candidate.touch()
        return candidate

    def copy_in(self, source_path: str | Path, category: str = "input") -> Path:
        """Copy ``source_path`` into ``category`` and remember its fingerprint."""

        source = Path(source_path).resolve()
        folder = self.area(category)
        try:
            stat = source.stat()
            content_hash = sha256_file(source)
        except OSError as exc:
            raise CopyError(str(source), exc.strerror or str(exc)) from exc

        with self._lock:
            destination = self._reserve_name(folder, source.name)
        try:
            shutil.copyfile(source, destination)
        except OSError as exc:
            destination.unlink(missing_ok=True)
            raise CopyError(str(source), exc.strerror or str(exc)) from exc

        with self._lock:
            self._registry[source] = StagedFile(
                source_path=source,
                staged_path=destination,
                content_hash=content_hash,
                modified_time=stat.st_mtime,
                category=category,
            )
        logger.debug("Staged %s as %s", source, destination.name)
        return destination

    def write(self, category: str, filename: str, content: str | bytes) -> Path:
        """Persist a derived artefact inside the session tree."""

        target = self.area(category) / Path(filename).name
        if isinstance(content, bytes):
            target.write_bytes(content)
        else:
            target.write_text(content, encoding="utf-8")
        return target

    # ------------------------------------------------------------------
    # lookups
    # ------------------------------------------------------------------
    def staged(self, source_path: str | Path) -> StagedFile | None:
        return self._registry.get(Path(source_path).resolve())

    def staged_path(self, source_path: str | Path) -> Path | None:
        entry = self.staged(source_path)
        return entry.staged_path if entry else None

    def original_path(self, staged_path: str | Path) -> Path | None:
        target = Path(staged_path)
        for entry in self._registry.values():
            if entry.staged_path == target:
                return entry.source_path
        return None

    def has_changed(self, source_path: str | Path) -> bool:
        """True when the source differs from the copy staged earlier in this session."""

        entry = self.staged(source_path)
        if entry is None:
            return True
        try:
            mtime = Path(source_path).stat().st_mtime
        except OSError:
            return True
        if mtime == entry.modified_time:
            return False
        return sha256_file(Path(source_path)) != entry.content_hash

    @staticmethod
    def fingerprint(path: str | Path) -> str:
        return sha256_file(Path(path))

    def result_files(self) -> list[Path]:
        results = self.area("results")
        if not results.exists():
            return []
        return sorted(path for path in results.rglob("*") if path.is_file())

    def session_info(self) -> dict:
        return {
            "session_id": self.session_id,
            "root": str(self.root),
            "created_at": self.created_at.isoformat(timespec="seconds"),
            "staged_files": len(self._registry),
            "areas": {key: str(self.root / sub) for key, sub in DEFAULT_SUBDIRS.items()},
            "cleaned": self._cleaned,
        }

    # ------------------------------------------------------------------
    # teardown
    # ------------------------------------------------------------------
    def cleanup(self, preserve_results: bool = False) -> Path | None:
        """Delete the session tree, archiving ``results`` first if asked.

        Calling it again is a no-op that returns the same archive path.
        """

        if self._cleaned:
            return self._archive
        self._cleaned = True

        results = self.root / DEFAULT_SUBDIRS["results"]
        if preserve_results and results.exists():
            stamp = datetime.now().strftime("%Y%m%dT%H%M%S%f")
            archive = self.app_root / ARCHIVE_DIR / f"{self.session_id}_{stamp}"
            archive.parent.mkdir(parents=True, exist_ok=True)
            shutil.copytree(results, archive)
            self._archive = archive
            logger.info("Archived session results to %s", archive)

        shutil.rmtree(self.root, ignore_errors=True)
        logger.info("Removed session workspace %s", self.root)
        return self._archive

    @classmethod
    def cleanup_old_sessions(
        cls,
        app_name: str,
        base_path: str | Path | None = None,
        max_age: timedelta = DEFAULT_MAX_AGE,
    ) -> list[Path]:
        """Remove ``session_*`` folders left behind by scans older than ``max_age``."""

        app_root = _base_root(base_path) / app_name
        if not app_root.is_dir():
            return []
        cutoff = time.time() - max_age.total_seconds()
        removed: list[Path] = []
        with os.scandir(app_root) as entries:
            for entry in entries:
                if not entry.name.startswith(SESSION_PREFIX) or not entry.is_dir(follow_symlinks=False):
                    continue
                if entry.stat(follow_symlinks=False).st_mtime < cutoff:
                    shutil.rmtree(entry.path, ignore_errors=True)
                    removed.append(Path(entry.path))
        if removed:
            logger.info("Removed %d stale session workspace(s) under %s", len(removed), app_root)
        return removed
