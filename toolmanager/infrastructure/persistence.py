"""Destinations for finished reports."""
from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class PersistenceSink(Protocol):
    """Stores a named artefact; saving the same name again overwrites it."""

    def save(self, category: str, filename: str, content: str | bytes) -> str: ...


class LocalFileSink:
    """Writes artefacts to ``<root>/<category>/<filename>``."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).expanduser().resolve()

    def save(self, category: str, filename: str, content: str | bytes) -> str:
        folder = self.root / Path(category).name
        folder.mkdir(parents=True, exist_ok=True)
        target = folder / Path(filename).name
        if isinstance(content, bytes):
            target.write_bytes(content)
        else:
            target.write_text(content, encoding="utf-8")
        logger.info("Saved %s", target)
        return str(target)


class InMemorySink:
    """Keeps artefacts in a dict keyed by ``(category, filename)``."""

    def __init__(self) -> None:
        self.items: dict[tuple[str, str], str | bytes] = {}
        self._lock = threading.Lock()

    def save(self, category: str, filename: str, content: str | bytes) -> str:
        with self._lock:
            self.items[(category, filename)] = content
        return f"memory://{category}/{filename}"

    def get(self, category: str, filename: str) -> str | bytes | None:
        return self.items.get((category, filename))
