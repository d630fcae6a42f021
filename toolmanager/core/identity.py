"""Project identity derived from usage-record filenames.

Usage files are named ``<ProjectBase><Position>.json`` where the project base
looks like ``W5270NS01003`` and the position is an optional single capital
letter.  A missing position means the first position, ``A``.
"""
from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from pathlib import Path

PROJECT_FILE_PATTERN = re.compile(r"^(W\d{4}[A-Z]{2}\d{2,})([A-Z]?)\.json$")
DEFAULT_POSITION = "A"
UNKNOWN = "UNKNOWN"


@dataclass(frozen=True, slots=True)
class ProjectIdentity:
    project_base: str
    position_letter: str = DEFAULT_POSITION

    @property
    def position_name(self) -> str:
        return f"{self.project_base}{self.position_letter}"


def parse_project_identity(filename: str | Path) -> ProjectIdentity | None:
    """Return the identity encoded in ``filename`` or ``None`` if it does not match."""

    match = PROJECT_FILE_PATTERN.match(Path(filename).name)
    if not match:
        return None
    return ProjectIdentity(project_base=match.group(1), position_letter=match.group(2) or DEFAULT_POSITION)


def normalize_tool_id(value: object) -> str:
    """Case-normalise a tool code for matching; empty values become ``UNKNOWN``."""

    if value is None:
        return UNKNOWN
    text = unicodedata.normalize("NFKC", str(value)).strip().upper()
    return text or UNKNOWN
