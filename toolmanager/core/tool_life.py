"""Per-unit tool life estimation.

The figures here are not measured.  They are a rough heuristic so that
inventory quantities can be turned into capacity minutes, and any object with
an ``estimate(tool_id, description)`` method can replace
:class:`HeuristicToolLifeEstimator` once measured tool-life data exists.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Protocol

BASE_LIFE_MINUTES = 60.0

# (minimum diameter in mm, life per unit in minutes), checked top-down
DIAMETER_BRACKETS: tuple[tuple[float, float], ...] = (
    (20.0, 120.0),
    (15.0, 90.0),
    (10.0, 75.0),
    (5.0, 60.0),
    (0.0, 45.0),
)

# (code substrings, multiplier); first family that matches wins
FAMILY_FACTORS: tuple[tuple[tuple[str, ...], float], ...] = (
    (("BHF", "DRILL"), 1.5),
    (("VLM", "MILL"), 1.0),
    (("TAP", "MF"), 0.8),
    (("KPF", "FACE"), 1.3),
)

_MARKED_DIAMETER = re.compile(r"[øØ⌀](\d+(?:[,.]\d+)?)")
_DESCRIPTION_DIAMETER = re.compile(r"(\d+(?:[,.]\d+)?)")
_CODE_DIAMETER = re.compile(r"D(\d+(?:[,.]\d+)?)", re.IGNORECASE)
_CODE_SHANK = re.compile(r"S(\d+(?:[,.]\d+)?)", re.IGNORECASE)


class ToolLifeEstimator(Protocol):
    """Contract for strategies that return minutes of life for one tool unit."""

    def estimate(self, tool_id: str, description: str | None = None) -> float: ...


def _to_float(text: str) -> float:
    return float(text.replace(",", "."))


def extract_diameter(tool_id: str | None, description: str | None) -> float | None:
    """Read a diameter from the description (``ø5,7``) or else from the code (``D10``, ``S8``)."""

    if description:
        match = _MARKED_DIAMETER.search(description) or _DESCRIPTION_DIAMETER.search(description)
        if match:
            return _to_float(match.group(1))
    if tool_id:
        for pattern in (_CODE_DIAMETER, _CODE_SHANK):
            match = pattern.search(tool_id)
            if match:
                return _to_float(match.group(1))
    return None


@dataclass(frozen=True)
class HeuristicToolLifeEstimator:
    base_life: float = BASE_LIFE_MINUTES
    brackets: tuple[tuple[float, float], ...] = DIAMETER_BRACKETS
    families: tuple[tuple[tuple[str, ...], float], ...] = FAMILY_FACTORS

    def _life_for_diameter(self, diameter: float | None) -> float:
        if diameter is None or diameter <= 0:
            return self.base_life
        for minimum, life in self.brackets:
            if diameter >= minimum:
                return life
        return self.base_life

    def _factor(self, tool_id: str | None) -> float:
        if not tool_id:
            return 1.0
        code = tool_id.upper()
        for markers, factor in self.families:
            if any(marker in code for marker in markers):
                return factor
        return 1.0

    def estimate(self, tool_id: str, description: str | None = None) -> float:
        life = self._life_for_diameter(extract_diameter(tool_id, description))
        return float(math.floor(life * self._factor(tool_id) + 0.5))


DEFAULT_ESTIMATOR = HeuristicToolLifeEstimator()
