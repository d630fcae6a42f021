"""Tool lifecycle classification against rated life plus an overrun allowance.

A physical tool accumulates cutting minutes and moves through the ordered
states ``FREE < IN_USE < OVERRUN < EXPIRED``.  With rated life ``R`` and
overrun allowance ``P`` percent the limit is ``R * (1 + P / 100)``:

* ``FREE``     – no cutting time yet
* ``IN_USE``   – below rated life
* ``OVERRUN``  – between rated life and the overrun limit (both inclusive)
* ``EXPIRED``  – beyond the overrun limit

Usage only ever accumulates, so the state never moves back.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import IntEnum

from toolmanager.core.identity import normalize_tool_id


class ToolState(IntEnum):
    FREE = 0
    IN_USE = 1
    OVERRUN = 2
    EXPIRED = 3


@dataclass(frozen=True, slots=True)
class InventoryNeed:
    needed: int
    shortage: int


def max_with_overrun(rated_life: float, overrun_percent: float) -> float:
    return rated_life * (1 + overrun_percent / 100)


def classify(cumulative_time: float, rated_life: float, overrun_percent: float) -> ToolState:
    if rated_life < 0 or overrun_percent < 0:
        raise ValueError("rated life and overrun allowance must not be negative")
    if cumulative_time <= 0:
        return ToolState.FREE
    if cumulative_time < rated_life:
        return ToolState.IN_USE
    if cumulative_time <= max_with_overrun(rated_life, overrun_percent):
        return ToolState.OVERRUN
    return ToolState.EXPIRED


def predict_inventory_need(
    planned_minutes: float,
    on_hand: int,
    *,
    rated_life: float,
    overrun_percent: float,
) -> InventoryNeed:
    """Units required to cover ``planned_minutes`` and how many are missing."""

    if planned_minutes <= 0:
        return InventoryNeed(needed=0, shortage=0)
    limit = max_with_overrun(rated_life, overrun_percent)
    if limit <= 0:
        raise ValueError("cannot plan against a tool with no usable life")
    needed = math.ceil(planned_minutes / limit)
    return InventoryNeed(needed=needed, shortage=max(0, needed - int(on_hand)))


@dataclass
class ToolLifecycle:
    rated_life: float
    overrun_percent: float = 10.0
    cumulative_time: float = 0.0
    state: ToolState = field(init=False)

    def __post_init__(self) -> None:
        if self.cumulative_time < 0:
            raise ValueError("cumulative time must not be negative")
        self.state = classify(self.cumulative_time, self.rated_life, self.overrun_percent)

    @property
    def max_with_overrun(self) -> float:
        return max_with_overrun(self.rated_life, self.overrun_percent)

    @property
    def remaining_minutes(self) -> float:
        return max(0.0, self.max_with_overrun - self.cumulative_time)

    def add_usage(self, minutes: float) -> ToolState:
        if minutes < 0:
            raise ValueError("usage minutes must not be negative")
        self.cumulative_time += minutes
        self.state = max(self.state, classify(self.cumulative_time, self.rated_life, self.overrun_percent))
        return self.state

    def can_accept_additional(self, minutes: float) -> bool:
        return self.cumulative_time + minutes <= self.max_with_overrun

    def predict_inventory_need(self, planned_minutes: float, on_hand: int) -> InventoryNeed:
        return predict_inventory_need(
            planned_minutes,
            on_hand,
            rated_life=self.rated_life,
            overrun_percent=self.overrun_percent,
        )


# ----------------------------------------------------------------------
# tool categories
# ----------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ToolCategory:
    key: str
    name: str
    default_life: float
    overrun_percent: float
    series: tuple[str, ...] = ()


TOOL_CATEGORIES: tuple[ToolCategory, ...] = (
    ToolCategory("ECUT", "E-Cut Tools", 60, 10, ("8400", "8410", "8420")),
    ToolCategory("MFC", "MFC Tools", 45, 8, ("8201", "8211", "8221")),
    ToolCategory("XF", "XF Tools", 50, 12, ("15250", "15251", "15254")),
    ToolCategory("XFEED", "XFeed Tools", 55, 15, ("8521",)),
)
DEFAULT_CATEGORY = ToolCategory("UNKNOWN", "Uncategorised", 60, 10)


def category_for(tool_id: str) -> ToolCategory:
    """Look up the category of an ``RT-<series><size>`` tool code."""

    code = normalize_tool_id(tool_id).replace("-", "")
    if not code.startswith("RT"):
        return DEFAULT_CATEGORY
    for category in TOOL_CATEGORIES:
        if any(code.startswith(f"RT{series}") for series in category.series):
            return category
    return DEFAULT_CATEGORY
