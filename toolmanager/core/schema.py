from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from toolmanager.core.identity import UNKNOWN

StatusBucket = Literal["CRITICAL", "WARNING", "NORMAL", "UNDERUTILIZED"]
SourceKind = Literal["usage_record", "inventory_spreadsheet"]


def _coerce_number(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if number != number or number in (float("inf"), float("-inf")):
        return 0.0
    return number


def _coerce_text(value: Any) -> str:
    if value is None:
        return UNKNOWN
    text = str(value).strip()
    return text or UNKNOWN


# ----------------------------------------------------------------------
# loosely shaped input
# ----------------------------------------------------------------------
class RawOperation(BaseModel):
    """One ``operations`` element as the machine export writes it."""

    model_config = ConfigDict(extra="ignore")

    program_name: Any = None
    tool_name: Any = None
    operation_time: Any = None
    max_speed: Any = None
    max_feed: Any = None


class RawUsagePayload(BaseModel):
    """Top level of a usage document with every field optional."""

    model_config = ConfigDict(extra="ignore")

    machine: Any = None
    operator: Any = None
    project: Any = None
    position: Any = None
    operations: Any = None


# ----------------------------------------------------------------------
# normalised usage
# ----------------------------------------------------------------------
class Operation(BaseModel):
    model_config = ConfigDict(frozen=True)

    program_name: str = UNKNOWN
    tool_id: str = UNKNOWN
    elapsed_minutes: float = 0.0
    max_speed: float = 0.0
    max_feed: float = 0.0

    @field_validator("max_speed", "max_feed", mode="before")
    @classmethod
    def _numbers(cls, value: Any) -> float:
        return _coerce_number(value)

    @field_validator("elapsed_minutes", mode="before")
    @classmethod
    def _minutes(cls, value: Any) -> float:
        return max(0.0, _coerce_number(value))

    @field_validator("program_name", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return _coerce_text(value)


class UsageRecord(BaseModel):
    """Usage extracted from one usage file; immutable once built."""

    model_config = ConfigDict(frozen=True)

    project_id: str = UNKNOWN
    position: str = UNKNOWN
    machine: str = UNKNOWN
    operator: str = UNKNOWN
    operations: tuple[Operation, ...] = ()
    source_file: str | None = None

    @property
    def total_minutes(self) -> float:
        return sum(operation.elapsed_minutes for operation in self.operations)

    @property
    def tools_used(self) -> list[str]:
        seen: dict[str, None] = {}
        for operation in self.operations:
            if operation.tool_id != UNKNOWN:
                seen.setdefault(operation.tool_id)
        return list(seen)


@dataclass(slots=True)
class UsageRejection:
    """Structured reason a usage document could not become a record."""

    source_file: str | None
    reason: str


# ----------------------------------------------------------------------
# inventory & aggregates
# ----------------------------------------------------------------------
class InventoryLine(BaseModel):
    tool_id: str
    description: str = ""
    quantity: float = 0.0
    estimated_life_per_unit: float | None = None

    @field_validator("quantity", mode="before")
    @classmethod
    def _quantity(cls, value: Any) -> float:
        return max(0.0, _coerce_number(value))


@dataclass(slots=True)
class ToolUsageAggregate:
    tool_id: str
    total_elapsed_minutes: float = 0.0
    operation_count: int = 0
    projects: set[str] = field(default_factory=set)

    @property
    def project_count(self) -> int:
        return len(self.projects)


# ----------------------------------------------------------------------
# report shapes
# ----------------------------------------------------------------------
class _ReportModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ToolCapacityReport(_ReportModel):
    tool_id: str
    description: str = ""
    quantity: float
    life_per_unit: float
    total_capacity_minutes: float
    used_minutes: float = 0.0
    usage_count: int = 0
    project_count: int = 0
    utilization_percent: float = 0.0
    remaining_capacity: float = 0.0
    status: StatusBucket = "UNDERUTILIZED"
    lifecycle_state: str = "FREE"
    units_needed: int = 0
    shortage: int = 0


class NonMatrixTool(_ReportModel):
    tool_id: str
    used_minutes: float
    usage_count: int
    project_count: int
    life_per_unit: float
    lifecycle_state: str
    status: Literal["NOT_IN_MATRIX"] = "NOT_IN_MATRIX"


class DashboardTool(_ReportModel):
    id: str
    name: str
    status: str = "in_use"
    is_matrix: bool
    usage_time: float
    usage_count: int
    project_count: int


class FailedFile(_ReportModel):
    source_file: str
    stage: str
    error: str


class ReportSummary(_ReportModel):
    files_discovered: int = 0
    usage_files_parsed: int = 0
    usage_files_failed: int = 0
    inventory_files: int = 0
    inventory_available: bool = False
    matrix_tools_used: int = 0
    non_matrix_tools_used: int = 0
    total_matrix_tools: int = 0
    unused_matrix_tools: int = 0
    cancelled: bool = False


class ConsolidatedReport(_ReportModel):
    tools: list[DashboardTool] = Field(default_factory=list)
    matrix_tools: list[ToolCapacityReport] = Field(default_factory=list)
    non_matrix_tools: list[NonMatrixTool] = Field(default_factory=list)
    all_matrix_tools: list[ToolCapacityReport] = Field(default_factory=list)
    unused_matrix_tools: list[ToolCapacityReport] = Field(default_factory=list)
    summary: ReportSummary = Field(default_factory=ReportSummary)
    failed_files: list[FailedFile] = Field(default_factory=list)
    generated_at: str | None = None
    session_id: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")
