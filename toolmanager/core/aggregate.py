from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Iterable, Mapping

from toolmanager.core.errors import AggregationInvariantViolation
from toolmanager.core.identity import UNKNOWN, normalize_tool_id
from toolmanager.core.lifecycle import ToolLifecycle, category_for, predict_inventory_need
from toolmanager.core.schema import (
    ConsolidatedReport,
    DashboardTool,
    InventoryLine,
    NonMatrixTool,
    ReportSummary,
    StatusBucket,
    ToolCapacityReport,
    ToolUsageAggregate,
    UsageRecord,
)
from toolmanager.core.tool_life import DEFAULT_ESTIMATOR, ToolLifeEstimator

logger = logging.getLogger(__name__)


@dataclass
class Reconciliation:
    matrix_used: list[ToolCapacityReport] = field(default_factory=list)
    matrix_unused: list[ToolCapacityReport] = field(default_factory=list)
    non_matrix: list[NonMatrixTool] = field(default_factory=list)
    all_matrix: list[ToolCapacityReport] = field(default_factory=list)


def _round(value: float) -> float:
    return round(value, 2)


def status_bucket(utilization_percent: float) -> StatusBucket:
    if utilization_percent >= 90:
        return "CRITICAL"
    if utilization_percent >= 75:
        return "WARNING"
    if utilization_percent >= 50:
        return "NORMAL"
    return "UNDERUTILIZED"


# ----------------------------------------------------------------------
# usage totals
# ----------------------------------------------------------------------
def combine(records: Iterable[UsageRecord]) -> dict[str, ToolUsageAggregate]:
    """Sum operation minutes per tool across ``records``.

    Operations without a tool id are skipped, so a tool only shows up when a
    real operation references it.
    """

    aggregates: dict[str, ToolUsageAggregate] = {}
    for record in records:
        for operation in record.operations:
            tool_id = normalize_tool_id(operation.tool_id)
            if tool_id == UNKNOWN:
                continue
            entry = aggregates.get(tool_id)
            if entry is None:
                entry = aggregates[tool_id] = ToolUsageAggregate(tool_id=tool_id)
            entry.total_elapsed_minutes += operation.elapsed_minutes
            entry.operation_count += 1
            entry.projects.add(record.project_id)
    return aggregates


def merge(
    left: Mapping[str, ToolUsageAggregate],
    right: Mapping[str, ToolUsageAggregate],
) -> dict[str, ToolUsageAggregate]:
    merged: dict[str, ToolUsageAggregate] = {}
    for source in (left, right):
        for tool_id, aggregate in source.items():
            entry = merged.get(tool_id)
            if entry is None:
                entry = merged[tool_id] = ToolUsageAggregate(tool_id=tool_id)
            entry.total_elapsed_minutes += aggregate.total_elapsed_minutes
            entry.operation_count += aggregate.operation_count
            entry.projects |= aggregate.projects
    return merged


def check_invariants(
    records: Iterable[UsageRecord],
    aggregates: Mapping[str, ToolUsageAggregate],
) -> None:
    """Recompute per-tool totals from scratch and compare with ``aggregates``."""

    minutes: dict[str, list[float]] = {}
    for record in records:
        for operation in record.operations:
            tool_id = normalize_tool_id(operation.tool_id)
            if tool_id != UNKNOWN:
                minutes.setdefault(tool_id, []).append(operation.elapsed_minutes)

    if UNKNOWN in aggregates:
        raise AggregationInvariantViolation("placeholder tool id present in aggregates")
    if set(minutes) != set(aggregates):
        missing = sorted(set(minutes) ^ set(aggregates))
        raise AggregationInvariantViolation(f"tool set mismatch: {', '.join(missing)}")

    for tool_id, values in minutes.items():
        aggregate = aggregates[tool_id]
        if aggregate.operation_count != len(values):
            raise AggregationInvariantViolation(
                f"{tool_id}: {aggregate.operation_count} operations counted, {len(values)} expected"
            )
        expected = math.fsum(values)
        if not math.isclose(aggregate.total_elapsed_minutes, expected, rel_tol=1e-9, abs_tol=1e-6):
            raise AggregationInvariantViolation(
                f"{tool_id}: total {aggregate.total_elapsed_minutes} != {expected}"
            )


# ----------------------------------------------------------------------
# inventory reconciliation
# ----------------------------------------------------------------------
def consolidate_inventory(lines: Iterable[InventoryLine]) -> list[InventoryLine]:
    """Fold duplicate inventory lines into one per tool id, summing quantities."""

    merged: dict[str, InventoryLine] = {}
    for line in lines:
        tool_id = normalize_tool_id(line.tool_id)
        if tool_id == UNKNOWN:
            continue
        existing = merged.get(tool_id)
        if existing is None:
            merged[tool_id] = line.model_copy(update={"tool_id": tool_id})
            continue
        logger.debug("Duplicate inventory line for %s, summing quantities", tool_id)
        merged[tool_id] = existing.model_copy(
            update={
                "quantity": existing.quantity + line.quantity,
                "description": existing.description or line.description,
                "estimated_life_per_unit": existing.estimated_life_per_unit
                or line.estimated_life_per_unit,
            }
        )
    return list(merged.values())


def _capacity_report(
    line: InventoryLine,
    usage: ToolUsageAggregate | None,
    estimator: ToolLifeEstimator,
) -> ToolCapacityReport:
    life = line.estimated_life_per_unit
    if life is None:
        life = estimator.estimate(line.tool_id, line.description or None)
    capacity = line.quantity * life
    used = usage.total_elapsed_minutes if usage else 0.0
    raw_utilization = used / capacity * 100 if capacity > 0 else 0.0
    utilization = _round(raw_utilization)

    category = category_for(line.tool_id)
    lifecycle = ToolLifecycle(rated_life=capacity, overrun_percent=category.overrun_percent)
    lifecycle.add_usage(used)
    need = (
        predict_inventory_need(
            used,
            int(line.quantity),
            rated_life=life,
            overrun_percent=category.overrun_percent,
        )
        if life > 0
        else None
    )

    return ToolCapacityReport(
        tool_id=line.tool_id,
        description=line.description,
        quantity=line.quantity,
        life_per_unit=life,
        total_capacity_minutes=_round(capacity),
        used_minutes=_round(used),
        usage_count=usage.operation_count if usage else 0,
        project_count=usage.project_count if usage else 0,
        utilization_percent=utilization,
        remaining_capacity=_round(max(0.0, capacity - used)),
        status=status_bucket(raw_utilization),
        lifecycle_state=lifecycle.state.name,
        units_needed=need.needed if need else 0,
        shortage=need.shortage if need else 0,
    )


def _non_matrix_tool(usage: ToolUsageAggregate, estimator: ToolLifeEstimator) -> NonMatrixTool:
    life = estimator.estimate(usage.tool_id)
    lifecycle = ToolLifecycle(rated_life=life, overrun_percent=category_for(usage.tool_id).overrun_percent)
    lifecycle.add_usage(usage.total_elapsed_minutes)
    return NonMatrixTool(
        tool_id=usage.tool_id,
        used_minutes=_round(usage.total_elapsed_minutes),
        usage_count=usage.operation_count,
        project_count=usage.project_count,
        life_per_unit=life,
        lifecycle_state=lifecycle.state.name,
    )


def _by_usage(item: ToolCapacityReport | NonMatrixTool) -> tuple[float, str]:
    return -item.used_minutes, item.tool_id


def reconcile(
    aggregates: Mapping[str, ToolUsageAggregate],
    inventory_lines: Iterable[InventoryLine],
    estimator: ToolLifeEstimator | None = None,
) -> Reconciliation:
    estimator = estimator or DEFAULT_ESTIMATOR
    inventory = consolidate_inventory(inventory_lines)
    inventory_ids = {line.tool_id for line in inventory}

    result = Reconciliation()
    for line in inventory:
        report = _capacity_report(line, aggregates.get(line.tool_id), estimator)
        result.all_matrix.append(report)
        if line.tool_id in aggregates:
            result.matrix_used.append(report)
        else:
            result.matrix_unused.append(report)

    for tool_id, usage in aggregates.items():
        if tool_id not in inventory_ids:
            result.non_matrix.append(_non_matrix_tool(usage, estimator))

    result.matrix_used.sort(key=_by_usage)
    result.all_matrix.sort(key=_by_usage)
    result.non_matrix.sort(key=_by_usage)
    result.matrix_unused.sort(key=lambda item: (-item.total_capacity_minutes, item.tool_id))
    return result


# ----------------------------------------------------------------------
# report
# ----------------------------------------------------------------------
def dashboard_tools(
    aggregates: Mapping[str, ToolUsageAggregate],
    inventory_ids: set[str],
) -> list[DashboardTool]:
    tools = [
        DashboardTool(
            id=tool_id,
            name=tool_id,
            is_matrix=tool_id in inventory_ids,
            usage_time=_round(usage.total_elapsed_minutes),
            usage_count=usage.operation_count,
            project_count=usage.project_count,
        )
        for tool_id, usage in aggregates.items()
    ]
    tools.sort(key=lambda tool: (-tool.usage_time, tool.id))
    return tools


def build_report(
    aggregates: Mapping[str, ToolUsageAggregate],
    inventory_lines: Iterable[InventoryLine],
    estimator: ToolLifeEstimator | None = None,
    *,
    summary: ReportSummary | None = None,
) -> ConsolidatedReport:
    reconciliation = reconcile(aggregates, inventory_lines, estimator)
    inventory_ids = {report.tool_id for report in reconciliation.all_matrix}

    summary = (summary or ReportSummary()).model_copy(
        update={
            "matrix_tools_used": len(reconciliation.matrix_used),
            "non_matrix_tools_used": len(reconciliation.non_matrix),
            "total_matrix_tools": len(reconciliation.all_matrix),
            "unused_matrix_tools": len(reconciliation.matrix_unused),
        }
    )
    logger.info(
        "Reconciled %d used tools against %d inventory lines (%d outside inventory)",
        len(aggregates),
        len(reconciliation.all_matrix),
        len(reconciliation.non_matrix),
    )
    return ConsolidatedReport(
        tools=dashboard_tools(aggregates, inventory_ids),
        matrix_tools=reconciliation.matrix_used,
        non_matrix_tools=reconciliation.non_matrix,
        all_matrix_tools=reconciliation.all_matrix,
        unused_matrix_tools=reconciliation.matrix_unused,
        summary=summary,
    )
