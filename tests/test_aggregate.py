import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from toolmanager.core.aggregate import (
    build_report,
    check_invariants,
    combine,
    consolidate_inventory,
    merge,
    reconcile,
    status_bucket,
)
from toolmanager.core.errors import AggregationInvariantViolation
from toolmanager.core.schema import InventoryLine, Operation, UsageRecord


def _record(project: str, *operations: tuple[str, float]) -> UsageRecord:
    return UsageRecord(
        project_id=project,
        position=f"{project}A",
        operations=tuple(Operation(tool_id=tool, elapsed_minutes=minutes) for tool, minutes in operations),
    )


class FixedEstimator:
    def __init__(self, minutes: float) -> None:
        self.minutes = minutes
        self.calls: list[tuple[str, str | None]] = []

    def estimate(self, tool_id, description=None):
        self.calls.append((tool_id, description))
        return self.minutes


def test_combine_sums_minutes_and_counts():
    aggregates = combine([_record("P1", ("X", 5)), _record("P2", ("X", 7))])

    assert set(aggregates) == {"X"}
    assert aggregates["X"].total_elapsed_minutes == 12
    assert aggregates["X"].operation_count == 2
    assert aggregates["X"].project_count == 2


def test_combine_skips_placeholder_and_normalises_case():
    aggregates = combine([_record("P1", ("UNKNOWN", 9), ("x", 1), ("X ", 2))])

    assert set(aggregates) == {"X"}
    assert aggregates["X"].total_elapsed_minutes == 3
    assert aggregates["X"].project_count == 1


def test_merge_matches_combining_everything_at_once():
    first = [_record("P1", ("X", 5), ("Y", 3))]
    second = [_record("P2", ("X", 7), ("UNKNOWN", 4)), _record("P1", ("Z", 1.5))]

    assert merge(combine(first), combine(second)) == combine(first + second)


def test_check_invariants_accepts_combined_totals_and_rejects_tampering():
    records = [_record("P1", ("X", 5)), _record("P2", ("X", 7), ("Y", 2))]
    aggregates = combine(records)
    check_invariants(records, aggregates)

    aggregates["X"].total_elapsed_minutes += 1
    with pytest.raises(AggregationInvariantViolation):
        check_invariants(records, aggregates)

    del aggregates["Y"]
    with pytest.raises(AggregationInvariantViolation):
        check_invariants(records, aggregates)


@pytest.mark.parametrize(
    "percent, expected",
    [(95, "CRITICAL"), (90, "CRITICAL"), (89.99, "WARNING"), (75, "WARNING"), (50, "NORMAL"), (49.99, "UNDERUTILIZED"), (0, "UNDERUTILIZED")],
)
def test_status_bucket_boundaries(percent, expected):
    assert status_bucket(percent) == expected


def test_capacity_utilization_and_status():
    aggregates = combine([_record("P1", ("T1", 450))])
    result = reconcile(aggregates, [InventoryLine(tool_id="T1", quantity=10, estimated_life_per_unit=60)])

    (report,) = result.matrix_used
    assert report.total_capacity_minutes == 600
    assert report.utilization_percent == 75.0
    assert report.status == "WARNING"
    assert report.remaining_capacity == 150
    assert report.lifecycle_state == "IN_USE"
    assert report.units_needed == 7
    assert report.shortage == 0
    assert result.all_matrix == [report]
    assert result.matrix_unused == []
    assert result.non_matrix == []


def test_zero_capacity_means_zero_utilization():
    aggregates = combine([_record("P1", ("T1", 30))])
    result = reconcile(aggregates, [InventoryLine(tool_id="T1", quantity=0, estimated_life_per_unit=60)])

    (report,) = result.matrix_used
    assert report.utilization_percent == 0.0
    assert report.remaining_capacity == 0.0
    assert report.lifecycle_state == "EXPIRED"
    assert report.units_needed == 1
    assert report.shortage == 1


def test_estimator_is_injected_for_missing_life():
    estimator = FixedEstimator(100)
    result = reconcile({}, [InventoryLine(tool_id="T9", description="ø12", quantity=2)], estimator)

    (report,) = result.matrix_unused
    assert report.life_per_unit == 100
    assert report.total_capacity_minutes == 200
    assert report.lifecycle_state == "FREE"
    assert report.status == "UNDERUTILIZED"
    assert estimator.calls == [("T9", "ø12")]


def test_split_between_matrix_and_non_matrix_tools():
    aggregates = combine([_record("P1", ("T1", 10), ("Z", 65))])
    inventory = [InventoryLine(tool_id="t1", quantity=1), InventoryLine(tool_id="U", quantity=3)]

    result = reconcile(aggregates, inventory, FixedEstimator(60))

    assert [item.tool_id for item in result.matrix_used] == ["T1"]
    assert [item.tool_id for item in result.matrix_unused] == ["U"]
    assert [item.tool_id for item in result.all_matrix] == ["T1", "U"]
    (outside,) = result.non_matrix
    assert outside.tool_id == "Z"
    assert outside.status == "NOT_IN_MATRIX"
    assert outside.life_per_unit == 60
    assert outside.lifecycle_state == "OVERRUN"


def test_ordering_by_usage_then_tool_id():
    aggregates = combine([_record("P1", ("B", 10), ("A", 10), ("C", 20))])
    inventory = [InventoryLine(tool_id=code, quantity=1) for code in ("A", "B", "C")]
    inventory += [InventoryLine(tool_id="SMALL", quantity=1), InventoryLine(tool_id="BIG", quantity=5)]

    result = reconcile(aggregates, inventory, FixedEstimator(60))

    assert [item.tool_id for item in result.matrix_used] == ["C", "A", "B"]
    assert [item.tool_id for item in result.matrix_unused] == ["BIG", "SMALL"]


def test_duplicate_inventory_lines_are_summed():
    lines = consolidate_inventory(
        [
            InventoryLine(tool_id="T1", quantity=4),
            InventoryLine(tool_id=" t1", description="second", quantity=6),
        ]
    )
    assert len(lines) == 1
    assert lines[0].tool_id == "T1"
    assert lines[0].quantity == 10
    assert lines[0].description == "second"


def test_build_report_payload_uses_camel_case():
    aggregates = combine([_record("P1", ("T1", 45.556)), _record("P2", ("Z", 5))])
    report = build_report(aggregates, [InventoryLine(tool_id="T1", quantity=1, estimated_life_per_unit=60)])

    payload = report.to_payload()
    assert [tool["id"] for tool in payload["tools"]] == ["T1", "Z"]
    assert payload["tools"][0]["isMatrix"] is True
    assert payload["tools"][0]["usageTime"] == 45.56
    assert payload["tools"][0]["status"] == "in_use"
    assert payload["tools"][1]["isMatrix"] is False
    assert payload["matrixTools"][0]["toolId"] == "T1"
    assert payload["matrixTools"][0]["utilizationPercent"] == 75.93
    assert payload["nonMatrixTools"][0]["status"] == "NOT_IN_MATRIX"
    assert payload["summary"]["matrixToolsUsed"] == 1
    assert payload["summary"]["nonMatrixToolsUsed"] == 1
    assert payload["summary"]["totalMatrixTools"] == 1
    assert payload["unusedMatrixTools"] == []


def test_status_uses_unrounded_utilization():
    aggregates = combine([_record("P1", ("T1", 89996))])
    result = reconcile(aggregates, [InventoryLine(tool_id="T1", quantity=1000, estimated_life_per_unit=100)])

    (report,) = result.matrix_used
    assert report.utilization_percent == 90.0
    assert report.status == "WARNING"


def test_negative_minutes_are_clamped_to_zero():
    assert Operation(tool_id="T1", elapsed_minutes=-5).elapsed_minutes == 0.0

    aggregates = combine([_record("P1", ("T1", -5), ("T1", 3))])

    assert aggregates["T1"].total_elapsed_minutes == 3.0
    assert aggregates["T1"].operation_count == 2
