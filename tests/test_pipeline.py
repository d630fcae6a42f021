import asyncio
import hashlib
import json
import sys
import threading
from pathlib import Path

import pytest
from openpyxl import Workbook

sys.path.append(str(Path(__file__).resolve().parents[1]))

from toolmanager.application import get_scan_service, reset_scan_state
from toolmanager.core.errors import WorkspaceFatal
from toolmanager.core.settings import ScanSettings
from toolmanager.infrastructure import InMemorySink
from toolmanager.workers.pipeline import RESULT_FILENAME, PipelineWorker, ScanRequest, get_pipeline_worker, run_scan

USAGE_A = """{
  "machine": "DMU-50",
  "operator": "Operator 1",
  "operations": [
    {"programName": "P001", "toolName": "RT-8400300", "operationTime": 30, "maxSpeed": 18000, "maxFeed": NaN},
    {"programName": "P002", "toolName": "BHF-D10", "operationTime": 12.5, "maxSpeed": Infinity, "maxFeed": 800}
  ]
}"""

USAGE_B = json.dumps(
    {
        "machine": "DMU-50",
        "operations": [
            {"programName": "P010", "toolName": "rt-8400300", "operationTime": 15},
            {"programName": "P011", "toolName": "VLM-S8", "operationTime": 7},
        ],
    }
)


@pytest.fixture(autouse=True)
def reset_state():
    reset_scan_state()
    yield
    reset_scan_state()


@pytest.fixture()
def settings(tmp_path):
    return ScanSettings(workspaces_root=tmp_path / "ws", strict_invariants=True)


def _write_inventory(path: Path, rows: list[list]) -> Path:
    workbook = Workbook()
    sheet = workbook.active
    sheet.append(["Szerszámkészlet", None, None])
    for row in rows:
        sheet.append(row)
    path.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(path)
    return path


@pytest.fixture()
def source_root(tmp_path):
    root = tmp_path / "src"
    _write_inventory(
        root / "matrix" / "inventory.xlsx",
        [
            ["Tételkód", "Megnevezés", "Mennyiség"],
            ["RT-8400300", "E-Cut maró ø3", 1],
            ["BHF-D10", "Fúró ø10", 2],
            ["UNUSED-1", "Maró ø20", 3],
        ],
    )
    jobs = root / "jobs"
    jobs.mkdir()
    (jobs / "W5270NS01003A.json").write_text(USAGE_A, encoding="utf-8")
    (jobs / "W5270NS01003B.json").write_text(USAGE_B, encoding="utf-8")
    (jobs / "W5270NS01004.json").write_text("{not json", encoding="utf-8")
    (jobs / "W5270NS01005.json").write_text("[1, 2, 3]", encoding="utf-8")
    (jobs / "notes.json").write_text("{}", encoding="utf-8")
    return root


def _snapshot(root: Path) -> dict[str, str]:
    return {
        str(path.relative_to(root)): hashlib.sha256(path.read_bytes()).hexdigest()
        for path in sorted(root.rglob("*"))
        if path.is_file()
    }


def _sessions(settings: ScanSettings) -> list[Path]:
    app_root = settings.workspaces_root / settings.app_name
    if not app_root.exists():
        return []
    return [path for path in app_root.iterdir() if path.name.startswith("session_")]


def test_scan_reconciles_usage_against_inventory(source_root, settings):
    report = run_scan(source_root, settings=settings)

    assert [(tool.id, tool.usage_time, tool.is_matrix) for tool in report.tools] == [
        ("RT-8400300", 45.0, True),
        ("BHF-D10", 12.5, True),
        ("VLM-S8", 7.0, False),
    ]

    ecut, drill = report.matrix_tools
    assert ecut.tool_id == "RT-8400300"
    assert ecut.life_per_unit == 45
    assert ecut.utilization_percent == 100.0
    assert ecut.status == "CRITICAL"
    assert ecut.lifecycle_state == "OVERRUN"
    assert ecut.usage_count == 2
    assert ecut.project_count == 1
    assert drill.total_capacity_minutes == 226
    assert drill.status == "UNDERUTILIZED"

    assert [tool.tool_id for tool in report.non_matrix_tools] == ["VLM-S8"]
    assert [tool.tool_id for tool in report.unused_matrix_tools] == ["UNUSED-1"]
    assert len(report.all_matrix_tools) == 3

    summary = report.summary
    assert summary.files_discovered == 5
    assert summary.usage_files_parsed == 2
    assert summary.usage_files_failed == 2
    assert summary.inventory_available is True
    assert summary.cancelled is False

    failures = {Path(item.source_file).name: item.stage for item in report.failed_files}
    assert failures == {"W5270NS01004.json": "parse", "W5270NS01005.json": "extract"}


def test_scan_never_modifies_the_source_tree(source_root, settings):
    before = _snapshot(source_root)

    run_scan(source_root, settings=settings)

    assert _snapshot(source_root) == before


def test_session_is_removed_after_scan(source_root, settings):
    report = run_scan(source_root, settings=settings)

    assert report.session_id is not None
    assert _sessions(settings) == []


def test_preserved_results_are_archived(source_root, tmp_path):
    settings = ScanSettings(workspaces_root=tmp_path / "ws", preserve_results=True, strict_invariants=True)

    report = run_scan(source_root, settings=settings)

    archives = list((tmp_path / "ws" / "ToolManager" / "archived_results").iterdir())
    assert len(archives) == 1
    assert archives[0].name.startswith(report.session_id)
    saved = json.loads((archives[0] / RESULT_FILENAME).read_text(encoding="utf-8"))
    assert saved["summary"]["usageFilesParsed"] == 2
    assert _sessions(settings) == []


def test_report_goes_to_sink(source_root, settings):
    sink = InMemorySink()

    run_scan(source_root, settings=settings, sink=sink)

    payload = json.loads(sink.get("results", RESULT_FILENAME))
    assert [tool["id"] for tool in payload["tools"]] == ["RT-8400300", "BHF-D10", "VLM-S8"]
    assert payload["tools"][0]["isMatrix"] is True
    assert payload["failedFiles"][0]["stage"] in {"parse", "extract"}
    csv_text = sink.get("results", "ToolManager_Result_tools.csv")
    assert csv_text.splitlines()[0] == "id,name,status,isMatrix,usageTime,usageCount,projectCount"


def test_output_dir_setting_saves_outside_the_session(source_root, tmp_path):
    settings = ScanSettings(workspaces_root=tmp_path / "ws", output_dir=tmp_path / "out", strict_invariants=True)

    run_scan(source_root, settings=settings)

    assert (tmp_path / "out" / "results" / RESULT_FILENAME).exists()


def test_parallel_scan_matches_sequential(source_root, settings):
    sequential = run_scan(source_root, settings=settings)
    parallel = run_scan(source_root, settings=settings, max_workers=3)

    assert parallel.tools == sequential.tools
    assert parallel.matrix_tools == sequential.matrix_tools
    assert parallel.summary == sequential.summary


def test_cancelled_scan_returns_partial_report(source_root, settings):
    stop = threading.Event()
    stop.set()

    report = run_scan(source_root, settings=settings, stop_event=stop)

    assert report.summary.cancelled is True
    assert report.summary.usage_files_parsed == 0
    assert report.tools == []
    assert _sessions(settings) == []
    scan = get_scan_service().list_scans()[0]
    assert scan["status"] == "cancelled"


def test_empty_root_gives_empty_report(tmp_path, settings):
    root = tmp_path / "empty"
    root.mkdir()

    report = run_scan(root, settings=settings)

    assert report.tools == []
    assert report.matrix_tools == []
    assert report.summary.files_discovered == 0
    assert report.summary.inventory_available is False


def test_inventory_failure_keeps_scanning(tmp_path, settings):
    root = tmp_path / "src"
    _write_inventory(root / "inventory.xlsx", [["Code", "Qty"], ["RT-8400300", 1]])
    (root / "W5270NS01003A.json").write_text(USAGE_B, encoding="utf-8")

    report = run_scan(root, settings=settings)

    assert report.summary.inventory_available is False
    assert [item.stage for item in report.failed_files] == ["extract"]
    assert {tool.tool_id for tool in report.non_matrix_tools} == {"RT-8400300", "VLM-S8"}
    assert report.matrix_tools == []


def test_workspace_inside_source_root_aborts(source_root):
    settings = ScanSettings(workspaces_root=source_root / "ws")

    with pytest.raises(WorkspaceFatal):
        run_scan(source_root, settings=settings)

    assert get_scan_service().list_scans()[0]["status"] == "failed"


def test_scan_jobs_are_recorded(source_root, settings):
    run_scan(source_root, settings=settings)

    service = get_scan_service()
    scan = service.list_scans()[0]
    assert scan["status"] == "completed"
    assert scan["jobs"] == 5
    assert scan["failed"] == 2
    failed = service.failed_jobs(scan["scan_id"])
    assert {Path(job["source_file"]).name for job in failed} == {"W5270NS01004.json", "W5270NS01005.json"}
    progress = service.get_scan_progress(scan["scan_id"])
    assert progress["by_status"] == {"completed": 3, "failed": 2}


def test_pipeline_worker_runs_scan(source_root, settings):
    worker = PipelineWorker(settings)

    report = asyncio.run(worker.run(ScanRequest(root_path=source_root)))

    assert len(report.tools) == 3
    assert not worker.busy


def test_pipeline_worker_is_shared():
    assert get_pipeline_worker() is get_pipeline_worker()


def test_negative_operation_time_counts_as_zero(tmp_path, settings):
    root = tmp_path / "src"
    root.mkdir()
    (root / "W5270NS01003A.json").write_text(
        '{"operations": [{"toolName": "RT-8400300", "operationTime": -5}, {"toolName": "VLM-S8", "operationTime": 4}]}',
        encoding="utf-8",
    )

    report = run_scan(root, settings=settings)

    assert report.summary.usage_files_parsed == 1
    assert report.failed_files == []
    usage = {tool.tool_id: tool.used_minutes for tool in report.non_matrix_tools}
    assert usage == {"VLM-S8": 4.0, "RT-8400300": 0.0}


class _BrokenSink:
    def save(self, category: str, filename: str, content: str) -> str:
        raise OSError("disk full")


def test_sink_failure_still_returns_report(source_root, settings):
    report = run_scan(source_root, settings=settings, sink=_BrokenSink())

    assert len(report.tools) == 3
    persist = [item for item in report.failed_files if item.stage == "persist"]
    assert [item.source_file for item in persist] == [RESULT_FILENAME, "ToolManager_Result_tools.csv"]
    assert all(item.error == "disk full" for item in persist)
    assert get_scan_service().list_scans()[0]["status"] == "completed"
    assert _sessions(settings) == []


def test_usage_file_with_byte_order_mark_is_parsed(tmp_path, settings):
    root = tmp_path / "src"
    root.mkdir()
    (root / "W5270NS01003A.json").write_bytes(b"\xef\xbb\xbf" + USAGE_B.encode("utf-8"))

    report = run_scan(root, settings=settings)

    assert report.failed_files == []
    assert report.summary.usage_files_parsed == 1
    assert {tool.tool_id for tool in report.non_matrix_tools} == {"RT-8400300", "VLM-S8"}
