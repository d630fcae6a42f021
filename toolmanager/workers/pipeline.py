from __future__ import annotations

import asyncio
import json
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from toolmanager.application import ScanService, get_scan_service
from toolmanager.core.aggregate import build_report, check_invariants, combine
from toolmanager.core.csvio import records_to_csv
from toolmanager.core.errors import CopyError, ExtractionError, ParseError, ParseFatal
from toolmanager.core.sanitize import parse_sanitized, sanitize
from toolmanager.core.schema import ConsolidatedReport, FailedFile, InventoryLine, ReportSummary, UsageRecord
from toolmanager.core.settings import ScanSettings
from toolmanager.core.tool_life import ToolLifeEstimator
from toolmanager.core.workspaces import SessionWorkspace, is_within
from toolmanager.extractors import detect, usage_json
from toolmanager.extractors.detect import SourceFile
from toolmanager.extractors.inventory_sheet import InventoryExtractor, SpreadsheetInventoryExtractor
from toolmanager.infrastructure import LocalFileSink, PersistenceSink
from toolmanager.utils.logger import get_logger

logger = get_logger(__name__)

RESULT_FILENAME = "ToolManager_Result.json"
TOOLS_CSV_FILENAME = "ToolManager_Result_tools.csv"
TOOLS_CSV_COLUMNS = ["id", "name", "status", "isMatrix", "usageTime", "usageCount", "projectCount"]


@dataclass
class ScanRequest:
    root_path: Path
    max_workers: int | None = None


@dataclass
class _FileOutcome:
    source: SourceFile
    record: UsageRecord | None = None
    failure: FailedFile | None = None
    cancelled: bool = False


@dataclass
class _ScanContext:
    scan_id: str
    service: ScanService
    workspace: SessionWorkspace
    jobs: dict[Path, str] = field(default_factory=dict)
    stop_event: threading.Event | None = None

    def stopped(self) -> bool:
        return self.stop_event is not None and self.stop_event.is_set()

    def fail(self, source: SourceFile, stage: str, exc: Exception) -> FailedFile:
        error = str(exc)
        logger.warning("%s failed at %s: %s", source.path.name, stage, error)
        self.service.mark_failed(self.scan_id, self.jobs[source.path], stage, error)
        return FailedFile(source_file=str(source.path), stage=stage, error=error)


# ----------------------------------------------------------------------
# per-file steps
# ----------------------------------------------------------------------
def _process_usage_file(ctx: _ScanContext, source: SourceFile) -> _FileOutcome:
    job_id = ctx.jobs[source.path]
    if ctx.stopped():
        ctx.service.mark_skipped(ctx.scan_id, job_id, "scan cancelled")
        return _FileOutcome(source=source, cancelled=True)

    ctx.service.mark_running(ctx.scan_id, job_id, "stage")
    try:
        staged = ctx.workspace.copy_in(source.path, "input")
        raw_text = staged.read_text(encoding="utf-8-sig", errors="replace")
    except CopyError as exc:
        return _FileOutcome(source=source, failure=ctx.fail(source, "stage", exc))
    except OSError as exc:
        return _FileOutcome(source=source, failure=ctx.fail(source, "stage", CopyError(str(source.path), str(exc))))

    ctx.service.mark_running(ctx.scan_id, job_id, "parse")
    fixed = sanitize(raw_text)
    if fixed != raw_text:
        ctx.workspace.write("processed", f"{staged.stem}_BRK_fixed.json", fixed)
    try:
        parsed = parse_sanitized(fixed)
    except ParseFatal as exc:
        return _FileOutcome(source=source, failure=ctx.fail(source, "parse", exc))

    ctx.service.mark_running(ctx.scan_id, job_id, "extract")
    try:
        record = usage_json.extract(parsed, source.identity, source.path)
    except ParseError as exc:
        return _FileOutcome(source=source, failure=ctx.fail(source, "extract", exc))

    ctx.service.mark_completed(ctx.scan_id, job_id)
    return _FileOutcome(source=source, record=record)


def _load_inventory(
    ctx: _ScanContext,
    spreadsheets: list[SourceFile],
    extractor: InventoryExtractor,
) -> tuple[list[InventoryLine], list[FailedFile], bool]:
    if not spreadsheets:
        logger.warning("No inventory spreadsheet found; every used tool is reported outside inventory")
        return [], [], False

    primary, *extra = spreadsheets
    for source in extra:
        ctx.service.mark_skipped(ctx.scan_id, ctx.jobs[source.path], f"using {primary.path.name} as inventory")

    job_id = ctx.jobs[primary.path]
    if ctx.stopped():
        ctx.service.mark_skipped(ctx.scan_id, job_id, "scan cancelled")
        return [], [], False

    ctx.service.mark_running(ctx.scan_id, job_id, "stage")
    try:
        staged = ctx.workspace.copy_in(primary.path, "external")
    except CopyError as exc:
        return [], [ctx.fail(primary, "stage", exc)], False

    ctx.service.mark_running(ctx.scan_id, job_id, "extract")
    try:
        lines = extractor.extract(staged)
    except ExtractionError as exc:
        return [], [ctx.fail(primary, "extract", exc)], False

    ctx.service.mark_completed(ctx.scan_id, job_id)
    return lines, [], True


def _process_usage_files(ctx: _ScanContext, sources: list[SourceFile], max_workers: int) -> list[_FileOutcome]:
    if max_workers <= 1 or len(sources) <= 1:
        return [_process_usage_file(ctx, source) for source in sources]
    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="toolmanager-scan") as pool:
        futures = [pool.submit(_process_usage_file, ctx, source) for source in sources]
        return [future.result() for future in futures]


def _write_outputs(
    report: ConsolidatedReport,
    workspace: SessionWorkspace,
    sink: PersistenceSink | None,
) -> list[FailedFile]:
    """Write the report into the session and the sink; sink errors are returned, not raised."""

    payload = json.dumps(report.to_payload(), ensure_ascii=False, indent=2)
    tools_csv = records_to_csv(
        (tool.model_dump(by_alias=True) for tool in report.tools),
        columns=TOOLS_CSV_COLUMNS,
    )
    workspace.write("results", RESULT_FILENAME, payload)
    workspace.write("results", TOOLS_CSV_FILENAME, tools_csv)
    if sink is None:
        return []

    failures: list[FailedFile] = []
    for filename, content in ((RESULT_FILENAME, payload), (TOOLS_CSV_FILENAME, tools_csv)):
        try:
            sink.save("results", filename, content)
        except Exception as exc:
            logger.warning("Saving %s failed: %s", filename, exc)
            failures.append(FailedFile(source_file=filename, stage="persist", error=str(exc)))
    return failures


def _default_sink(settings: ScanSettings, root: Path) -> PersistenceSink | None:
    if settings.output_dir is None:
        return None
    if is_within(settings.output_dir, root):
        logger.warning("Output directory %s is inside the scan root; not saving outside the session", settings.output_dir)
        return None
    return LocalFileSink(settings.output_dir)


# ----------------------------------------------------------------------
# entry points
# ----------------------------------------------------------------------
def run_scan(
    root_path: str | Path,
    *,
    settings: ScanSettings | None = None,
    inventory_extractor: InventoryExtractor | None = None,
    estimator: ToolLifeEstimator | None = None,
    sink: PersistenceSink | None = None,
    stop_event: threading.Event | None = None,
    max_workers: int | None = None,
    service: ScanService | None = None,
) -> ConsolidatedReport:
    """Scan ``root_path`` and reconcile tool usage against the inventory.

    Source files are only read: everything is staged into a session workspace
    that is removed again before returning.  Per-file problems end up in the
    report's ``failed_files``; only :class:`WorkspaceFatal` aborts the scan.
    """

    settings = settings or ScanSettings.from_env()
    service = service or get_scan_service()
    extractor = inventory_extractor or SpreadsheetInventoryExtractor()
    workers = max(1, max_workers if max_workers is not None else settings.max_workers)
    root = Path(root_path).resolve()
    if sink is None:
        sink = _default_sink(settings, root)

    sources = list(detect.scan(root))
    spreadsheets = [source for source in sources if source.kind == "inventory_spreadsheet"]
    usage_files = [source for source in sources if source.kind == "usage_record"]
    logger.info(
        "Discovered %d usage file(s) and %d inventory spreadsheet(s) under %s",
        len(usage_files),
        len(spreadsheets),
        root,
    )

    scan_id = service.start_scan(str(root))
    jobs = {source.path: service.register_file(scan_id, str(source.path), source.kind) for source in sources}

    try:
        workspace = SessionWorkspace.create(
            settings.app_name,
            settings.workspaces_root,
            source_roots=[root],
            preserve_results=settings.preserve_results,
        )
    except Exception:
        service.finish_scan(scan_id, "failed")
        raise
    service.attach_session(scan_id, workspace.session_id)
    ctx = _ScanContext(scan_id=scan_id, service=service, workspace=workspace, jobs=jobs, stop_event=stop_event)

    try:
        with workspace:
            inventory, failed, inventory_available = _load_inventory(ctx, spreadsheets, extractor)
            outcomes = _process_usage_files(ctx, usage_files, workers)

            records = [outcome.record for outcome in outcomes if outcome.record is not None]
            failed.extend(outcome.failure for outcome in outcomes if outcome.failure is not None)
            cancelled = ctx.stopped()

            aggregates = combine(records)
            if settings.strict_invariants:
                check_invariants(records, aggregates)

            summary = ReportSummary(
                files_discovered=len(sources),
                usage_files_parsed=len(records),
                usage_files_failed=sum(1 for outcome in outcomes if outcome.failure is not None),
                inventory_files=len(spreadsheets),
                inventory_available=inventory_available,
                cancelled=cancelled,
            )
            report = build_report(aggregates, inventory, estimator, summary=summary).model_copy(
                update={
                    "failed_files": failed,
                    "generated_at": datetime.now(timezone.utc).isoformat(timespec="seconds"),
                    "session_id": workspace.session_id,
                }
            )
            persist_failures = _write_outputs(report, workspace, sink)
            if persist_failures:
                report = report.model_copy(update={"failed_files": [*failed, *persist_failures]})
    except Exception:
        service.finish_scan(scan_id, "failed")
        raise

    service.finish_scan(scan_id, "cancelled" if cancelled else "completed", report.to_payload())
    logger.info(
        "Scan finished: %d parsed, %d failed, %d tools used",
        summary.usage_files_parsed,
        len(failed),
        len(report.tools),
    )
    return report


class PipelineWorker:
    """Async facade that runs one scan at a time off the event loop."""

    def __init__(
        self,
        settings: ScanSettings | None = None,
        *,
        inventory_extractor: InventoryExtractor | None = None,
        estimator: ToolLifeEstimator | None = None,
        sink: PersistenceSink | None = None,
    ) -> None:
        self._lock = asyncio.Lock()
        self._stop = threading.Event()
        self._settings = settings
        self._inventory_extractor = inventory_extractor
        self._estimator = estimator
        self._sink = sink

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def cancel(self) -> None:
        """Ask the running scan to stop before its next file."""

        self._stop.set()

    async def run(self, request: ScanRequest) -> ConsolidatedReport:
        async with self._lock:
            self._stop.clear()
            return await asyncio.to_thread(
                run_scan,
                request.root_path,
                settings=self._settings,
                inventory_extractor=self._inventory_extractor,
                estimator=self._estimator,
                sink=self._sink,
                stop_event=self._stop,
                max_workers=request.max_workers,
            )


_worker: PipelineWorker | None = None


def get_pipeline_worker() -> PipelineWorker:
    global _worker
    if _worker is None:
        _worker = PipelineWorker()
    return _worker
