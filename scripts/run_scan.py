#!/usr/bin/env python
from __future__ import annotations

import argparse
import json
import sys
from dataclasses import replace
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from toolmanager.core.settings import ScanSettings  # noqa: E402
from toolmanager.workers.pipeline import run_scan  # noqa: E402


def main() -> None:
    parser = argparse.ArgumentParser(description="Reconcile tool usage exports against the tool inventory")
    parser.add_argument("root", help="directory holding the inventory workbook and usage .json files")
    parser.add_argument("--workers", type=int, default=None, help="parallel staging/parsing threads")
    parser.add_argument("--output-dir", default=None, help="save the report here as well")
    parser.add_argument("--preserve-results", action="store_true", help="archive the session results folder")
    args = parser.parse_args()

    settings = ScanSettings.from_env()
    if args.output_dir:
        settings = replace(settings, output_dir=Path(args.output_dir).expanduser().resolve())
    if args.preserve_results:
        settings = replace(settings, preserve_results=True)

    report = run_scan(args.root, settings=settings, max_workers=args.workers)
    print(json.dumps(report.summary.model_dump(by_alias=True), indent=2))


if __name__ == "__main__":
    main()
