#!/usr/bin/env python
from __future__ import annotations

import argparse
import json
from pathlib import Path


def main() -> None:
    parser = argparse.ArgumentParser(description="Generate a sample machine usage export")
    parser.add_argument("--output-dir", required=True, help="directory for the .json file")
    parser.add_argument("--project", default="W5270NS01003", help="project base code")
    parser.add_argument("--position", default="A", help="position letter")
    parser.add_argument("--with-nan", action="store_true", help="write a bare NaN like the machine export does")
    args = parser.parse_args()

    operations = [
        {"programName": "P001", "toolName": "RT-8400300", "operationTime": 12.5, "maxSpeed": 18000, "maxFeed": 2400},
        {"programName": "P002", "toolName": "BHF-D10", "operationTime": 4.0, "maxSpeed": 6000, "maxFeed": 800},
        {"programName": "P003", "toolName": "VLM-S8", "operationTime": 7.25, "maxSpeed": 12000, "maxFeed": 1500},
    ]
    text = json.dumps({"machine": "DMU-50", "operator": "Operator 1", "operations": operations}, indent=2)
    if args.with_nan:
        text = text.replace('"maxFeed": 800', '"maxFeed": NaN')

    output = Path(args.output_dir) / f"{args.project}{args.position}.json"
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(text, encoding="utf-8")
    print(f"Usage sample written: {output}")


if __name__ == "__main__":
    main()
