#!/usr/bin/env python
from __future__ import annotations

import argparse
from pathlib import Path

from openpyxl import Workbook


def main() -> None:
    parser = argparse.ArgumentParser(description="Generate a sample tool inventory workbook")
    parser.add_argument("--output", required=True, help="output path (.xlsx)")
    parser.add_argument("--tool", action="append", default=[], help="extra tool as CODE=QUANTITY")
    args = parser.parse_args()

    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Készlet"
    sheet.append(["Szerszámkészlet", None, None])
    sheet.append([None, None, None])
    sheet.append(["Tételkód", "Megnevezés", "Mennyiség"])
    sheet.append(["RT-8400300", "E-Cut maró ø3", 10])
    sheet.append(["RT-8201060", "MFC maró ø6", 4])
    sheet.append(["BHF-D10", "Fúró ø10", 2])
    for item in args.tool:
        code, _, quantity = item.partition("=")
        sheet.append([code, None, int(quantity or 1)])

    output = Path(args.output)
    output.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(output)
    print(f"Inventory sample written: {output}")


if __name__ == "__main__":
    main()
