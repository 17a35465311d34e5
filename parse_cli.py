#!/usr/bin/env python3
"""CLI for analysing credit card statements and combining them with receipts."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Optional

from logging_config import configure_logging
from statement_combiner import combine_statement, placeholder_to_json
from statement_parser import ExtractionError, build_report, extract_text, report_to_json


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Analyse a credit card statement PDF or combine it with receipt PDFs."
    )
    parser.add_argument("--log-level", default="WARNING", help="Logging level (default: WARNING)")
    sub = parser.add_subparsers(dest="command", required=True)

    analyze = sub.add_parser("analyze", help="Print the per-page transaction report as JSON")
    analyze.add_argument("pdf_path", type=Path, help="Path to statement PDF")
    analyze.add_argument("-o", "--output", type=Path, help="Output JSON file path")
    analyze.add_argument("--pretty", action="store_true", help="Pretty-print JSON")

    combine = sub.add_parser("combine", help="Merge receipts into the statement after their entries")
    combine.add_argument("pdf_path", type=Path, help="Path to statement PDF")
    combine.add_argument("receipts", type=Path, nargs="*", help="Receipt PDFs, matched in the given order")
    combine.add_argument("-o", "--output", type=Path, required=True, help="Output PDF file path")
    combine.add_argument("--placeholders", type=Path, help="Write missing placeholders JSON to this path")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    try:
        statement_bytes = args.pdf_path.read_bytes()
        if args.command == "analyze":
            result = report_to_json(build_report(extract_text(statement_bytes)))
            indent = 2 if args.pretty or args.output else None
        else:
            combined = combine_statement(
                statement_bytes,
                [(path.name, path.read_bytes()) for path in args.receipts],
            )
            args.output.write_bytes(combined.pdf_bytes)
            result = [placeholder_to_json(p) for p in combined.placeholders]
            indent = 2
    except (ExtractionError, OSError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    rendered = json.dumps(result, ensure_ascii=False, indent=indent)

    target = args.placeholders if args.command == "combine" else args.output
    if target:
        target.write_text(rendered + "\n", encoding="utf-8")
    else:
        print(rendered)

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
