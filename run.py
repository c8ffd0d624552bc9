#!/usr/bin/env python3
"""Unified CLI: run the transactional stress harness and build reports.

Usage:
    python run.py txstress                                  # serial preset, SQLite file
    python run.py txstress --preset concurrent --db-url sqlite:///stress.db
    python run.py txstress --preset fixed-key --store memory
    python run.py txstress --transactions 10 --rollback-probability 1.0
    python run.py report --format latex

Exit status is 0 when verification passes, 1 when it fails, and 2 when the run
could not produce a verdict (bad arguments or a run error; nothing is saved).
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from benchmarks import get_benchmarks
from benchmarks.base import BaseBenchmark
from lib import report as report_mod
from lib.recorder import ResultRecorder

ROOT = Path(__file__).resolve().parent

EXIT_PASSED = 0
EXIT_FAILED = 1
EXIT_ERROR = 2


def main(argv: list[str] | None = None) -> int:
    args = argv if argv is not None else sys.argv[1:]

    parser = argparse.ArgumentParser(
        prog="tx-stress-eval",
        description="Transactional stress tests with commit/rollback verification",
    )
    parser.add_argument(
        "--output-dir", type=str, default=str(ROOT / "results"),
        help="Directory for result JSON files (default: results/)",
    )
    parser.add_argument(
        "--no-save", action="store_true",
        help="Do not write a result JSON file",
    )

    subparsers = parser.add_subparsers(dest="command")

    # Register each benchmark as a subcommand
    benchmarks = get_benchmarks()
    bench_instances: dict[str, BaseBenchmark] = {}
    for name, cls in sorted(benchmarks.items()):
        sub = subparsers.add_parser(name, help=f"Run {name} benchmarks")
        instance = cls()
        instance.register_args(sub)
        bench_instances[name] = instance

    # Report subcommand
    report_parser = subparsers.add_parser("report", help="Generate result reports")
    report_mod.register_args(report_parser)

    parsed = parser.parse_args(args)

    if parsed.command is None:
        parser.print_help()
        return 0

    if parsed.command == "report":
        # Wire --output-dir through to report if --results-dir not explicitly set
        if parsed.results_dir == str(ROOT / "results"):
            parsed.results_dir = parsed.output_dir
        report_mod.run_report(parsed)
        return 0

    bench = bench_instances.get(parsed.command)
    if bench is None:
        parser.print_help()
        return EXIT_ERROR

    if not bench.validate(parsed):
        print(f"Validation failed for {parsed.command}. Check arguments.")
        return EXIT_ERROR

    try:
        results = bench.run(parsed)
    except Exception as e:
        print(f"\nERROR running {parsed.command}: {type(e).__name__}: {e}", file=sys.stderr)
        return EXIT_ERROR

    if results and not parsed.no_save:
        recorder = ResultRecorder(category=parsed.command, label=bench.label(parsed))
        for r in results:
            recorder.record(r)
        recorder.save(parsed.output_dir)

    return EXIT_PASSED if all(r.passed is not False for r in results) else EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
