#!/usr/bin/env python3
"""Run every stress preset and print a PASS/FAIL summary table.

Usage:
    python scripts/run_all.py                              # all presets, SQLite
    python scripts/run_all.py --store memory               # in-process store
    python scripts/run_all.py --preset serial retry        # a subset
    python scripts/run_all.py --clean --seed 7             # fresh results, reproducible
"""

from __future__ import annotations

import argparse
import json
import shutil
import subprocess
import sys
import time
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from benchmarks.txstress.workloads import PRESETS  # noqa: E402


def find_result(results_dir: Path, preset: str, since: float) -> Path | None:
    """Return the newest result file for *preset* written at or after *since*."""
    files = [
        p for p in results_dir.glob(f"txstress-{preset}-*.json")
        if p.stat().st_mtime >= since
    ]
    if not files:
        return None
    return max(files, key=lambda p: p.stat().st_mtime)


def run_preset(preset: str, store: str, db_dir: Path, seed: int | None) -> dict | None:
    """Run one preset in a subprocess and return the parsed result entry."""
    print(f"\n{'='*60}")
    print(f"  Running: {preset} / {store}")
    print(f"{'='*60}\n")

    cmd = [
        sys.executable, str(ROOT / "run.py"), "txstress",
        "--preset", preset,
        "--store", store,
        "--no-progress",
    ]
    if store == "sql":
        cmd.extend(["--db-url", f"sqlite:///{db_dir / f'{preset}.db'}"])
    if seed is not None:
        cmd.extend(["--seed", str(seed)])

    started = time.time()
    result = subprocess.run(cmd, cwd=str(ROOT), capture_output=False)
    # Exit 0 and 1 are verdicts with a result file; anything else wrote nothing.
    if result.returncode not in (0, 1):
        print(f"  ERROR: {preset} / {store} (exit code {result.returncode})")
        return None

    path = find_result(ROOT / "results", preset, started)
    if path is None:
        print(f"  WARNING: No result file found for {preset}")
        return None

    with open(path) as f:
        report = json.load(f)
    return report["results"][0]


def print_summary_table(results: list[dict]) -> None:
    print(f"\n{'='*96}")
    print("  TRANSACTION STRESS SUMMARY")
    print(f"{'='*96}\n")

    print(
        f"  {'Preset':<12} {'Result':<7} {'Expected':>9} {'Actual':>9} {'Commit':>7} "
        f"{'Rollback':>9} {'Failed':>7} {'Dup grp':>8} {'tx/s':>8}"
    )
    print(
        f"  {'─'*12} {'─'*7} {'─'*9} {'─'*9} {'─'*7} "
        f"{'─'*9} {'─'*7} {'─'*8} {'─'*8}"
    )

    for r in results:
        m = r["metrics"]
        verdict = "PASS" if m.get("passed") else "FAIL"
        print(
            f"  {r['parameters']['preset']:<12} {verdict:<7} "
            f"{m['expected_row_count']:>9} {m['actual_row_count']:>9} "
            f"{m['committed_plans']:>7} {m['rolled_back_plans']:>9} {m['failed_total']:>7} "
            f"{m['duplicate_group_count']:>8} {m['throughput_tx_s']:>8.1f}"
        )

    print(f"\n{'='*96}\n")


def clean_results(results_dir: Path) -> None:
    """Remove all result files from the results directory."""
    if results_dir.exists():
        count = sum(1 for _ in results_dir.glob("*.json"))
        shutil.rmtree(results_dir)
        results_dir.mkdir(parents=True, exist_ok=True)
        print(f"Cleaned {count} old result files from {results_dir}")
    else:
        results_dir.mkdir(parents=True, exist_ok=True)
        print(f"Created results directory: {results_dir}")


def main():
    parser = argparse.ArgumentParser(description="Run all transaction stress presets")
    parser.add_argument(
        "--preset", nargs="+", default=list(PRESETS),
        choices=list(PRESETS),
        help="Presets to run (default: all)",
    )
    parser.add_argument(
        "--store", default="sql", choices=["sql", "memory"],
        help="Store adapter (default: sql)",
    )
    parser.add_argument(
        "--db-dir", type=str, default=str(ROOT / "data"),
        help="Directory for per-preset SQLite files (default: data/)",
    )
    parser.add_argument("--seed", type=int, default=None, help="Seed passed to every run")
    parser.add_argument(
        "--clean", action="store_true",
        help="Remove all old result files before running",
    )
    args = parser.parse_args()

    if args.clean:
        clean_results(ROOT / "results")

    db_dir = Path(args.db_dir)
    db_dir.mkdir(parents=True, exist_ok=True)

    all_results = []
    errored = []
    for preset in args.preset:
        result = run_preset(preset, args.store, db_dir, args.seed)
        if result:
            all_results.append(result)
        else:
            errored.append(preset)

    if not all_results:
        print("\nNo results collected.")
        sys.exit(1)

    print_summary_table(all_results)
    if errored:
        print(f"  No verdict for: {', '.join(errored)}")
    if errored or not all(r["metrics"].get("passed") for r in all_results):
        sys.exit(1)


if __name__ == "__main__":
    main()
