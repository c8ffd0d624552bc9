"""Transactional stress benchmark -- drives a store with concurrent commit/rollback
workloads and verifies the final state against the decisions actually taken.

Unlike the other suites this is a correctness check, not a throughput
measurement: the headline result is PASS/FAIL, timing is reported only to
make runs comparable.
"""

from __future__ import annotations

import argparse
import time

from lib.memory_store import MemoryStore
from lib.schema import BenchmarkResult
from lib.sql_store import SqlStore
from lib.store import Store

from ..base import BaseBenchmark
from .aggregate import AggregateState
from .config import DEFAULT_DB_URL, DEFAULT_SAMPLE_SIZE
from .pool import WorkerPool
from .verifier import VerificationReport, verify
from .workloads import PRESETS, WorkloadConfig


class TxStressBenchmark(BaseBenchmark):
    name = "txstress"

    # ---- CLI registration -------------------------------------------------

    def register_args(self, parser: argparse.ArgumentParser) -> None:
        parser.add_argument(
            "--preset",
            default="serial",
            choices=list(PRESETS.keys()),
            help="Workload preset; the flags below override its fields (default: serial)",
        )
        parser.add_argument(
            "--transactions", type=int, default=None,
            help="Total transactions across all workers",
        )
        parser.add_argument(
            "--concurrency", type=int, default=None,
            help="Number of workers, each with a private session",
        )
        parser.add_argument(
            "--min-inserts", type=int, default=None,
            help="Minimum rows inserted per transaction",
        )
        parser.add_argument(
            "--max-inserts", type=int, default=None,
            help="Maximum rows inserted per transaction",
        )
        parser.add_argument(
            "--rollback-probability", type=float, default=None,
            help="Probability that a transaction is rolled back",
        )
        parser.add_argument(
            "--duplicate-retry-probability", type=float, default=None,
            help="Probability that a transaction re-inserts rows it already wrote",
        )
        parser.add_argument(
            "--duplicate-batch-size", type=int, default=None,
            help="Rows re-inserted by one duplicate retry",
        )
        parser.add_argument(
            "--fixed-key", type=str, default=None,
            help="Give every generated row this identity (write-race probe)",
        )
        parser.add_argument(
            "--seed", type=int, default=None,
            help="Seed for reproducible workloads",
        )
        parser.add_argument(
            "--store",
            default="sql",
            choices=["sql", "memory"],
            help="Store adapter to drive (default: sql)",
        )
        parser.add_argument(
            "--db-url", type=str, default=DEFAULT_DB_URL,
            help=f"SQLAlchemy URL for the sql store (default: {DEFAULT_DB_URL})",
        )
        parser.add_argument(
            "--unique-titles", action="store_true",
            help="Put a unique constraint on the identity field",
        )
        parser.add_argument(
            "--no-reset", action="store_true",
            help="Do not drop and recreate the table before the run",
        )
        parser.add_argument(
            "--insert-failure-rate", type=float, default=0.0,
            help="memory store: probability an insert fails with an I/O error",
        )
        parser.add_argument(
            "--commit-failure-rate", type=float, default=0.0,
            help="memory store: probability a commit fails with an I/O error",
        )
        parser.add_argument(
            "--leak-rollbacks", action="store_true",
            help="memory store: make rolled-back rows visible (defective store)",
        )
        parser.add_argument(
            "--sample-size", type=int, default=DEFAULT_SAMPLE_SIZE,
            help=f"Rows to print after verification (default: {DEFAULT_SAMPLE_SIZE})",
        )
        parser.add_argument(
            "--verbose", action="store_true",
            help="Print one line per transaction",
        )
        parser.add_argument(
            "--no-progress", action="store_true",
            help="Disable the progress bar",
        )

    # ---- Validate ---------------------------------------------------------

    def validate(self, args: argparse.Namespace) -> bool:
        try:
            self.build_config(args)
        except ValueError as e:
            print(f"ERROR: {e}")
            return False
        if args.store == "sql" and args.no_reset and args.unique_titles:
            print("ERROR: --unique-titles needs the table to be recreated; drop --no-reset")
            return False
        return True

    def label(self, args: argparse.Namespace) -> str | None:
        return args.preset

    # ---- Run --------------------------------------------------------------

    def run(self, args: argparse.Namespace) -> list[BenchmarkResult]:
        config = self.build_config(args)
        store = self.open_store(args)
        try:
            if not args.no_reset:
                store.reset()
            state, report, interrupted = self.execute(
                config,
                store,
                sample_size=args.sample_size,
                verbose=args.verbose,
                progress=not args.no_progress,
                describe=f"{args.preset}: {PRESETS[args.preset].description}",
            )
        finally:
            store.close()

        return [self._make_result(args, config, store, state, report, interrupted)]

    def execute(
        self,
        config: WorkloadConfig,
        store: Store,
        *,
        sample_size: int = DEFAULT_SAMPLE_SIZE,
        verbose: bool = False,
        progress: bool = True,
        describe: str = "",
    ) -> tuple[AggregateState, VerificationReport, bool]:
        """Run the workload against *store*, then verify it."""
        self._print_header(config, store, describe)

        pool = WorkerPool(config, store.open_session, verbose=verbose, progress=progress)
        start = time.perf_counter()
        state = pool.run()
        elapsed = time.perf_counter() - start

        print("\n  Verifying...")
        with store.open_session() as session:
            report = verify(state, session, elapsed_s=elapsed, sample_size=sample_size)

        self._print_summary(config, state, report, pool.interrupted)
        return state, report, pool.interrupted

    # ---- Helpers ----------------------------------------------------------

    @staticmethod
    def build_config(args: argparse.Namespace) -> WorkloadConfig:
        """Resolve the preset and apply every CLI override."""
        preset = PRESETS[args.preset]
        lo, hi = preset.config.insert_count_range
        if args.min_inserts is not None or args.max_inserts is not None:
            lo = args.min_inserts if args.min_inserts is not None else lo
            hi = args.max_inserts if args.max_inserts is not None else hi
            if args.min_inserts is None:
                lo = min(lo, hi)
            if args.max_inserts is None:
                hi = max(lo, hi)
        return preset.build(
            total_transactions=args.transactions,
            concurrency=args.concurrency,
            insert_count_range=(lo, hi),
            rollback_probability=args.rollback_probability,
            duplicate_retry_probability=args.duplicate_retry_probability,
            duplicate_batch_size=args.duplicate_batch_size,
            fixed_key=args.fixed_key,
            seed=args.seed,
        )

    @staticmethod
    def open_store(args: argparse.Namespace) -> Store:
        if args.store == "memory":
            return MemoryStore(
                unique_titles=args.unique_titles,
                insert_failure_rate=args.insert_failure_rate,
                commit_failure_rate=args.commit_failure_rate,
                leak_rollbacks=args.leak_rollbacks,
                seed=args.seed,
            )
        return SqlStore(args.db_url, unique_titles=args.unique_titles)

    @staticmethod
    def _make_result(
        args: argparse.Namespace,
        config: WorkloadConfig,
        store: Store,
        state: AggregateState,
        report: VerificationReport,
        interrupted: bool,
    ) -> BenchmarkResult:
        completed = state.completed_cycles
        throughput = completed / report.elapsed_s if report.elapsed_s > 0 else 0.0
        totals = state.to_dict()
        error_counts = totals.pop("error_counts")
        verification = report.to_dict()

        metrics: dict[str, object] = {
            **totals,
            **{k: v for k, v in verification.items() if not isinstance(v, (dict, list))},
            "completed_cycles": completed,
            "throughput_tx_s": round(throughput, 1),
            "interrupted": interrupted,
        }

        return BenchmarkResult(
            benchmark=f"txstress/{args.preset}/{store.name}-c{config.worker_count}",
            category="txstress",
            parameters={
                "preset": args.preset,
                "store": store.describe(),
                "total_transactions": config.total_transactions,
                "concurrency": config.concurrency,
                "insert_count_range": list(config.insert_count_range),
                "rollback_probability": config.rollback_probability,
                "duplicate_retry_probability": config.duplicate_retry_probability,
                "duplicate_batch_size": config.duplicate_batch_size,
                "fixed_key": config.fixed_key,
                "seed": config.seed,
            },
            metrics=metrics,
            details={
                "error_counts": error_counts,
                "errors": list(state.errors),
                "duplicate_groups": verification["duplicate_groups"],
                "missing_keys": verification["missing_keys"],
                "unexpected_keys": verification["unexpected_keys"],
            },
        )

    @staticmethod
    def _print_header(config: WorkloadConfig, store: Store, describe: str) -> None:
        lo, hi = config.insert_count_range
        print(f"\n{'='*60}")
        print("  Transaction stress test" + (f" -- {describe}" if describe else ""))
        print(f"  store={store.describe()}")
        print(f"  transactions={config.total_transactions}  workers={config.worker_count}  "
              f"inserts={lo}..{hi}")
        print(f"  rollback_p={config.rollback_probability:.2f}  "
              f"retry_p={config.duplicate_retry_probability:.2f}  "
              f"fixed_key={config.fixed_key or '-'}  seed={config.seed if config.seed is not None else '-'}")
        print(f"{'='*60}")

    @staticmethod
    def _print_summary(
        config: WorkloadConfig,
        state: AggregateState,
        report: VerificationReport,
        interrupted: bool,
    ) -> None:
        completed = state.completed_cycles
        rate = completed / report.elapsed_s if report.elapsed_s > 0 else 0.0

        print(f"\n  {'--- Outcomes ---':^50}")
        print(f"  {'Committed:':<14} {state.committed_plans:>7} tx  "
              f"({state.committed_total} rows, {state.duplicate_committed_total} retried)")
        print(f"  {'Rolled back:':<14} {state.rolled_back_plans:>7} tx  "
              f"({state.rolled_back_total} rows, {state.cancelled_total} cancelled)")
        print(f"  {'Failed:':<14} {state.failed_total:>7} tx")
        for error_type, n in sorted(state.error_counts.items()):
            print(f"    {error_type:<24} {n:>6}")
        print(f"  Elapsed: {report.elapsed_s:.3f}s  ({rate:.0f} tx/s)"
              + ("  [interrupted]" if interrupted else ""))

        print(f"\n  {'--- Verification ---':^50}")
        print(f"  Expected committed rows: {report.expected_row_count}")
        print(f"  Actual rows in store:    {report.actual_row_count}")
        print(f"  Duplicate groups:        {len(report.duplicate_groups)}"
              f"  ({report.duplicate_row_count} extra rows)")
        for key, n in list(report.duplicate_groups.items())[:10]:
            note = "  (fixed key)" if key == config.fixed_key else ""
            print(f"    {key:<32} {n:>6}{note}")
        print(f"  Missing keys:            {report.missing_key_count}")
        for m in report.missing_keys:
            print(f"    {m.key:<32} expected {m.expected}, got {m.actual}")
        print(f"  Unexpected keys:         {report.unexpected_key_count}")
        for m in report.unexpected_keys:
            print(f"    {m.key:<32} expected {m.expected}, got {m.actual}")

        if report.passed and report.keys_consistent:
            print("\n  PASSED: all commits and rollbacks behaved correctly.")
        elif report.passed:
            print("\n  PASSED row count, but per-key contents differ (see above).")
        else:
            print("\n  FAILED: data mismatch!")

        if report.sample:
            print(f"\n  {'--- Sample rows ---':^50}")
            for i, record in enumerate(report.sample, 1):
                print(f"  {i:>4}: {record.title} (done: {record.is_done})")
        print(f"{'='*60}\n")
