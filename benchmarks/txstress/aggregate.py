"""AggregateState — expected-outcome bookkeeping shared by all workers."""

from __future__ import annotations

import threading
from collections import Counter

from .transaction import TransactionOutcome


class AggregateState:
    """Lock-protected running totals of every transaction outcome.

    Workers call ``record`` concurrently; the verifier reads the totals once,
    after the pool has joined every worker.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.committed_total = 0
        self.rolled_back_total = 0
        self.failed_total = 0
        self.cancelled_total = 0
        self.committed_plans = 0
        self.rolled_back_plans = 0
        self.duplicate_committed_total = 0
        self.expected_key_counts: Counter[str] = Counter()
        self.error_counts: Counter[str] = Counter()
        self.errors: list[str] = []

    def record(self, outcome: TransactionOutcome) -> None:
        with self._lock:
            if outcome.failed:
                self.failed_total += 1
                self.error_counts[outcome.error_type or "unknown"] += 1
                if len(self.errors) < 10:
                    self.errors.append(f"{outcome.error_type}: {outcome.error_detail}")
                return
            if outcome.cancelled:
                self.cancelled_total += 1
            if outcome.committed_insert_count:
                self.committed_plans += 1
                self.committed_total += outcome.committed_insert_count
                self.duplicate_committed_total += outcome.duplicate_insert_count
                self.expected_key_counts.update(outcome.committed_keys)
            else:
                self.rolled_back_plans += 1
                self.rolled_back_total += outcome.rolled_back_insert_count

    def record_failure(self, error_type: str, detail: str) -> None:
        """Count a cycle that failed before a plan could run (e.g. no session)."""
        with self._lock:
            self.failed_total += 1
            self.error_counts[error_type] += 1
            if len(self.errors) < 10:
                self.errors.append(f"{error_type}: {detail}")

    @property
    def completed_cycles(self) -> int:
        with self._lock:
            return self.committed_plans + self.rolled_back_plans + self.failed_total

    def to_dict(self) -> dict:
        with self._lock:
            return {
                "committed_total": self.committed_total,
                "rolled_back_total": self.rolled_back_total,
                "failed_total": self.failed_total,
                "cancelled_total": self.cancelled_total,
                "committed_plans": self.committed_plans,
                "rolled_back_plans": self.rolled_back_plans,
                "duplicate_committed_total": self.duplicate_committed_total,
                "error_counts": dict(self.error_counts),
            }
