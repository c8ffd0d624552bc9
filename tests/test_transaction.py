"""Tests for run_plan — one plan, one transaction, one outcome."""

from __future__ import annotations

import io
import unittest
from contextlib import redirect_stdout

from lib.memory_store import MemoryStore
from lib.store import InvalidTransactionState, Record, Session, Transaction

from benchmarks.txstress.transaction import TransactionOutcome, run_plan
from benchmarks.txstress.workloads import Directive, TransactionPlan


def make_plan(n: int = 3, directive: Directive = Directive.COMMIT, duplicates: int = 0,
              title: str | None = None) -> TransactionPlan:
    rows = tuple(Record(title=title or f"W0-Tx0-Item{j}") for j in range(n))
    return TransactionPlan(
        worker_index=0,
        cycle_index=0,
        records=rows,
        directive=directive,
        duplicate_records=rows[:duplicates],
    )


class _DoubleCommitTransaction(Transaction):
    """Reports an already-closed handle on commit."""

    def __init__(self):
        self._active = True

    @property
    def active(self):
        return self._active

    def insert(self, record):
        pass

    def commit(self):
        self._active = False
        raise InvalidTransactionState("Transaction is already closed")

    def rollback(self):
        self._active = False


class _FakeSession(Session):
    def begin(self):
        return _DoubleCommitTransaction()

    def count(self, predicate=None):
        return 0

    def group_count(self, key_field):
        return {}

    def sample(self, limit=20):
        return []

    def close(self):
        pass


class TestRunPlan(unittest.TestCase):
    def setUp(self):
        self.store = MemoryStore()
        self.session = self.store.open_session()

    def tearDown(self):
        self.store.close()

    def test_commit_outcome(self):
        outcome = run_plan(make_plan(3), self.session)
        self.assertEqual(outcome.committed_insert_count, 3)
        self.assertEqual(outcome.rolled_back_insert_count, 0)
        self.assertFalse(outcome.failed)
        self.assertEqual(outcome.status, "committed")
        self.assertEqual(len(outcome.committed_keys), 3)
        self.assertEqual(self.session.count(), 3)

    def test_rollback_outcome(self):
        outcome = run_plan(make_plan(4, Directive.ROLLBACK), self.session)
        self.assertEqual(outcome.committed_insert_count, 0)
        self.assertEqual(outcome.rolled_back_insert_count, 4)
        self.assertEqual(outcome.status, "rolled back")
        self.assertEqual(self.session.count(), 0)

    def test_duplicate_retry_committed(self):
        outcome = run_plan(make_plan(3, duplicates=2), self.session)
        self.assertEqual(outcome.committed_insert_count, 5)
        self.assertEqual(outcome.duplicate_insert_count, 2)
        self.assertEqual(self.session.count(), 5)
        self.assertEqual(self.session.group_count("title")["W0-Tx0-Item0"], 2)

    def test_duplicate_retry_rolled_back(self):
        outcome = run_plan(make_plan(3, Directive.ROLLBACK, duplicates=2), self.session)
        self.assertEqual(outcome.rolled_back_insert_count, 5)
        self.assertEqual(self.session.count(), 0)

    def test_insert_failure_is_rolled_back(self):
        store = MemoryStore(insert_failure_rate=1.0)
        with store.open_session() as s:
            outcome = run_plan(make_plan(3), s)
            self.assertTrue(outcome.failed)
            self.assertEqual(outcome.error_type, "StoreIOError")
            self.assertEqual(outcome.status, "failed")
            self.assertEqual(outcome.committed_insert_count, 0)
            self.assertEqual(s.count(), 0)
            # The session is usable for the next plan.
            s.begin().rollback()

    def test_commit_failure_is_rolled_back(self):
        store = MemoryStore(commit_failure_rate=1.0)
        with store.open_session() as s:
            outcome = run_plan(make_plan(3), s)
            self.assertTrue(outcome.failed)
            self.assertIn("commit", outcome.error_detail)
            self.assertEqual(s.count(), 0)
            s.begin().rollback()

    def test_constraint_violation_is_a_failed_outcome(self):
        store = MemoryStore(unique_titles=True)
        with store.open_session() as s:
            outcome = run_plan(make_plan(2, title="dup"), s)
            self.assertTrue(outcome.failed)
            self.assertEqual(outcome.error_type, "ConstraintViolation")
            self.assertEqual(s.count(), 0)

    def test_stop_request_cancels_commit(self):
        outcome = run_plan(make_plan(3), self.session, should_stop=lambda: True)
        self.assertTrue(outcome.cancelled)
        self.assertEqual(outcome.status, "cancelled")
        self.assertEqual(outcome.committed_insert_count, 0)
        self.assertEqual(outcome.rolled_back_insert_count, 3)
        self.assertEqual(self.session.count(), 0)

    def test_invalid_transaction_state_propagates(self):
        with self.assertRaises(InvalidTransactionState):
            run_plan(make_plan(1), _FakeSession())

    def test_session_already_in_transaction_propagates(self):
        tx = self.session.begin()
        try:
            with self.assertRaises(InvalidTransactionState):
                run_plan(make_plan(1), self.session)
        finally:
            tx.rollback()

    def test_verbose_line(self):
        buf = io.StringIO()
        with redirect_stdout(buf):
            run_plan(make_plan(2, duplicates=1), self.session, verbose=True)
        self.assertIn("[W0-Tx0] Committed 2 inserts (+1 retried)", buf.getvalue())


class TestTransactionOutcome(unittest.TestCase):
    def test_failure_constructor(self):
        outcome = TransactionOutcome.failure(InvalidTransactionState("boom"))
        self.assertTrue(outcome.failed)
        self.assertEqual(outcome.error_type, "InvalidTransactionState")
        self.assertEqual(outcome.error_detail, "boom")


if __name__ == "__main__":
    unittest.main()
