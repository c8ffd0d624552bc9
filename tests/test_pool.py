"""End-to-end tests: WorkerPool + verify against both store adapters."""

from __future__ import annotations

import io
import os
import tempfile
import threading
import time
import unittest
from contextlib import redirect_stdout
from unittest import mock

from lib.memory_store import MemoryStore
from lib.sql_store import SqlStore
from lib.store import InvalidTransactionState, Session, StoreUnavailable, Transaction

from benchmarks.txstress.pool import WorkerPool
from benchmarks.txstress.verifier import verify
from benchmarks.txstress.workloads import WorkloadConfig

from tests.test_transaction import _FakeSession


def run_and_verify(config, store, **kwargs):
    state = WorkerPool(config, store.open_session, progress=False, **kwargs).run()
    with store.open_session() as session:
        report = verify(state, session)
    return state, report


class _SlowTransaction(Transaction):
    """Delegating transaction that lingers after every insert batch."""

    def __init__(self, inner: Transaction, delay_s: float) -> None:
        self._inner = inner
        self._delay_s = delay_s

    @property
    def active(self):
        return self._inner.active

    def insert(self, record):
        self.insert_many([record])

    def insert_many(self, records):
        self._inner.insert_many(records)
        time.sleep(self._delay_s)

    def commit(self):
        self._inner.commit()

    def rollback(self):
        self._inner.rollback()


class _SlowSession(Session):
    def __init__(self, inner: Session, delay_s: float) -> None:
        self._inner = inner
        self._delay_s = delay_s

    def begin(self):
        return _SlowTransaction(self._inner.begin(), self._delay_s)

    def count(self, predicate=None):
        return self._inner.count(predicate)

    def group_count(self, key_field):
        return self._inner.group_count(key_field)

    def sample(self, limit=20):
        return self._inner.sample(limit)

    def close(self):
        self._inner.close()


def slow_factory(store, delay_s: float = 0.02):
    return lambda: _SlowSession(store.open_session(), delay_s)


def stop_mid_run(test: unittest.TestCase, store) -> None:
    """Stop a long run from a timer while workers are inside transactions."""
    config = WorkloadConfig(total_transactions=100_000, concurrency=4, seed=21)
    pool = WorkerPool(config, slow_factory(store), progress=False)
    timer = threading.Timer(0.3, pool.stop)
    timer.start()
    try:
        state = pool.run()
    finally:
        timer.cancel()

    test.assertFalse(pool.interrupted)
    test.assertLess(state.completed_cycles, config.total_transactions)
    test.assertGreater(state.cancelled_total, 0)
    with store.open_session() as session:
        report = verify(state, session)
    test.assertTrue(report.passed)
    test.assertTrue(report.keys_consistent)


def interrupt_mid_run(test: unittest.TestCase, store) -> None:
    """Raise KeyboardInterrupt in the collecting thread while workers are busy."""

    def interrupting(futures):
        time.sleep(0.3)
        raise KeyboardInterrupt

    config = WorkloadConfig(total_transactions=100_000, concurrency=4, seed=22)
    pool = WorkerPool(config, slow_factory(store), progress=False)
    with mock.patch("benchmarks.txstress.pool.as_completed", interrupting), \
            redirect_stdout(io.StringIO()):
        state = pool.run()

    test.assertTrue(pool.interrupted)
    test.assertTrue(pool.stopping)
    test.assertLess(state.completed_cycles, config.total_transactions)
    test.assertGreater(state.cancelled_total, 0)
    with store.open_session() as session:
        report = verify(state, session)
    test.assertTrue(report.passed)
    test.assertTrue(report.keys_consistent)


# ======================================================================
# Memory store
# ======================================================================

class TestPoolMemory(unittest.TestCase):
    def setUp(self):
        self.store = MemoryStore()

    def tearDown(self):
        self.store.close()

    def test_serial_run_passes(self):
        config = WorkloadConfig(total_transactions=100, concurrency=1, seed=1)
        state, report = run_and_verify(config, self.store)
        self.assertTrue(report.passed)
        self.assertTrue(report.keys_consistent)
        self.assertEqual(state.completed_cycles, 100)
        self.assertEqual(state.committed_plans + state.rolled_back_plans, 100)
        self.assertEqual(report.expected_row_count, report.actual_row_count)

    def test_concurrent_run_passes(self):
        config = WorkloadConfig(total_transactions=2000, concurrency=50, seed=2)
        state, report = run_and_verify(config, self.store)
        self.assertTrue(report.passed)
        self.assertTrue(report.keys_consistent)
        self.assertEqual(state.completed_cycles, 2000)
        self.assertEqual(report.duplicate_groups, {})

    def test_all_rollbacks_leave_store_empty(self):
        config = WorkloadConfig(total_transactions=10, rollback_probability=1.0)
        state, report = run_and_verify(config, self.store)
        self.assertEqual(state.committed_total, 0)
        self.assertEqual(report.actual_row_count, 0)
        self.assertTrue(report.passed)

    def test_no_rollbacks_commit_every_row(self):
        config = WorkloadConfig(
            total_transactions=10, insert_count_range=(5, 5), rollback_probability=0.0,
        )
        state, report = run_and_verify(config, self.store)
        self.assertEqual(state.committed_total, 50)
        self.assertEqual(report.actual_row_count, 50)
        self.assertTrue(report.passed)

    def test_fixed_key_duplicate_retries_match_committed_plans(self):
        config = WorkloadConfig(
            total_transactions=300, concurrency=10, fixed_key="dup",
            duplicate_retry_probability=1.0, seed=6,
        )
        state, report = run_and_verify(config, self.store)
        self.assertTrue(report.passed)
        self.assertEqual(state.duplicate_committed_total, state.committed_plans)
        self.assertEqual(report.duplicate_groups, {"dup": state.committed_total})

    def test_fixed_key_reports_single_duplicate_group(self):
        config = WorkloadConfig(
            total_transactions=2000, concurrency=50, fixed_key="dup", seed=3,
        )
        state, report = run_and_verify(config, self.store)
        self.assertTrue(report.passed)
        self.assertEqual(list(report.duplicate_groups), ["dup"])
        self.assertEqual(report.duplicate_groups["dup"], state.committed_total)

    def test_fixed_key_with_unique_titles_allows_one_commit(self):
        store = MemoryStore(unique_titles=True)
        config = WorkloadConfig(
            total_transactions=200, concurrency=8, fixed_key="dup",
            insert_count_range=(1, 1), rollback_probability=0.0,
        )
        state, report = run_and_verify(config, store)
        self.assertEqual(state.committed_plans, 1)
        self.assertEqual(state.failed_total, 199)
        self.assertEqual(state.error_counts["ConstraintViolation"], 199)
        self.assertEqual(report.actual_row_count, 1)
        self.assertTrue(report.passed)

    def test_duplicate_retries_are_expected_rows(self):
        config = WorkloadConfig(
            total_transactions=200, concurrency=4,
            duplicate_retry_probability=1.0, rollback_probability=0.0, seed=4,
        )
        state, report = run_and_verify(config, self.store)
        self.assertEqual(state.duplicate_committed_total, 200)
        self.assertEqual(len(report.duplicate_groups), 200)
        self.assertTrue(report.passed)
        self.assertTrue(report.keys_consistent)

    def test_injected_faults_are_isolated(self):
        store = MemoryStore(insert_failure_rate=0.05, commit_failure_rate=0.1, seed=5)
        config = WorkloadConfig(total_transactions=500, concurrency=8, seed=5)
        state, report = run_and_verify(config, store)
        self.assertGreater(state.failed_total, 0)
        self.assertEqual(state.completed_cycles, 500)
        self.assertTrue(report.passed)
        self.assertEqual(report.failed_total, state.failed_total)

    def test_leaking_store_fails_verification(self):
        store = MemoryStore(leak_rollbacks=True)
        config = WorkloadConfig(
            total_transactions=50, concurrency=2, rollback_probability=1.0,
        )
        state, report = run_and_verify(config, store)
        self.assertEqual(state.committed_total, 0)
        self.assertGreater(report.actual_row_count, 0)
        self.assertFalse(report.passed)
        self.assertGreater(report.unexpected_key_count, 0)

    def test_broken_session_is_replaced(self):
        opened = []
        lock = threading.Lock()

        def factory():
            session = self.store.open_session()
            with lock:
                first = not opened
                opened.append(session)
            if first:
                self.store.break_session(session)
            return session

        config = WorkloadConfig(total_transactions=10, rollback_probability=0.0)
        state = WorkerPool(config, factory, progress=False).run()
        self.assertEqual(len(opened), 2)
        self.assertEqual(state.failed_total, 1)
        self.assertEqual(state.error_counts["StoreUnavailable"], 1)
        self.assertEqual(state.committed_plans, 9)

    def test_session_open_failure_counts_as_failed_cycle(self):
        calls = []

        def factory():
            calls.append(1)
            if len(calls) == 1:
                raise StoreUnavailable("connection refused")
            return self.store.open_session()

        config = WorkloadConfig(total_transactions=5, rollback_probability=0.0)
        state = WorkerPool(config, factory, progress=False).run()
        self.assertEqual(state.failed_total, 1)
        self.assertEqual(state.committed_plans, 4)

    def test_harness_misuse_stops_the_pool(self):
        config = WorkloadConfig(total_transactions=100, concurrency=4, rollback_probability=0.0)
        pool = WorkerPool(config, _FakeSession, progress=False)
        with self.assertRaises(InvalidTransactionState):
            pool.run()
        self.assertTrue(pool.stopping)

    def test_stop_before_run_does_nothing(self):
        config = WorkloadConfig(total_transactions=100, concurrency=4)
        pool = WorkerPool(config, self.store.open_session, progress=False)
        pool.stop()
        state = pool.run()
        self.assertEqual(state.completed_cycles, 0)
        with self.store.open_session() as s:
            self.assertEqual(s.count(), 0)

    def test_stop_mid_run_rolls_back_in_flight(self):
        stop_mid_run(self, self.store)

    def test_keyboard_interrupt_rolls_back_in_flight(self):
        interrupt_mid_run(self, self.store)


# ======================================================================
# SQLite store
# ======================================================================

class TestPoolSqlite(unittest.TestCase):
    def setUp(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        url = f"sqlite:///{os.path.join(self._tmpdir.name, 'todos.db')}"
        self.store = SqlStore(url)
        self.store.reset()

    def tearDown(self):
        self.store.close()
        self._tmpdir.cleanup()

    def test_serial_run_passes(self):
        config = WorkloadConfig(total_transactions=100, concurrency=1, seed=11)
        state, report = run_and_verify(config, self.store)
        self.assertTrue(report.passed)
        self.assertTrue(report.keys_consistent)
        self.assertEqual(state.failed_total, 0)
        self.assertEqual(len(report.sample), min(20, report.actual_row_count))

    def test_concurrent_run_passes(self):
        config = WorkloadConfig(total_transactions=200, concurrency=8, seed=12)
        state, report = run_and_verify(config, self.store)
        self.assertEqual(state.failed_total, 0, state.errors)
        self.assertTrue(report.passed)
        self.assertTrue(report.keys_consistent)

    def test_fixed_key_concurrent_run(self):
        config = WorkloadConfig(
            total_transactions=200, concurrency=8, fixed_key="dup", seed=13,
        )
        state, report = run_and_verify(config, self.store)
        self.assertTrue(report.passed)
        self.assertGreater(state.committed_total, 1)
        self.assertEqual(report.duplicate_groups, {"dup": state.committed_total})

    def test_stop_mid_run_rolls_back_in_flight(self):
        stop_mid_run(self, self.store)

    def test_keyboard_interrupt_rolls_back_in_flight(self):
        interrupt_mid_run(self, self.store)


if __name__ == "__main__":
    unittest.main()
