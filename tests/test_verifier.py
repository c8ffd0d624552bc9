"""Tests for AggregateState bookkeeping and the verifier's verdicts."""

from __future__ import annotations

import threading
import unittest

from lib.memory_store import MemoryStore
from lib.store import Record

from benchmarks.txstress.aggregate import AggregateState
from benchmarks.txstress.transaction import TransactionOutcome
from benchmarks.txstress.verifier import verify


def committed(*keys: str) -> TransactionOutcome:
    return TransactionOutcome(committed_insert_count=len(keys), committed_keys=tuple(keys))


def seed_rows(store: MemoryStore, *titles: str) -> None:
    with store.open_session() as s:
        tx = s.begin()
        tx.insert_many(Record(title=t) for t in titles)
        tx.commit()


class TestAggregateState(unittest.TestCase):
    def test_record_partitions_outcomes(self):
        state = AggregateState()
        state.record(committed("a", "b"))
        state.record(TransactionOutcome(rolled_back_insert_count=3))
        state.record(TransactionOutcome(rolled_back_insert_count=2, cancelled=True))
        state.record(TransactionOutcome(failed=True, error_type="StoreIOError", error_detail="x"))

        self.assertEqual(state.committed_total, 2)
        self.assertEqual(state.committed_plans, 1)
        self.assertEqual(state.rolled_back_total, 5)
        self.assertEqual(state.rolled_back_plans, 2)
        self.assertEqual(state.cancelled_total, 1)
        self.assertEqual(state.failed_total, 1)
        self.assertEqual(state.completed_cycles, 4)
        self.assertEqual(state.expected_key_counts, {"a": 1, "b": 1})
        self.assertEqual(state.errors, ["StoreIOError: x"])

    def test_error_list_is_capped(self):
        state = AggregateState()
        for i in range(25):
            state.record_failure("StoreUnavailable", f"attempt {i}")
        self.assertEqual(state.failed_total, 25)
        self.assertEqual(state.error_counts["StoreUnavailable"], 25)
        self.assertEqual(len(state.errors), 10)

    def test_concurrent_records_are_not_lost(self):
        state = AggregateState()

        def work():
            for _ in range(1000):
                state.record(committed("k"))

        threads = [threading.Thread(target=work) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(state.committed_total, 8000)
        self.assertEqual(state.expected_key_counts["k"], 8000)

    def test_to_dict(self):
        state = AggregateState()
        state.record(committed("a"))
        d = state.to_dict()
        self.assertEqual(d["committed_total"], 1)
        self.assertEqual(d["error_counts"], {})


class TestVerify(unittest.TestCase):
    def setUp(self):
        self.store = MemoryStore()
        self.session = self.store.open_session()

    def tearDown(self):
        self.store.close()

    def test_matching_state_passes(self):
        state = AggregateState()
        state.record(committed("a", "b", "c"))
        seed_rows(self.store, "a", "b", "c")

        report = verify(state, self.session)
        self.assertTrue(report.passed)
        self.assertTrue(report.keys_consistent)
        self.assertEqual(report.expected_row_count, 3)
        self.assertEqual(report.actual_row_count, 3)
        self.assertEqual(len(report.sample), 3)

    def test_empty_run_passes(self):
        report = verify(AggregateState(), self.session)
        self.assertTrue(report.passed)
        self.assertEqual(report.actual_row_count, 0)
        self.assertEqual(report.sample, ())

    def test_extra_rows_fail(self):
        state = AggregateState()
        state.record(committed("a"))
        seed_rows(self.store, "a", "leaked")

        report = verify(state, self.session)
        self.assertFalse(report.passed)
        self.assertEqual(report.unexpected_key_count, 1)
        self.assertEqual(report.unexpected_keys[0].key, "leaked")
        self.assertEqual(report.unexpected_keys[0].expected, 0)
        self.assertEqual(report.unexpected_keys[0].actual, 1)

    def test_lost_rows_fail(self):
        state = AggregateState()
        state.record(committed("a", "b"))
        seed_rows(self.store, "a")

        report = verify(state, self.session)
        self.assertFalse(report.passed)
        self.assertEqual(report.missing_key_count, 1)
        self.assertEqual(report.missing_keys[0].key, "b")

    def test_same_count_different_keys_passes_but_flags_keys(self):
        state = AggregateState()
        state.record(committed("a", "b"))
        seed_rows(self.store, "a", "z")

        report = verify(state, self.session)
        self.assertTrue(report.passed)
        self.assertFalse(report.keys_consistent)

    def test_duplicate_groups_reported(self):
        state = AggregateState()
        state.record(committed("dup", "dup", "dup", "x"))
        seed_rows(self.store, "dup", "dup", "dup", "x")

        report = verify(state, self.session)
        self.assertTrue(report.passed)
        self.assertEqual(report.duplicate_groups, {"dup": 3})
        self.assertEqual(report.duplicate_row_count, 2)
        self.assertTrue(report.keys_consistent)

    def test_reported_keys_are_capped(self):
        state = AggregateState()
        seed_rows(self.store, *[f"k{i:02d}" for i in range(25)])

        report = verify(state, self.session)
        self.assertEqual(report.unexpected_key_count, 25)
        self.assertEqual(len(report.unexpected_keys), 10)

    def test_verify_is_idempotent(self):
        state = AggregateState()
        state.record(committed("a", "b"))
        seed_rows(self.store, "a", "b")

        first = verify(state, self.session)
        second = verify(state, self.session)
        self.assertEqual(first, second)

    def test_sample_size_zero_skips_sample(self):
        seed_rows(self.store, "a")
        state = AggregateState()
        state.record(committed("a"))
        report = verify(state, self.session, sample_size=0)
        self.assertEqual(report.sample, ())

    def test_to_dict_omits_sample(self):
        state = AggregateState()
        state.record(committed("a"))
        seed_rows(self.store, "a")
        d = verify(state, self.session, elapsed_s=1.23456).to_dict()
        self.assertNotIn("sample", d)
        self.assertEqual(d["elapsed_s"], 1.235)
        self.assertTrue(d["passed"])
        self.assertEqual(d["duplicate_group_count"], 0)


if __name__ == "__main__":
    unittest.main()
