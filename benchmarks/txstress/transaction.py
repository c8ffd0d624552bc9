"""Transaction runner — executes one plan on one session and reports the outcome.

Store failures never escape ``run_plan``: they are rolled back and returned as
a failed ``TransactionOutcome``. The one exception is
``InvalidTransactionState``, which means the harness itself misused a handle
and is re-raised.
"""

from __future__ import annotations

import contextlib
from collections.abc import Callable, Iterator
from dataclasses import dataclass

from tqdm import tqdm

from lib.store import InvalidTransactionState, Session, StoreError, Transaction

from .workloads import Directive, TransactionPlan


@dataclass(frozen=True)
class TransactionOutcome:
    committed_insert_count: int = 0
    rolled_back_insert_count: int = 0
    failed: bool = False
    error_detail: str | None = None
    error_type: str | None = None
    duplicate_insert_count: int = 0
    committed_keys: tuple[str, ...] = ()
    cancelled: bool = False

    @classmethod
    def failure(cls, exc: StoreError) -> TransactionOutcome:
        return cls(failed=True, error_detail=str(exc), error_type=type(exc).__name__)

    @property
    def status(self) -> str:
        if self.failed:
            return "failed"
        if self.cancelled:
            return "cancelled"
        return "committed" if self.committed_insert_count else "rolled back"


@contextlib.contextmanager
def transaction_scope(session: Session) -> Iterator[Transaction]:
    """Open a transaction; roll it back on exit unless it was closed inside."""
    tx = session.begin()
    try:
        yield tx
    finally:
        if tx.active:
            tx.rollback()


def run_plan(
    plan: TransactionPlan,
    session: Session,
    should_stop: Callable[[], bool] | None = None,
    verbose: bool = False,
) -> TransactionOutcome:
    """Execute *plan* inside one transaction on *session*."""
    try:
        with transaction_scope(session) as tx:
            tx.insert_many(plan.records)
            if plan.duplicate_records:
                tx.insert_many(plan.duplicate_records)

            if should_stop is not None and should_stop():
                tx.rollback()
                outcome = TransactionOutcome(
                    rolled_back_insert_count=plan.insert_count,
                    cancelled=True,
                )
            elif plan.directive is Directive.ROLLBACK:
                tx.rollback()
                outcome = TransactionOutcome(rolled_back_insert_count=plan.insert_count)
            else:
                tx.commit()
                outcome = TransactionOutcome(
                    committed_insert_count=plan.insert_count,
                    duplicate_insert_count=len(plan.duplicate_records),
                    committed_keys=tuple(plan.keys()),
                )
    except InvalidTransactionState:
        raise
    except StoreError as e:
        outcome = TransactionOutcome.failure(e)
        if verbose:
            tqdm.write(f"[{plan.label}] {outcome.error_type}: {e}, rolled back")
        return outcome

    if verbose:
        _announce(plan, outcome)
    return outcome


def _announce(plan: TransactionPlan, outcome: TransactionOutcome) -> None:
    retry = f" (+{len(plan.duplicate_records)} retried)" if plan.duplicate_records else ""
    if outcome.cancelled:
        verb = "Cancelled, rolled back"
    elif outcome.committed_insert_count:
        verb = "Committed"
    else:
        verb = "Rolled back"
    tqdm.write(f"[{plan.label}] {verb} {len(plan.records)} inserts{retry}")
