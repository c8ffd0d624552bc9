"""MemoryStore — in-process transactional store.

Committed rows live in one list guarded by a lock; a transaction buffers its
inserts privately and appends them in a single locked step on commit, so a
concurrent reader never observes a partial transaction.

Fault injection (``insert_failure_rate``, ``commit_failure_rate``) and the
deliberately defective ``leak_rollbacks`` mode exist so the harness's failure
and mismatch paths can be exercised without a real database.
"""

from __future__ import annotations

import random
import threading
from collections import Counter
from collections.abc import Mapping

from .store import (
    ConstraintViolation,
    InvalidTransactionState,
    Record,
    Session,
    Store,
    StoreIOError,
    StoreUnavailable,
    Transaction,
    check_key_field,
)


class MemoryStore(Store):
    name = "memory"

    def __init__(
        self,
        *,
        unique_titles: bool = False,
        insert_failure_rate: float = 0.0,
        commit_failure_rate: float = 0.0,
        leak_rollbacks: bool = False,
        seed: int | None = None,
    ) -> None:
        self.unique_titles = unique_titles
        self.insert_failure_rate = insert_failure_rate
        self.commit_failure_rate = commit_failure_rate
        self.leak_rollbacks = leak_rollbacks
        self._rows: list[Record] = []
        self._titles: Counter[str] = Counter()
        self._lock = threading.Lock()
        self._rng = random.Random(seed)
        self._sessions: list[MemorySession] = []

    # ------------------------------------------------------------------
    # Store API
    # ------------------------------------------------------------------

    def open_session(self) -> MemorySession:
        session = MemorySession(self)
        with self._lock:
            self._sessions.append(session)
        return session

    def reset(self) -> None:
        with self._lock:
            self._rows.clear()
            self._titles.clear()

    def describe(self) -> str:
        flags = []
        if self.unique_titles:
            flags.append("unique")
        if self.insert_failure_rate or self.commit_failure_rate:
            flags.append(f"faults={self.insert_failure_rate:g}/{self.commit_failure_rate:g}")
        if self.leak_rollbacks:
            flags.append("leak-rollbacks")
        return f"memory[{','.join(flags)}]" if flags else "memory"

    def close(self) -> None:
        with self._lock:
            sessions = list(self._sessions)
        for session in sessions:
            session.close()

    def break_session(self, session: MemorySession) -> None:
        """Mark *session* as broken; its next ``begin()`` raises StoreUnavailable."""
        session._broken = True

    # ------------------------------------------------------------------
    # Internals (called by sessions and transactions)
    # ------------------------------------------------------------------

    def _roll(self, rate: float) -> bool:
        if rate <= 0.0:
            return False
        with self._lock:
            return self._rng.random() < rate

    def _check_unique(self, pending: list[Record], record: Record) -> None:
        if not self.unique_titles:
            return
        with self._lock:
            taken = self._titles[record.title] > 0
        if taken or any(p.title == record.title for p in pending):
            raise ConstraintViolation(f"UNIQUE constraint failed: todos.title ({record.title!r})")

    def _apply(self, pending: list[Record], *, enforce: bool = True) -> None:
        with self._lock:
            if enforce and self.unique_titles:
                for record in pending:
                    if self._titles[record.title] > 0:
                        raise ConstraintViolation(
                            f"UNIQUE constraint failed: todos.title ({record.title!r})"
                        )
            self._rows.extend(pending)
            self._titles.update(r.title for r in pending)

    def _snapshot(self) -> list[Record]:
        with self._lock:
            return list(self._rows)

    def _forget(self, session: MemorySession) -> None:
        with self._lock:
            if session in self._sessions:
                self._sessions.remove(session)


class MemorySession(Session):
    def __init__(self, store: MemoryStore) -> None:
        self._store = store
        self._current: MemoryTransaction | None = None
        self._broken = False
        self._closed = False

    def begin(self) -> MemoryTransaction:
        if self._closed or self._broken:
            raise StoreUnavailable("Session is closed" if self._closed else "Session is broken")
        if self._current is not None and self._current.active:
            raise InvalidTransactionState("Session already has an open transaction")
        self._current = MemoryTransaction(self._store)
        return self._current

    def count(self, predicate: Mapping[str, object] | None = None) -> int:
        self._check_usable()
        rows = self._store._snapshot()
        if not predicate:
            return len(rows)
        for key in predicate:
            check_key_field(key)
        return sum(
            1 for r in rows
            if all(getattr(r, k) == v for k, v in predicate.items())
        )

    def group_count(self, key_field: str) -> dict[object, int]:
        self._check_usable()
        check_key_field(key_field)
        counts: Counter = Counter(getattr(r, key_field) for r in self._store._snapshot())
        return dict(counts)

    def sample(self, limit: int = 20) -> list[Record]:
        self._check_usable()
        return self._store._snapshot()[:limit]

    def close(self) -> None:
        if self._closed:
            return
        if self._current is not None and self._current.active:
            self._current.rollback()
        self._closed = True
        self._store._forget(self)

    def _check_usable(self) -> None:
        if self._closed or self._broken:
            raise StoreUnavailable("Session is closed" if self._closed else "Session is broken")


class MemoryTransaction(Transaction):
    def __init__(self, store: MemoryStore) -> None:
        self._store = store
        self._pending: list[Record] = []
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def insert(self, record: Record) -> None:
        self._check_open()
        if self._store._roll(self._store.insert_failure_rate):
            raise StoreIOError(f"Injected insert failure ({record.title})")
        self._store._check_unique(self._pending, record)
        self._pending.append(record)

    def commit(self) -> None:
        self._check_open()
        if self._store._roll(self._store.commit_failure_rate):
            raise StoreIOError("Injected commit failure")
        self._store._apply(self._pending)
        self._pending = []
        self._active = False

    def rollback(self) -> None:
        self._check_open()
        if self._store.leak_rollbacks and self._pending:
            self._store._apply(self._pending, enforce=False)
        self._pending = []
        self._active = False

    def _check_open(self) -> None:
        if not self._active:
            raise InvalidTransactionState("Transaction is already closed")
