"""Store adapter contract — the narrow capability surface the harness drives.

A store hands out independent sessions. Each session runs at most one
transaction at a time; the transaction handle accepts inserts and is closed
exactly once by ``commit()`` or ``rollback()``. Reads (``count``,
``group_count``, ``sample``) run against committed state only.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone


# ======================================================================
# Errors
# ======================================================================

class StoreError(Exception):
    """Base class for every failure raised by a store adapter."""


class StoreUnavailable(StoreError):
    """The session cannot be used (broken connection, closed session)."""


class ConstraintViolation(StoreError):
    """An insert violated a store constraint (e.g. a unique key)."""


class StoreIOError(StoreError):
    """The store failed to read or write."""


class InvalidTransactionState(StoreError):
    """A transaction handle was used after it was closed, or a session was
    asked to open a second concurrent transaction."""


# ======================================================================
# Record
# ======================================================================

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Record:
    """A synthetic row. ``title`` is the identity field."""

    title: str
    is_done: bool = False
    created_at: datetime = field(default_factory=_utcnow)


KEY_FIELDS = ("title", "is_done")


# ======================================================================
# Contract
# ======================================================================

class Transaction(ABC):
    """An open transaction on one session."""

    @property
    @abstractmethod
    def active(self) -> bool:
        """True until ``commit()`` or ``rollback()`` has closed the handle."""

    @abstractmethod
    def insert(self, record: Record) -> None:
        """Insert one record. Raises ConstraintViolation or StoreIOError."""

    def insert_many(self, records: Iterable[Record]) -> None:
        for record in records:
            self.insert(record)

    @abstractmethod
    def commit(self) -> None:
        """Make every insert visible. InvalidTransactionState if closed."""

    @abstractmethod
    def rollback(self) -> None:
        """Discard every insert. InvalidTransactionState if closed."""


class Session(ABC):
    """An exclusively owned channel to the store."""

    @abstractmethod
    def begin(self) -> Transaction:
        """Open a transaction. StoreUnavailable if the session is broken."""

    @abstractmethod
    def count(self, predicate: Mapping[str, object] | None = None) -> int:
        """Count committed rows, optionally filtered by field equality."""

    @abstractmethod
    def group_count(self, key_field: str) -> dict[object, int]:
        """Return ``{key value: row count}`` over committed rows."""

    @abstractmethod
    def sample(self, limit: int = 20) -> list[Record]:
        """Return the first *limit* committed rows in insertion order."""

    @abstractmethod
    def close(self) -> None:
        """Release the session. Rolls back an open transaction."""

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class Store(ABC):
    """Factory for sessions against one logical table."""

    name: str = ""

    @abstractmethod
    def open_session(self) -> Session:
        """Return a new independent session."""

    def close_session(self, session: Session) -> None:
        session.close()

    @abstractmethod
    def reset(self) -> None:
        """Drop every row and recreate the table."""

    def describe(self) -> str:
        """Short human-readable identifier for reports."""
        return self.name

    def close(self) -> None:
        """Release store-wide resources."""

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


def check_key_field(key_field: str) -> None:
    if key_field not in KEY_FIELDS:
        raise ValueError(f"Unknown key field: {key_field!r} (expected one of {KEY_FIELDS})")
