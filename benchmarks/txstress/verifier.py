"""Verifier — compares the expected outcome against what the store shows."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field

from lib.store import Record, Session

from .aggregate import AggregateState
from .config import DEFAULT_SAMPLE_SIZE, MAX_REPORTED_KEYS


@dataclass(frozen=True)
class KeyMismatch:
    key: str
    expected: int
    actual: int


@dataclass(frozen=True)
class VerificationReport:
    expected_row_count: int
    actual_row_count: int
    passed: bool
    elapsed_s: float = 0.0
    duplicate_groups: dict[str, int] = field(default_factory=dict)
    missing_keys: tuple[KeyMismatch, ...] = ()
    missing_key_count: int = 0
    unexpected_keys: tuple[KeyMismatch, ...] = ()
    unexpected_key_count: int = 0
    failed_total: int = 0
    rolled_back_total: int = 0
    sample: tuple[Record, ...] = ()

    @property
    def keys_consistent(self) -> bool:
        """True when every identity group holds exactly its committed rows."""
        return self.missing_key_count == 0 and self.unexpected_key_count == 0

    @property
    def duplicate_row_count(self) -> int:
        """Rows beyond the first in every duplicate group."""
        return sum(n - 1 for n in self.duplicate_groups.values())

    def to_dict(self) -> dict:
        return {
            "expected_row_count": self.expected_row_count,
            "actual_row_count": self.actual_row_count,
            "passed": self.passed,
            "keys_consistent": self.keys_consistent,
            "elapsed_s": round(self.elapsed_s, 3),
            "duplicate_group_count": len(self.duplicate_groups),
            "duplicate_row_count": self.duplicate_row_count,
            "duplicate_groups": dict(list(self.duplicate_groups.items())[:MAX_REPORTED_KEYS]),
            "missing_key_count": self.missing_key_count,
            "missing_keys": [asdict(m) for m in self.missing_keys],
            "unexpected_key_count": self.unexpected_key_count,
            "unexpected_keys": [asdict(m) for m in self.unexpected_keys],
            "failed_total": self.failed_total,
            "rolled_back_total": self.rolled_back_total,
        }


def verify(
    state: AggregateState,
    session: Session,
    elapsed_s: float = 0.0,
    sample_size: int = DEFAULT_SAMPLE_SIZE,
) -> VerificationReport:
    """Query *session* and compare it with the totals in *state*.

    The verdict is the row-count comparison. Duplicate groups and per-key
    mismatches are diagnostics reported alongside it.
    """
    actual = session.count()
    groups = session.group_count("title")
    expected = state.committed_total

    duplicates = {k: n for k, n in sorted(groups.items()) if n > 1}

    missing: list[KeyMismatch] = []
    unexpected: list[KeyMismatch] = []
    for key in sorted(set(groups) | set(state.expected_key_counts)):
        want = state.expected_key_counts.get(key, 0)
        got = groups.get(key, 0)
        if got < want:
            missing.append(KeyMismatch(key, want, got))
        elif got > want:
            unexpected.append(KeyMismatch(key, want, got))

    sample = tuple(session.sample(sample_size)) if sample_size > 0 else ()

    return VerificationReport(
        expected_row_count=expected,
        actual_row_count=actual,
        passed=actual == expected,
        elapsed_s=elapsed_s,
        duplicate_groups=duplicates,
        missing_keys=tuple(missing[:MAX_REPORTED_KEYS]),
        missing_key_count=len(missing),
        unexpected_keys=tuple(unexpected[:MAX_REPORTED_KEYS]),
        unexpected_key_count=len(unexpected),
        failed_total=state.failed_total,
        rolled_back_total=state.rolled_back_total,
        sample=sample,
    )
