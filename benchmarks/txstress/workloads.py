"""Workload configuration, named presets and the transaction plan generator."""

from __future__ import annotations

import enum
import random
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

from lib.store import Record

from .config import (
    DEFAULT_CONCURRENCY,
    DEFAULT_DUPLICATE_BATCH_SIZE,
    DEFAULT_DUPLICATE_RETRY_PROBABILITY,
    DEFAULT_MAX_INSERTS,
    DEFAULT_MIN_INSERTS,
    DEFAULT_ROLLBACK_PROBABILITY,
    DEFAULT_TRANSACTIONS,
)


# ---------------------------------------------------------------------------
# WorkloadConfig — immutable run parameters
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class WorkloadConfig:
    """Parameters of one harness run. Validated on construction."""

    total_transactions: int = DEFAULT_TRANSACTIONS
    concurrency: int = DEFAULT_CONCURRENCY
    insert_count_range: tuple[int, int] = (DEFAULT_MIN_INSERTS, DEFAULT_MAX_INSERTS)
    rollback_probability: float = DEFAULT_ROLLBACK_PROBABILITY
    duplicate_retry_probability: float = DEFAULT_DUPLICATE_RETRY_PROBABILITY
    duplicate_batch_size: int = DEFAULT_DUPLICATE_BATCH_SIZE
    fixed_key: str | None = None
    seed: int | None = None

    def __post_init__(self) -> None:
        if self.total_transactions < 1:
            raise ValueError(f"total_transactions must be >= 1, got {self.total_transactions}")
        if self.concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {self.concurrency}")
        lo, hi = self.insert_count_range
        if lo < 1 or hi < lo:
            raise ValueError(f"insert_count_range must satisfy 1 <= min <= max, got {lo}..{hi}")
        for name in ("rollback_probability", "duplicate_retry_probability"):
            p = getattr(self, name)
            if not 0.0 <= p <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {p}")
        if self.duplicate_batch_size < 1:
            raise ValueError(f"duplicate_batch_size must be >= 1, got {self.duplicate_batch_size}")
        if self.fixed_key is not None and not self.fixed_key:
            raise ValueError("fixed_key must be a non-empty string")

    @property
    def worker_count(self) -> int:
        """Workers actually spawned; never more than there are transactions."""
        return min(self.concurrency, self.total_transactions)

    def cycles_per_worker(self) -> list[int]:
        """Split the transactions across workers, remainder to the first ones."""
        workers = self.worker_count
        base, extra = divmod(self.total_transactions, workers)
        return [base + (1 if i < extra else 0) for i in range(workers)]


# ---------------------------------------------------------------------------
# Presets — the harness's standard scenarios
# ---------------------------------------------------------------------------

@dataclass
class WorkloadPreset:
    """A named starting point for a run; CLI flags override its fields."""

    name: str
    description: str
    config: WorkloadConfig = field(default_factory=WorkloadConfig)

    def build(self, **overrides) -> WorkloadConfig:
        """Return the preset's config with every non-None override applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self.config, **changes)


PRESETS: dict[str, WorkloadPreset] = {
    "serial": WorkloadPreset(
        name="serial",
        description="One session, 100 transactions, 50% rollback",
        config=WorkloadConfig(total_transactions=100, concurrency=1),
    ),
    "concurrent": WorkloadPreset(
        name="concurrent",
        description="50 sessions, 2000 transactions, 50% rollback",
        config=WorkloadConfig(total_transactions=2000, concurrency=50),
    ),
    "retry": WorkloadPreset(
        name="retry",
        description="8 sessions, 500 transactions, 30% duplicate retries inside the transaction",
        config=WorkloadConfig(
            total_transactions=500,
            concurrency=8,
            duplicate_retry_probability=0.3,
        ),
    ),
    "fixed-key": WorkloadPreset(
        name="fixed-key",
        description="50 sessions, 2000 transactions, every row shares the key 'dup'",
        config=WorkloadConfig(
            total_transactions=2000,
            concurrency=50,
            fixed_key="dup",
        ),
    ),
}


# ---------------------------------------------------------------------------
# TransactionPlan — one unit of work
# ---------------------------------------------------------------------------

class Directive(enum.Enum):
    COMMIT = "commit"
    ROLLBACK = "rollback"


@dataclass(frozen=True)
class TransactionPlan:
    worker_index: int
    cycle_index: int
    records: tuple[Record, ...]
    directive: Directive
    duplicate_records: tuple[Record, ...] = ()

    @property
    def label(self) -> str:
        return f"W{self.worker_index}-Tx{self.cycle_index}"

    @property
    def has_duplicate_retry(self) -> bool:
        return bool(self.duplicate_records)

    @property
    def insert_count(self) -> int:
        return len(self.records) + len(self.duplicate_records)

    def keys(self) -> list[str]:
        """Identity values of every row the plan inserts, in insert order."""
        return [r.title for r in self.records] + [r.title for r in self.duplicate_records]


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------

def worker_rng(config: WorkloadConfig, worker_index: int) -> random.Random:
    """Return the private random source for one worker.

    Seeded runs derive each worker's stream from ``config.seed`` so that a
    worker's plans are reproducible regardless of thread scheduling.
    """
    if config.seed is None:
        return random.Random()
    return random.Random(config.seed * 1_000_003 + worker_index)


def format_key(worker_index: int, cycle_index: int, item_index: int) -> str:
    """Return the synthetic identity for one generated row."""
    return f"W{worker_index}-Tx{cycle_index}-Item{item_index}"


def generate(
    config: WorkloadConfig,
    worker_index: int,
    cycle_index: int,
    rng: random.Random,
) -> TransactionPlan:
    """Draw one transaction's worth of work from *rng*."""
    lo, hi = config.insert_count_range
    batch = rng.randint(lo, hi)
    now = datetime.now(timezone.utc)

    records = tuple(
        Record(
            title=config.fixed_key or format_key(worker_index, cycle_index, j),
            is_done=rng.random() < 0.5,
            created_at=now,
        )
        for j in range(batch)
    )

    directive = (
        Directive.ROLLBACK if rng.random() < config.rollback_probability else Directive.COMMIT
    )

    duplicates: tuple[Record, ...] = ()
    if rng.random() < config.duplicate_retry_probability:
        # A client re-sending writes it already issued: same identities, new rows.
        size = min(config.duplicate_batch_size, batch)
        duplicates = tuple(
            Record(title=r.title, is_done=r.is_done, created_at=now) for r in records[:size]
        )

    return TransactionPlan(
        worker_index=worker_index,
        cycle_index=cycle_index,
        records=records,
        directive=directive,
        duplicate_records=duplicates,
    )
