"""Worker pool — runs independent transaction sessions concurrently."""

from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, as_completed

from tqdm import tqdm

from lib.store import InvalidTransactionState, Session, StoreError

from .aggregate import AggregateState
from .transaction import run_plan
from .workloads import WorkloadConfig, generate, worker_rng


class WorkerPool:
    """Spawn one thread per worker; each owns a private session and RNG.

    A worker runs its cycles serially and folds every outcome into the shared
    ``AggregateState``. Store failures are recorded and the worker moves on;
    anything else (``InvalidTransactionState`` included) stops the whole pool
    and is re-raised from ``run`` once every worker has finished.
    """

    def __init__(
        self,
        config: WorkloadConfig,
        store_factory: Callable[[], Session],
        *,
        verbose: bool = False,
        progress: bool = True,
    ) -> None:
        self.config = config
        self.verbose = verbose
        self.progress = progress
        self.interrupted = False
        self._store_factory = store_factory
        self._state = AggregateState()
        self._stop = threading.Event()
        self._bar_lock = threading.Lock()
        self._fatal: BaseException | None = None

    def stop(self) -> None:
        """Ask every worker to roll back its in-flight transaction and exit."""
        self._stop.set()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def run(self) -> AggregateState:
        cycles = self.config.cycles_per_worker()
        bar = tqdm(
            total=self.config.total_transactions,
            desc="Transactions",
            unit="tx",
            disable=not self.progress,
        )
        try:
            with ThreadPoolExecutor(
                max_workers=len(cycles), thread_name_prefix="txstress-worker",
            ) as pool:
                futures = [
                    pool.submit(self._worker, i, n, bar) for i, n in enumerate(cycles)
                ]
                try:
                    for future in as_completed(futures):
                        self._collect(future)
                except KeyboardInterrupt:
                    tqdm.write("Interrupted -- rolling back in-flight transactions...")
                    self.interrupted = True
                    self.stop()
                    for future in futures:
                        self._collect(future)
        finally:
            bar.close()

        if self._fatal is not None:
            raise self._fatal
        return self._state

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _collect(self, future: Future) -> None:
        try:
            future.result()
        except Exception as e:
            self.stop()
            if self._fatal is None:
                self._fatal = e

    def _worker(self, worker_index: int, cycles: int, bar: tqdm) -> None:
        rng = worker_rng(self.config, worker_index)
        session: Session | None = None
        try:
            for cycle_index in range(cycles):
                if self._stop.is_set():
                    break
                plan = generate(self.config, worker_index, cycle_index, rng)

                if session is None:
                    try:
                        session = self._store_factory()
                    except InvalidTransactionState:
                        raise
                    except StoreError as e:
                        self._state.record_failure(type(e).__name__, str(e))
                        self._advance(bar)
                        continue

                outcome = run_plan(
                    plan, session, should_stop=self._stop.is_set, verbose=self.verbose,
                )
                self._state.record(outcome)
                self._advance(bar)

                if outcome.error_type == "StoreUnavailable":
                    # The session is unusable; start the next cycle on a fresh one.
                    self._release(session)
                    session = None
        finally:
            if session is not None:
                self._release(session)

    def _advance(self, bar: tqdm) -> None:
        with self._bar_lock:
            bar.update(1)

    @staticmethod
    def _release(session: Session) -> None:
        try:
            session.close()
        except StoreError as e:
            tqdm.write(f"  warning: failed to close session: {e}")
