"""Benchmark registry — lazy imports so a broken suite doesn't crash the CLI."""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .base import BaseBenchmark


def get_benchmarks() -> dict[str, type[BaseBenchmark]]:
    """Return available benchmark classes, skipping those that fail to import."""
    registry: dict[str, type[BaseBenchmark]] = {}

    def _try_register(name: str, module: str, cls_name: str) -> None:
        try:
            mod = __import__(module, fromlist=[cls_name])
            registry[name] = getattr(mod, cls_name)
        except ImportError as e:
            print(f"Warning: failed to load {name} benchmark: {e}", file=sys.stderr)

    _try_register("txstress", "benchmarks.txstress.runner", "TxStressBenchmark")

    return registry
