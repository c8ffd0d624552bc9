"""Base class for all benchmark suites."""

from __future__ import annotations

import argparse
from abc import ABC, abstractmethod

from lib.schema import BenchmarkResult


class BaseBenchmark(ABC):
    """Abstract base for all benchmark suites.

    Each benchmark registers its own CLI arguments and implements a run
    method that returns results.
    """

    name: str = ""

    @abstractmethod
    def register_args(self, parser: argparse.ArgumentParser) -> None:
        """Add benchmark-specific CLI arguments to *parser*."""

    @abstractmethod
    def run(self, args: argparse.Namespace) -> list[BenchmarkResult]:
        """Execute the benchmark. Returns a list of result entries."""

    def validate(self, args: argparse.Namespace) -> bool:
        """Check prerequisites (arguments, deps). Override to add checks."""
        return True

    def label(self, args: argparse.Namespace) -> str | None:
        """Optional tag used in result file names."""
        return None
