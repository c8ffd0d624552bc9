"""ResultRecorder — accumulates run results and writes unified JSON reports."""

from __future__ import annotations

import enum
import json
import os
import tempfile
from datetime import date, datetime, timezone
from pathlib import Path

from .schema import BenchmarkReport, BenchmarkResult, RunMetadata
from .system_info import capture_hardware, get_driver_version, get_python_version, git_state


def _json_default(obj: object) -> object:
    """Handle timestamps, enums and sets in JSON serialization."""
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, enum.Enum):
        return obj.value
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


class ResultRecorder:
    """Collects BenchmarkResult entries and writes a BenchmarkReport JSON file.

    Captures hardware and git metadata at construction time so all results
    in a single report share the same snapshot.
    """

    def __init__(self, category: str, label: str | None = None):
        self.category = category
        self.label = label
        now = datetime.now(timezone.utc)
        commit, branch, dirty = git_state()

        self._report = BenchmarkReport(
            metadata=RunMetadata(
                timestamp=now.isoformat(),
                git_commit=commit,
                git_branch=branch,
                git_dirty=dirty,
                python_version=get_python_version(),
                driver_version=get_driver_version(),
                hardware=capture_hardware(),
            ),
        )
        self._timestamp_slug = now.strftime("%Y-%m-%dT%H-%M-%SZ")
        self._commit_slug = commit or "unknown"

    @property
    def results(self) -> list[BenchmarkResult]:
        return self._report.results

    def record(self, result: BenchmarkResult) -> None:
        self._report.results.append(result)

    def save(self, output_dir: str | Path) -> Path:
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        prefix = f"{self.category}-{self.label}" if self.label else self.category
        filename = f"{prefix}-{self._timestamp_slug}-{self._commit_slug}.json"
        path = output_dir / filename

        # Atomic write: serialize to temp file, then rename.
        fd, tmp_path = tempfile.mkstemp(dir=output_dir, suffix=".json.tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(self._report.to_dict(), f, indent=2, default=_json_default)
            os.replace(tmp_path, path)
        except Exception:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

        print(f"\nResults saved to {path}")
        return path
