"""Unified result schema for harness runs."""

from __future__ import annotations

from dataclasses import dataclass, field, asdict


@dataclass
class HardwareInfo:
    cpu: str = ""
    cores: int = 0
    ram_gb: float = 0.0
    os: str = ""
    arch: str = ""


@dataclass
class RunMetadata:
    timestamp: str = ""
    git_commit: str | None = None
    git_branch: str | None = None
    git_dirty: bool | None = None
    python_version: str = ""
    driver_version: str = ""
    hardware: HardwareInfo = field(default_factory=HardwareInfo)


@dataclass
class BenchmarkResult:
    benchmark: str          # e.g. "txstress/concurrent/sql-c50"
    category: str           # e.g. "txstress"
    parameters: dict = field(default_factory=dict)
    metrics: dict = field(default_factory=dict)
    details: dict | None = None

    @property
    def passed(self) -> bool | None:
        return self.metrics.get("passed")


@dataclass
class BenchmarkReport:
    schema_version: int = 1
    metadata: RunMetadata = field(default_factory=RunMetadata)
    results: list[BenchmarkResult] = field(default_factory=list)

    def to_dict(self) -> dict:
        d = asdict(self)
        # Strip None details to keep JSON clean
        for r in d["results"]:
            if r.get("details") is None:
                del r["details"]
        # Strip None metadata fields
        meta = d["metadata"]
        for key in list(meta):
            if meta[key] is None:
                del meta[key]
        return d
