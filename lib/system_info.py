"""Host, git and driver metadata stamped onto every result file."""

from __future__ import annotations

import os
import platform
import sqlite3
import subprocess
from pathlib import Path

import sqlalchemy

from .schema import HardwareInfo

ROOT = Path(__file__).resolve().parent.parent


def capture_hardware() -> HardwareInfo:
    return HardwareInfo(
        cpu=_cpu_model(),
        cores=os.cpu_count() or 0,
        ram_gb=round(_ram_bytes() / 1024 ** 3, 1),
        os=platform.system().lower(),
        arch=platform.machine(),
    )


def git_state() -> tuple[str | None, str | None, bool | None]:
    """Return ``(short commit, branch, dirty)`` of the checkout, or Nones outside git."""
    commit = _run("git", "rev-parse", "--short", "HEAD")
    if commit is None:
        return None, None, None
    branch = _run("git", "rev-parse", "--abbrev-ref", "HEAD")
    status = _run("git", "status", "--porcelain")
    return commit, branch, None if status is None else bool(status)


def get_python_version() -> str:
    return f"{platform.python_implementation().lower()} {platform.python_version()}"


def get_driver_version() -> str:
    """Versions of the database layers the SQL store runs on."""
    return f"sqlalchemy {sqlalchemy.__version__}, sqlite {sqlite3.sqlite_version}"


# -------------------------------------------------------------------
# Internals
# -------------------------------------------------------------------

def _run(*cmd: str) -> str | None:
    """Run *cmd* in the repo root; stdout on success, None if it fails or is missing."""
    try:
        proc = subprocess.run(cmd, cwd=ROOT, capture_output=True, text=True, timeout=5)
    except (OSError, subprocess.TimeoutExpired):
        return None
    return proc.stdout.strip() if proc.returncode == 0 else None


def _proc_field(path: str, prefix: str) -> str | None:
    try:
        with open(path) as f:
            for line in f:
                if line.startswith(prefix):
                    return line.split(":", 1)[1].strip()
    except OSError:
        pass
    return None


def _cpu_model() -> str:
    if platform.system() == "Darwin":
        model = _run("sysctl", "-n", "machdep.cpu.brand_string")
    else:
        model = _proc_field("/proc/cpuinfo", "model name")
    return model or platform.processor() or "unknown"


def _ram_bytes() -> int:
    if platform.system() == "Darwin":
        raw = _run("sysctl", "-n", "hw.memsize")
        return int(raw) if raw and raw.isdigit() else 0
    # /proc/meminfo reports "MemTotal:  16318480 kB"
    raw = _proc_field("/proc/meminfo", "MemTotal")
    if raw and raw.split()[0].isdigit():
        return int(raw.split()[0]) * 1024
    return 0
