"""
Run summaries and run-directory artifacts.

Each run leaves a directory ``<repo>/devagent_runs/<UTC timestamp>/`` holding
``run.log`` (redacted transcript), ``summary.json`` (the canonical record of
the run) and any copied output files.
"""

import json
import os
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from devagent_constants import RUNS_DIR_NAME

RUN_DIR_TIME_FORMAT = "%Y-%m-%dT%H-%M-%SZ"

STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"


def run_timestamp(now: Optional[datetime] = None) -> str:
    """Run directory name for ``now`` (UTC, one-second granularity)."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).strftime(RUN_DIR_TIME_FORMAT)


def format_rfc3339(dt: datetime) -> str:
    """Format an instant as RFC3339 in UTC with a trailing ``Z``."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_rfc3339(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@dataclass
class StepSummary:
    cmd: str
    exit_code: int
    duration_sec: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cmd": self.cmd,
            "exit_code": self.exit_code,
            "duration_sec": self.duration_sec,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StepSummary":
        return cls(
            cmd=data["cmd"],
            exit_code=int(data["exit_code"]),
            duration_sec=float(data["duration_sec"]),
        )


@dataclass
class RunSummary:
    """The persisted record of one workflow run."""
    name: str
    repo: str
    started_at: datetime
    ended_at: Optional[datetime] = None
    status: str = STATUS_SUCCESS
    steps: List[StepSummary] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == STATUS_SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        # Key order is part of the on-disk format
        return {
            "name": self.name,
            "repo": self.repo,
            "started_at": format_rfc3339(self.started_at),
            "ended_at": format_rfc3339(self.ended_at) if self.ended_at else None,
            "status": self.status,
            "steps": [s.to_dict() for s in self.steps],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunSummary":
        ended = data.get("ended_at")
        return cls(
            name=data["name"],
            repo=data["repo"],
            started_at=parse_rfc3339(data["started_at"]),
            ended_at=parse_rfc3339(ended) if ended else None,
            status=data["status"],
            steps=[StepSummary.from_dict(s) for s in data.get("steps", [])],
        )


def create_run_dir(repo: Union[str, Path], now: Optional[datetime] = None) -> Path:
    """
    Create a fresh run directory under ``<repo>/devagent_runs``.

    Two runs started in the same second get ``-1``, ``-2``, ... suffixes so
    neither overwrites the other's artifacts.
    """
    base = Path(repo) / RUNS_DIR_NAME
    base.mkdir(parents=True, exist_ok=True)
    stamp = run_timestamp(now)
    candidate = base / stamp
    suffix = 0
    while True:
        try:
            candidate.mkdir()
            return candidate
        except FileExistsError:
            suffix += 1
            candidate = base / f"{stamp}-{suffix}"


def write_summary(path: Union[str, Path], summary: RunSummary) -> Path:
    """Write summary.json. Errors propagate: an unwritten summary means an unrecorded run."""
    path = Path(path)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(summary.to_dict(), f, indent=2)
        f.write("\n")
    return path


def load_summary(path: Union[str, Path]) -> RunSummary:
    with open(path, "r", encoding="utf-8") as f:
        return RunSummary.from_dict(json.load(f))


def copy_outputs(repo: Union[str, Path], run_dir: Path, candidates: List[str]) -> List[Path]:
    """Best-effort copy of repo-relative files into the run directory.

    Missing files and copy errors are ignored. Returns the files copied.
    """
    copied = []
    for candidate in candidates:
        candidate = (candidate or "").strip()
        if not candidate:
            continue
        src = Path(repo) / candidate
        if not src.is_file():
            continue
        dst = run_dir / os.path.basename(candidate)
        try:
            shutil.copyfile(src, dst)
        except OSError:
            continue
        copied.append(dst)
    return copied
