"""
Job storage.

Jobs are stored in ~/.devagent/jobs.json. Each job binds a name to a cron
schedule, a timezone and the workflow file to run. The daemon only reads jobs
and writes back the outcome of runs (last_status / last_run).

Writes go through a temp file + os.replace, and every read-modify-write holds
an flock on jobs.json.lock so the daemon and CLI invocations never clobber
each other's updates.
"""

import fcntl
import json
import logging
import os
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Protocol, Union

from devagent_constants import get_jobs_path

logger = logging.getLogger(__name__)


class RepositoryError(RuntimeError):
    """The job store could not be read or written."""


@dataclass
class Job:
    name: str
    repo: str
    cron: str
    timezone: str
    spec_path: str
    natural: str = ""
    last_status: Optional[str] = None
    last_run: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "repo": self.repo,
            "cron": self.cron,
            "natural": self.natural,
            "timezone": self.timezone,
            "spec_path": self.spec_path,
            "last_status": self.last_status,
            "last_run": self.last_run,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        return cls(
            name=data["name"],
            repo=data.get("repo", ""),
            cron=data.get("cron", ""),
            timezone=data.get("timezone") or "",
            spec_path=data.get("spec_path", ""),
            natural=data.get("natural") or "",
            last_status=data.get("last_status"),
            last_run=data.get("last_run"),
            updated_at=data.get("updated_at"),
        )


class JobRepository(Protocol):
    """What the scheduler needs from a job store."""

    def list_scheduled(self) -> List[Job]:
        ...

    def update_run_result(self, name: str, status: str, timestamp: datetime) -> None:
        ...


def _utc_iso(dt: Optional[datetime] = None) -> str:
    dt = dt or datetime.now(timezone.utc)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class JsonJobRepository:
    """Job repository backed by a single JSON file."""

    def __init__(self, path: Union[str, Path, None] = None):
        self.path = Path(path) if path is not None else get_jobs_path()

    # -------------------------------------------------------------------------
    # File access
    # -------------------------------------------------------------------------

    @contextmanager
    def _locked(self) -> Iterator[None]:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        lock_path = self.path.with_name(self.path.name + ".lock")
        with open(lock_path, "a+") as lock_fd:
            fcntl.flock(lock_fd.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock_fd.fileno(), fcntl.LOCK_UN)

    def _load(self) -> List[Job]:
        if not self.path.exists():
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            raise RepositoryError(f"cannot read job store {self.path}: {e}") from e
        return [Job.from_dict(j) for j in data.get("jobs", [])]

    def _save(self, jobs: List[Job]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), suffix='.tmp', prefix='.jobs_')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump({"jobs": [j.to_dict() for j in jobs], "updated_at": _utc_iso()}, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    # -------------------------------------------------------------------------
    # Job CRUD
    # -------------------------------------------------------------------------

    def list_jobs(self) -> List[Job]:
        """All jobs, ordered by name."""
        with self._locked():
            jobs = self._load()
        return sorted(jobs, key=lambda j: j.name)

    def list_scheduled(self) -> List[Job]:
        """Jobs the daemon should have registered (no ordering guarantee)."""
        with self._locked():
            return self._load()

    def get_job(self, name: str) -> Optional[Job]:
        for job in self.list_scheduled():
            if job.name == name:
                return job
        return None

    def upsert_job(self, job: Job) -> Job:
        """Insert a job or replace its definition. Run results are kept."""
        with self._locked():
            jobs = self._load()
            job.updated_at = _utc_iso()
            for i, existing in enumerate(jobs):
                if existing.name == job.name:
                    job.last_status = existing.last_status
                    job.last_run = existing.last_run
                    jobs[i] = job
                    break
            else:
                jobs.append(job)
            self._save(jobs)
        return job

    def remove_job(self, name: str) -> bool:
        with self._locked():
            jobs = self._load()
            remaining = [j for j in jobs if j.name != name]
            if len(remaining) == len(jobs):
                return False
            self._save(remaining)
        return True

    def update_run_result(self, name: str, status: str, timestamp: datetime) -> None:
        """Record the outcome of a run. Unknown job names are ignored."""
        with self._locked():
            jobs = self._load()
            for job in jobs:
                if job.name == name:
                    job.last_status = status
                    job.last_run = _utc_iso(timestamp)
                    job.updated_at = _utc_iso()
                    self._save(jobs)
                    return
        logger.debug("update_run_result: no job named '%s'", name)
