"""
Cron job scheduling for DevAgent.

This package provides:
- A job store (jobs.json) of named schedule bindings
- An in-process cron engine (5-field expressions, per-job timezones)
- The scheduler that keeps the engine in sync with the store
- Per-job execution locks shared by daemon and manual runs

Scheduled jobs are executed by the daemon:
    devagent daemon

The daemon re-reads the job store every 30 seconds. A per-job file lock
prevents a job from running twice at once, even across processes.
"""

from cron.engine import CronEngine, CronSpecError, parse_cron, resolve_timezone
from cron.jobs import Job, JobRepository, JsonJobRepository, RepositoryError
from cron.locks import AlreadyRunning, ExecutionLock, LockError
from cron.scheduler import Scheduler, WorkflowLoadError, run_job

__all__ = [
    "AlreadyRunning",
    "CronEngine",
    "CronSpecError",
    "ExecutionLock",
    "Job",
    "JobRepository",
    "JsonJobRepository",
    "LockError",
    "RepositoryError",
    "Scheduler",
    "WorkflowLoadError",
    "parse_cron",
    "resolve_timezone",
    "run_job",
]
