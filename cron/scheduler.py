"""
Job scheduler - keeps the cron engine in sync with the job store.

Every ``interval`` seconds (30 by default) the scheduler compares the jobs in
the repository with the entries it has registered: new jobs get a cron entry,
removed jobs lose theirs. A job that is already registered is left alone even
if its cron or timezone changed in the store; remove and re-add it (or restart
the daemon) to pick up the new trigger.

When an entry fires, run_job() takes the job's execution lock, loads the
workflow and runs it. If another run of the same job holds the lock the
trigger is skipped.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Callable, Dict, IO, List, Optional

from cron.engine import CronEngine, CronSpecError, resolve_timezone
from cron.jobs import Job, JobRepository
from cron.locks import AlreadyRunning, ExecutionLock, LockError
from devagent_constants import DEFAULT_RECONCILE_INTERVAL
from runner.runner import run_workflow
from runner.summary import STATUS_FAILED, RunSummary
from workflow.dsl import WorkflowValidationError, load_workflow

logger = logging.getLogger(__name__)


class WorkflowLoadError(RuntimeError):
    """A job's workflow file could not be read or failed validation."""

    def __init__(self, spec_path: str, error: Exception):
        super().__init__(f"load workflow {spec_path}: {error}")
        self.spec_path = spec_path
        self.error = error


def run_job(
    name: str,
    spec_path: str,
    *,
    locks: Optional[ExecutionLock] = None,
    stdout: Optional[IO[str]] = None,
    cancel_event: Optional[threading.Event] = None,
    step_timeout: Optional[float] = None,
    shell: str = "bash",
) -> RunSummary:
    """
    Execute a job's workflow while holding the job's execution lock.

    Used by both daemon triggers and manual runs, so the two can never run the
    same job concurrently.

    Raises:
        AlreadyRunning: another execution holds the lock; nothing was done.
        LockError: the lock could not be taken for another reason.
        WorkflowLoadError: the workflow file could not be loaded; nothing was run.
        WorkflowValidationError, StepLaunchError, OSError: from running.
    """
    locks = locks or ExecutionLock()
    handle = locks.acquire(name)
    try:
        try:
            workflow = load_workflow(spec_path)
        except (OSError, WorkflowValidationError) as e:
            raise WorkflowLoadError(spec_path, e) from e
        return run_workflow(
            workflow,
            stdout=stdout,
            cancel_event=cancel_event,
            step_timeout=step_timeout,
            shell=shell,
        )
    finally:
        locks.release(handle)


@dataclass
class ScheduledEntry:
    """A registered job: engine handle plus the trigger it was registered with."""
    handle: str
    cron: str
    timezone: str
    trigger_change_reported: bool = False


class Scheduler:
    """
    Reconciles the job repository with a CronEngine.

    The job-name -> ScheduledEntry map is only touched by reconcile(), which
    runs on the scheduler loop thread.
    """

    def __init__(
        self,
        repository: JobRepository,
        engine: Optional[CronEngine] = None,
        locks: Optional[ExecutionLock] = None,
        interval: float = DEFAULT_RECONCILE_INTERVAL,
        step_timeout: Optional[float] = None,
        shell: str = "bash",
        job_runner: Optional[Callable[..., RunSummary]] = None,
    ):
        self.repository = repository
        self.engine = engine or CronEngine()
        self.locks = locks or ExecutionLock()
        self.interval = interval
        self.step_timeout = step_timeout
        self.shell = shell
        self._run_job = job_runner or run_job
        self._entries: Dict[str, ScheduledEntry] = {}
        self._stop = threading.Event()

    # =========================================================================
    # Reconciliation
    # =========================================================================

    def reconcile(self) -> None:
        """
        One reconciliation pass.

        Raises whatever the repository raises when it can't be listed; per-job
        scheduling errors are logged and don't affect other jobs.
        """
        jobs = self.repository.list_scheduled()

        stale = set(self._entries)
        for job in jobs:
            stale.discard(job.name)
            entry = self._entries.get(job.name)
            if entry is not None:
                self._check_trigger_change(job, entry)
                continue
            try:
                self._schedule_job(job)
            except CronSpecError as e:
                logger.error("schedule job %s: %s", job.name, e)
            except Exception as e:
                logger.error("schedule job %s: unexpected error: %s", job.name, e)

        for name in stale:
            entry = self._entries.pop(name)
            self.engine.unregister(entry.handle)
            logger.info("unscheduled %s", name)

    def _schedule_job(self, job: Job) -> None:
        tz = resolve_timezone(job.timezone)
        handle = self.engine.register(
            job.cron,
            tz,
            lambda: self._execute(job, tz),
            name=job.name,
        )
        self._entries[job.name] = ScheduledEntry(
            handle=handle,
            cron=job.cron,
            timezone=job.timezone,
        )
        logger.info("scheduled %s (%s)", job.name, job.cron)

    def _check_trigger_change(self, job: Job, entry: ScheduledEntry) -> None:
        if entry.trigger_change_reported:
            return
        if job.cron.split() == entry.cron.split() and (job.timezone or "") == (entry.timezone or ""):
            return
        entry.trigger_change_reported = True
        logger.warning(
            "job %s changed trigger (%s %s -> %s %s); still using the registered one. "
            "Remove and re-add the job or restart the daemon to apply it.",
            job.name, entry.cron, entry.timezone or "local", job.cron, job.timezone or "local",
        )

    def scheduled_names(self) -> List[str]:
        return sorted(self._entries)

    # =========================================================================
    # Execution
    # =========================================================================

    def _execute(self, job: Job, tz: tzinfo) -> None:
        try:
            summary = self._run_job(
                job.name,
                job.spec_path,
                locks=self.locks,
                step_timeout=self.step_timeout,
                shell=self.shell,
            )
        except AlreadyRunning:
            logger.info("job %s already running", job.name)
            return
        except LockError as e:
            logger.error("lock error for %s: %s", job.name, e)
            return
        except WorkflowLoadError as e:
            logger.error("%s", e)
            return
        except Exception as e:
            logger.error("run %s error: %s", job.name, e)
            self._record(job.name, STATUS_FAILED, tz)
            return

        self._record(job.name, summary.status, tz)
        logger.info("job %s finished with %s", job.name, summary.status)

    def _record(self, name: str, status: str, tz: tzinfo) -> None:
        try:
            self.repository.update_run_result(name, status, datetime.now(tz))
        except Exception as e:
            logger.warning("failed to record result for %s: %s", name, e)

    # =========================================================================
    # Loop
    # =========================================================================

    def run(self, stop_event: Optional[threading.Event] = None) -> None:
        """
        Run the reconciliation loop until stop() is called or ``stop_event`` is set.

        Returns once the engine has stopped and every run it had already
        started has finished and recorded its outcome.
        """
        if stop_event is not None:
            self._stop = stop_event
        logger.info("daemon starting")
        self.engine.start()
        try:
            while True:
                try:
                    self.reconcile()
                except Exception as e:
                    logger.error("reload error: %s", e)
                if self._stop.wait(timeout=self.interval):
                    break
        finally:
            self.engine.stop()
            active = self.engine.active_callbacks()
            if active:
                logger.info("waiting for %d running job(s) to finish", active)
            self.engine.join_running()
            logger.info("daemon stopping")

    def stop(self) -> None:
        self._stop.set()
