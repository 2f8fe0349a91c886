"""
Per-job execution locks.

One lock file per job name under ~/.devagent/locks/. A run holds an exclusive,
non-blocking flock on it for its whole duration, so a manual ``devagent run``
and a daemon-triggered run of the same job can never overlap. The kernel drops
the lock if the holding process dies, so a crash never leaves a job wedged.

Contention is not an error: callers get AlreadyRunning and should skip.
"""

import errno
import fcntl
import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Iterator, Optional, Union

from devagent_constants import get_locks_dir

logger = logging.getLogger(__name__)

LOCK_SUFFIX = ".lock"

_NAME_REPLACEMENTS = ((" ", "-"), ("/", "-"), ("\\", "-"), (":", "-"), ("..", "-"))


class AlreadyRunning(Exception):
    """Another execution of this job currently holds its lock."""

    def __init__(self, job_name: str):
        super().__init__(f"job {job_name} already running")
        self.job_name = job_name


class LockError(OSError):
    """The lock file could not be opened or locked for a reason other than contention."""


def lock_file_name(job_name: str) -> str:
    """Filesystem-safe lock file name for a job."""
    name = job_name.lower()
    for old, new in _NAME_REPLACEMENTS:
        name = name.replace(old, new)
    return name + LOCK_SUFFIX


@dataclass
class LockHandle:
    job_name: str
    path: Path
    file: Optional[IO[str]]

    @property
    def released(self) -> bool:
        return self.file is None


class ExecutionLock:
    """Acquire/release exclusive per-job locks in a locks directory."""

    def __init__(self, lock_dir: Union[str, Path, None] = None):
        self._lock_dir = Path(lock_dir) if lock_dir is not None else None

    @property
    def lock_dir(self) -> Path:
        # Resolved lazily so DEVAGENT_HOME changes are honoured
        return self._lock_dir if self._lock_dir is not None else get_locks_dir()

    def path_for(self, job_name: str) -> Path:
        return self.lock_dir / lock_file_name(job_name)

    def acquire(self, job_name: str) -> LockHandle:
        """
        Take the job's lock without blocking.

        Raises:
            AlreadyRunning: another process (or thread) holds the lock.
            LockError: any other failure.
        """
        path = self.path_for(job_name)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            f = open(path, "a+")
        except OSError as e:
            raise LockError(e.errno, f"cannot open lock file {path}: {e.strerror}") from e

        try:
            fcntl.flock(f.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as e:
            f.close()
            if e.errno in (errno.EWOULDBLOCK, errno.EAGAIN, errno.EACCES):
                raise AlreadyRunning(job_name) from None
            raise LockError(e.errno, f"cannot lock {path}: {e.strerror}") from e

        try:
            f.seek(0)
            f.truncate()
            f.write(f"{os.getpid()}\n")
            f.flush()
        except OSError:
            pass
        logger.debug("Acquired lock for job '%s' (%s)", job_name, path)
        return LockHandle(job_name=job_name, path=path, file=f)

    def release(self, handle: Optional[LockHandle]) -> None:
        """Unlock and close. Safe to call more than once."""
        if handle is None or handle.file is None:
            return
        f, handle.file = handle.file, None
        try:
            fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        except OSError as e:
            logger.warning("Failed to unlock %s: %s", handle.path, e)
        finally:
            f.close()
        logger.debug("Released lock for job '%s'", handle.job_name)

    @contextmanager
    def hold(self, job_name: str) -> Iterator[LockHandle]:
        handle = self.acquire(job_name)
        try:
            yield handle
        finally:
            self.release(handle)
