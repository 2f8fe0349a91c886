"""Local step execution with cancellation support and streamed output."""

import logging
import os
import shutil
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from runner.redact import RedactingLineWriter

logger = logging.getLogger(__name__)

# Environment variables whose (upper-cased) name contains any of these never
# reach step subprocesses.
SCRUBBED_ENV_MARKERS = ("SECRET", "TOKEN", "KEY")

_POLL_INTERVAL = 0.2
_KILL_GRACE_SECONDS = 2.0
_READ_CHUNK = 65536


class StepLaunchError(RuntimeError):
    """The step's process could not be started at all (as opposed to exiting non-zero)."""


@dataclass
class StepResult:
    exit_code: int
    duration_sec: float
    cancelled: bool = False
    timed_out: bool = False


def sanitized_env(environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """Copy of the environment without secret-looking variables."""
    if environ is None:
        environ = os.environ
    return {
        k: v for k, v in environ.items()
        if not any(marker in k.upper() for marker in SCRUBBED_ENV_MARKERS)
    }


def _terminate(proc: subprocess.Popen) -> None:
    """SIGTERM the step's process group, escalating to SIGKILL."""
    try:
        pgid = os.getpgid(proc.pid)
        os.killpg(pgid, signal.SIGTERM)
        try:
            proc.wait(timeout=_KILL_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            os.killpg(pgid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        proc.kill()
    proc.wait()


def execute_step(
    command: str,
    cwd: str,
    output: RedactingLineWriter,
    *,
    env: Optional[Mapping[str, str]] = None,
    shell: str = "bash",
    timeout: Optional[float] = None,
    cancel_event: Optional[threading.Event] = None,
) -> StepResult:
    """
    Run one shell command and stream its combined stdout/stderr into ``output``.

    The command runs as ``<shell> -lc <command>`` in its own process group so
    a cancellation or timeout can take down everything it spawned. ``output``
    is not closed here; the caller flushes it once the step is over.

    Raises:
        StepLaunchError: the process could not be created.
        OSError: writing the output failed; the step's processes are killed.
    """
    shell_path = shutil.which(shell) or shell
    run_env = dict(env) if env is not None else sanitized_env()

    started = time.monotonic()
    try:
        proc = subprocess.Popen(
            [shell_path, "-lc", command],
            cwd=cwd,
            env=run_env,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            stdin=subprocess.DEVNULL,
            start_new_session=True,
        )
    except OSError as e:
        raise StepLaunchError(f"failed to launch step {command!r}: {e}") from e

    sink_errors = []

    def _drain_stdout():
        try:
            while True:
                chunk = proc.stdout.read1(_READ_CHUNK)
                if not chunk:
                    break
                output.write(chunk)
        except ValueError:
            pass
        except OSError as e:
            sink_errors.append(e)
        finally:
            try:
                proc.stdout.close()
            except OSError:
                pass

    reader = threading.Thread(target=_drain_stdout, daemon=True, name="step-output")
    reader.start()

    deadline = started + timeout if timeout else None
    cancelled = timed_out = False

    while proc.poll() is None:
        if sink_errors:
            logger.error("Step output could not be written, stopping step: %s", command)
            _terminate(proc)
            break
        if cancel_event is not None and cancel_event.is_set():
            logger.info("Cancelling step: %s", command)
            cancelled = True
            _terminate(proc)
            break
        if deadline is not None and time.monotonic() > deadline:
            logger.warning("Step timed out after %ss: %s", timeout, command)
            timed_out = True
            _terminate(proc)
            break
        time.sleep(_POLL_INTERVAL)

    reader.join(timeout=5)
    if sink_errors:
        raise sink_errors[0]
    return StepResult(
        exit_code=proc.returncode,
        duration_sec=time.monotonic() - started,
        cancelled=cancelled,
        timed_out=timed_out,
    )
