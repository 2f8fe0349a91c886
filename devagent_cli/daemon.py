"""
Daemon subcommand for devagent CLI.

Runs the scheduler in the foreground until SIGINT/SIGTERM. Runs that are
already executing when the signal arrives are left to finish.
"""

import logging
import signal
import threading
from logging.handlers import RotatingFileHandler

from cron.engine import CronEngine
from cron.jobs import JsonJobRepository
from cron.locks import ExecutionLock
from cron.scheduler import Scheduler
from devagent_cli.config import ensure_devagent_home, load_config
from devagent_constants import get_logs_dir
from runner.redact import RedactingFormatter

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s %(levelname)s %(name)s: %(message)s'


def setup_logging(verbose: bool = False) -> None:
    """Rotating daemon.log plus console output, both redacted."""
    log_dir = get_logs_dir()
    log_dir.mkdir(parents=True, exist_ok=True)
    formatter = RedactingFormatter(LOG_FORMAT)

    file_handler = RotatingFileHandler(
        log_dir / 'daemon.log',
        maxBytes=5 * 1024 * 1024,
        backupCount=3,
    )
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)

    root = logging.getLogger()
    root.addHandler(file_handler)
    root.addHandler(stream_handler)
    root.setLevel(logging.DEBUG if verbose else logging.INFO)


def build_scheduler(config: dict) -> Scheduler:
    daemon_cfg = config.get("daemon", {})
    runner_cfg = config.get("runner", {})
    return Scheduler(
        repository=JsonJobRepository(),
        engine=CronEngine(),
        locks=ExecutionLock(),
        interval=float(daemon_cfg.get("reconcile_interval") or 30),
        step_timeout=float(runner_cfg.get("step_timeout") or 0) or None,
        shell=runner_cfg.get("shell") or "bash",
    )


def start_daemon(verbose: bool = False) -> None:
    """Run the scheduler loop until interrupted."""
    ensure_devagent_home()
    setup_logging(verbose)
    scheduler = build_scheduler(load_config())

    stop_event = threading.Event()

    def _handle_signal(signum, frame):
        logger.info("Received signal %d, shutting down", signum)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, _handle_signal)

    scheduler.run(stop_event)


def daemon_command(args):
    start_daemon(verbose=getattr(args, "verbose", False))
