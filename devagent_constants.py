"""Shared constants and well-known paths for DevAgent.

Import-safe module with no dependencies beyond the standard library, so it can
be used from cron/, runner/ and devagent_cli/ without circular imports.
"""

import os
from pathlib import Path

RUNS_DIR_NAME = "devagent_runs"
WORKFLOW_FILE_NAME = ".devagent.yml"
DEFAULT_RECONCILE_INTERVAL = 30


def get_devagent_home() -> Path:
    """Get the DevAgent home directory (~/.devagent, or $DEVAGENT_HOME)."""
    return Path(os.getenv("DEVAGENT_HOME", Path.home() / ".devagent"))


def get_jobs_path() -> Path:
    return get_devagent_home() / "jobs.json"


def get_locks_dir() -> Path:
    return get_devagent_home() / "locks"


def get_logs_dir() -> Path:
    return get_devagent_home() / "logs"
