"""
Configuration management for DevAgent.

Config files are stored in ~/.devagent/ (or $DEVAGENT_HOME):
- ~/.devagent/config.yaml  - Daemon and runner settings
- ~/.devagent/.env         - Environment loaded at CLI start

This module provides:
- devagent config          - Show current configuration
- devagent config set      - Set a specific value
- devagent config path     - Print the config file path
"""

import copy
import logging
import sys
from pathlib import Path
from typing import Any, Dict

import yaml
from rich.console import Console

from devagent_constants import (
    DEFAULT_RECONCILE_INTERVAL,
    get_devagent_home,
    get_jobs_path,
    get_locks_dir,
    get_logs_dir,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Config paths
# =============================================================================

def get_config_path() -> Path:
    """Get the main config file path."""
    return get_devagent_home() / "config.yaml"


def get_env_path() -> Path:
    return get_devagent_home() / ".env"


def ensure_devagent_home():
    """Ensure ~/.devagent directory structure exists."""
    home = get_devagent_home()
    home.mkdir(parents=True, exist_ok=True)
    get_locks_dir().mkdir(parents=True, exist_ok=True)
    get_logs_dir().mkdir(parents=True, exist_ok=True)


# =============================================================================
# Config loading/saving
# =============================================================================

DEFAULT_CONFIG = {
    "daemon": {
        "reconcile_interval": DEFAULT_RECONCILE_INTERVAL,
    },
    "runner": {
        "shell": "bash",
        "step_timeout": 0,  # seconds, 0 = no limit
    },
}


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge *override* into *base*, preserving nested defaults."""
    result = base.copy()
    for key, value in override.items():
        if (
            key in result
            and isinstance(result[key], dict)
            and isinstance(value, dict)
        ):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config() -> Dict[str, Any]:
    """Load configuration from ~/.devagent/config.yaml, merged over the defaults."""
    config_path = get_config_path()
    config = copy.deepcopy(DEFAULT_CONFIG)

    if config_path.exists():
        try:
            with open(config_path) as f:
                user_config = yaml.safe_load(f) or {}
            config = _deep_merge(config, user_config)
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Failed to load config %s: %s", config_path, e)

    return config


def save_config(config: Dict[str, Any]):
    ensure_devagent_home()
    with open(get_config_path(), 'w') as f:
        yaml.dump(config, f, default_flow_style=False, sort_keys=False)


def _coerce(value: str) -> Any:
    if value.lower() in ('true', 'yes', 'on'):
        return True
    if value.lower() in ('false', 'no', 'off'):
        return False
    if value.isdigit():
        return int(value)
    if value.replace('.', '', 1).isdigit():
        return float(value)
    return value


def set_config_value(key: str, value: str) -> Any:
    """Set a (dotted) configuration key in config.yaml and return the stored value."""
    # Read the raw user config (not merged with defaults) so defaults
    # aren't written back to the file
    config_path = get_config_path()
    user_config: Dict[str, Any] = {}
    if config_path.exists():
        with open(config_path) as f:
            user_config = yaml.safe_load(f) or {}

    parts = key.split('.')
    current = user_config
    for part in parts[:-1]:
        if part not in current or not isinstance(current.get(part), dict):
            current[part] = {}
        current = current[part]

    coerced = _coerce(value)
    current[parts[-1]] = coerced
    save_config(user_config)
    return coerced


def show_config(console: Console = None):
    """Display current configuration."""
    console = console or Console()
    config = load_config()

    console.print()
    console.print("[bold cyan]◆ Paths[/]")
    console.print(f"  Home:         {get_devagent_home()}")
    console.print(f"  Config:       {get_config_path()}")
    console.print(f"  Jobs:         {get_jobs_path()}")
    console.print(f"  Locks:        {get_locks_dir()}")
    console.print(f"  Logs:         {get_logs_dir()}")

    daemon = config.get("daemon", {})
    console.print()
    console.print("[bold cyan]◆ Daemon[/]")
    console.print(f"  Reconcile:    every {daemon.get('reconcile_interval')}s")

    runner = config.get("runner", {})
    timeout = runner.get("step_timeout") or 0
    console.print()
    console.print("[bold cyan]◆ Runner[/]")
    console.print(f"  Shell:        {runner.get('shell')}")
    console.print(f"  Step timeout: {f'{timeout}s' if timeout else 'none'}")
    console.print()


def config_command(args):
    """Handle config subcommands."""
    subcmd = getattr(args, 'config_command', None)

    if subcmd is None or subcmd == "show":
        show_config()

    elif subcmd == "set":
        key = getattr(args, 'key', None)
        value = getattr(args, 'value', None)
        if not key or value is None:
            print("Usage: devagent config set KEY VALUE")
            print()
            print("Examples:")
            print("  devagent config set daemon.reconcile_interval 60")
            print("  devagent config set runner.step_timeout 900")
            sys.exit(1)
        stored = set_config_value(key, value)
        print(f"✓ Set {key} = {stored} in {get_config_path()}")

    elif subcmd == "path":
        print(get_config_path())

    elif subcmd == "env-path":
        print(get_env_path())

    else:
        print(f"Unknown config command: {subcmd}")
        sys.exit(1)
