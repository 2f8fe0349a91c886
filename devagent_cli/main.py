#!/usr/bin/env python3
"""
DevAgent CLI - Main entry point.

Usage:
    devagent run                   # Run ./.devagent.yml now
    devagent run --file PATH       # Run a specific workflow file
    devagent new --cron C --step S # Write .devagent.yml from flags (--approve to save)
    devagent add PATH              # Register a workflow with the scheduler
    devagent schedule list         # List scheduled jobs
    devagent schedule remove NAME  # Remove a scheduled job
    devagent daemon                # Run the scheduler in the foreground
    devagent config                # Show configuration
    devagent config set KEY VALUE  # Set a configuration value
"""

import argparse
import logging
import signal
import sys
import threading
from datetime import datetime, timezone
from pathlib import Path

from dotenv import load_dotenv

from devagent_cli import __version__
from devagent_cli.config import get_env_path, load_config
from devagent_constants import WORKFLOW_FILE_NAME

logger = logging.getLogger(__name__)


def _workflow_path(args) -> Path:
    path = getattr(args, "file", None)
    if path:
        return Path(path).expanduser().resolve()
    return Path.cwd() / WORKFLOW_FILE_NAME


def cmd_run(args):
    """Run a workflow now, guarded by the job's execution lock."""
    from cron.jobs import JsonJobRepository
    from cron.locks import AlreadyRunning
    from cron.scheduler import run_job
    from workflow.dsl import WorkflowValidationError, load_workflow

    path = _workflow_path(args)
    try:
        workflow = load_workflow(path)
    except (OSError, WorkflowValidationError) as e:
        print(f"load error: {e}")
        sys.exit(1)

    runner_cfg = load_config().get("runner", {})
    cancel_event = threading.Event()

    def _cancel(signum, frame):
        print("\ninterrupt received, stopping current step...")
        cancel_event.set()

    previous = signal.signal(signal.SIGINT, _cancel)
    try:
        summary = run_job(
            workflow.name,
            str(path),
            stdout=None if args.quiet else sys.stdout,
            cancel_event=cancel_event,
            step_timeout=float(runner_cfg.get("step_timeout") or 0) or None,
            shell=runner_cfg.get("shell") or "bash",
        )
    except AlreadyRunning:
        print(f"job {workflow.name} is already running; skipped")
        return
    except Exception as e:
        print(f"run error: {e}")
        sys.exit(1)
    finally:
        signal.signal(signal.SIGINT, previous)

    print(f"run finished with status {summary.status}")

    try:
        JsonJobRepository().update_run_result(workflow.name, summary.status, datetime.now(timezone.utc))
    except Exception as e:
        logger.debug("Could not record run result for %s: %s", workflow.name, e)

    if not summary.succeeded:
        sys.exit(1)


def cmd_add(args):
    """Register (or update) a workflow as a scheduled job."""
    from cron.engine import CronSpecError, parse_cron
    from cron.jobs import Job, JsonJobRepository
    from workflow.dsl import WorkflowValidationError, load_workflow

    path = Path(args.file).expanduser().resolve()
    try:
        workflow = load_workflow(path)
        parse_cron(workflow.schedule.cron)
    except (OSError, WorkflowValidationError, CronSpecError) as e:
        print(f"invalid workflow: {e}")
        sys.exit(1)

    JsonJobRepository().upsert_job(Job(
        name=workflow.name,
        repo=workflow.repo,
        cron=workflow.schedule.cron,
        timezone=workflow.schedule.timezone,
        spec_path=str(path),
        natural=workflow.schedule.natural,
    ))
    print(f"workflow {workflow.name} from {path} scheduled ({workflow.schedule.cron})")


def cmd_new(args):
    """Render a workflow from flags, and with --approve save it and register the job."""
    import yaml

    from cron.engine import CronSpecError, parse_cron
    from cron.jobs import Job, JsonJobRepository
    from workflow.dsl import Outputs, Schedule, Step, Workflow, save_workflow

    steps = [s.strip() for s in (args.step or []) if s and s.strip()]
    if not steps:
        print("no steps resolved")
        sys.exit(1)

    try:
        cron_expr = parse_cron(args.cron)
    except CronSpecError as e:
        print(f"invalid workflow: {e}")
        sys.exit(1)

    copies = [c for c in (args.copy or []) if c]
    workflow = Workflow(
        name=args.name or "devagent-job",
        repo=args.repo or str(Path.cwd()),
        schedule=Schedule(
            cron=cron_expr,
            timezone=args.timezone or "",
            natural=args.natural or "",
        ),
        steps=[Step(run=s) for s in steps],
        outputs=Outputs(copy_if_exists=copies) if copies else None,
    )

    print(yaml.safe_dump(workflow.to_dict(), sort_keys=False, default_flow_style=False))
    if not (args.approve or args.yes):
        print("rerun with --approve to save this workflow")
        return

    path = save_workflow(Path.cwd() / WORKFLOW_FILE_NAME, workflow)
    JsonJobRepository().upsert_job(Job(
        name=workflow.name,
        repo=workflow.repo,
        cron=workflow.schedule.cron,
        timezone=workflow.schedule.timezone,
        spec_path=str(path),
        natural=workflow.schedule.natural,
    ))
    print(f"workflow {workflow.name} saved to {path} and scheduled ({workflow.schedule.cron})")


def cmd_schedule(args):
    from devagent_cli.schedule import schedule_command
    schedule_command(args)


def cmd_daemon(args):
    from devagent_cli.daemon import daemon_command
    daemon_command(args)


def cmd_config(args):
    from devagent_cli.config import config_command
    config_command(args)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="devagent",
        description="DevAgent - scheduled shell workflows for your repositories",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    devagent run                          Run ./.devagent.yml now
    devagent new --cron "0 9 * * 1-5" --step "make test" --approve
    devagent add .devagent.yml            Schedule a workflow
    devagent schedule list                Show scheduled jobs
    devagent daemon                       Run the scheduler

For more help on a command:
    devagent <command> --help
"""
    )
    parser.add_argument(
        "--version", "-V",
        action="store_true",
        help="Show version and exit"
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # =========================================================================
    # run command
    # =========================================================================
    run_parser = subparsers.add_parser("run", help="Run a workflow now")
    run_parser.add_argument("--file", "-f", help=f"Workflow file (default: ./{WORKFLOW_FILE_NAME})")
    run_parser.add_argument("--quiet", "-q", action="store_true", help="Don't echo step output")
    run_parser.set_defaults(func=cmd_run)

    # =========================================================================
    # new command
    # =========================================================================
    new_parser = subparsers.add_parser("new", help="Create a workflow file from flags and schedule it")
    new_parser.add_argument("--name", help="Workflow name (default: devagent-job)")
    new_parser.add_argument("--repo", help="Repository path (default: current directory)")
    new_parser.add_argument("--cron", required=True, help="5-field cron expression")
    new_parser.add_argument("--timezone", help="IANA timezone, \"local\" or \"utc\"")
    new_parser.add_argument("--natural", help="Human-readable description of the schedule")
    new_parser.add_argument("--step", action="append", help="Shell command (repeatable)")
    new_parser.add_argument("--copy", action="append", help="Output file to copy into the run directory (repeatable)")
    new_parser.add_argument("--approve", action="store_true", help="Write .devagent.yml and register the job")
    new_parser.add_argument("--yes", "-y", action="store_true", help="Same as --approve")
    new_parser.set_defaults(func=cmd_new)

    # =========================================================================
    # add command
    # =========================================================================
    add_parser = subparsers.add_parser("add", help="Register a workflow with the scheduler")
    add_parser.add_argument("file", help="Workflow YAML file")
    add_parser.set_defaults(func=cmd_add)

    # =========================================================================
    # schedule command
    # =========================================================================
    schedule_parser = subparsers.add_parser("schedule", help="Manage scheduled jobs")
    schedule_subparsers = schedule_parser.add_subparsers(dest="schedule_command")
    schedule_subparsers.add_parser("list", help="List scheduled jobs")
    schedule_remove = schedule_subparsers.add_parser("remove", help="Remove a scheduled job")
    schedule_remove.add_argument("name", help="Job name")
    schedule_parser.set_defaults(func=cmd_schedule)

    # =========================================================================
    # daemon command
    # =========================================================================
    daemon_parser = subparsers.add_parser("daemon", help="Run the scheduler in the foreground")
    daemon_parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    daemon_parser.set_defaults(func=cmd_daemon)

    # =========================================================================
    # config command
    # =========================================================================
    config_parser = subparsers.add_parser("config", help="View and edit configuration")
    config_subparsers = config_parser.add_subparsers(dest="config_command")
    config_subparsers.add_parser("show", help="Show current configuration")
    config_set = config_subparsers.add_parser("set", help="Set a configuration value")
    config_set.add_argument("key", nargs="?", help="Dotted key, e.g. runner.step_timeout")
    config_set.add_argument("value", nargs="?", help="Value to set")
    config_subparsers.add_parser("path", help="Print config file path")
    config_subparsers.add_parser("env-path", help="Print .env file path")
    config_parser.set_defaults(func=cmd_config)

    return parser


def main(argv=None):
    """Main entry point for devagent CLI."""
    env_path = get_env_path()
    if env_path.exists():
        load_dotenv(dotenv_path=env_path)

    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(f"devagent {__version__}")
        return

    if not getattr(args, "func", None):
        parser.print_help()
        sys.exit(1)

    args.func(args)


if __name__ == "__main__":
    main()
