"""
Schedule subcommand for devagent CLI.

Handles: devagent schedule [list|remove NAME]

Scheduled jobs are executed by the daemon (devagent daemon), which picks up
changes to the job store within one reconcile interval.
"""

import sys
from datetime import datetime, timezone

from rich.console import Console
from rich.table import Table

from cron.engine import CronSpecError, resolve_timezone, upcoming_fire_times
from cron.jobs import Job, JsonJobRepository


def _next_run(job: Job, now: datetime) -> str:
    try:
        fire = upcoming_fire_times(job.cron, resolve_timezone(job.timezone), now, 1)[0]
    except CronSpecError:
        return "[red]invalid cron[/]"
    return fire.strftime("%Y-%m-%d %H:%M %Z")


def schedule_list(console: Console = None):
    """List all scheduled jobs."""
    console = console or Console()
    jobs = JsonJobRepository().list_jobs()

    if not jobs:
        console.print("[dim]no jobs scheduled[/]")
        console.print("[dim]Register one with: devagent add .devagent.yml[/]")
        return

    table = Table(title="Scheduled Jobs", title_style="cyan")
    table.add_column("Name", style="yellow")
    table.add_column("Repo")
    table.add_column("Cron")
    table.add_column("Timezone")
    table.add_column("Next run")
    table.add_column("Last run")

    now = datetime.now(timezone.utc)
    for job in jobs:
        last = job.last_run or "never"
        status = job.last_status or "unknown"
        if job.last_status == "success":
            status = f"[green]{status}[/]"
        elif job.last_status == "failed":
            status = f"[red]{status}[/]"
        table.add_row(
            job.name,
            job.repo,
            job.cron,
            job.timezone or "local",
            _next_run(job, now),
            f"{last} ({status})",
        )

    console.print(table)


def schedule_remove(name: str):
    if JsonJobRepository().remove_job(name):
        print("removed", name)
    else:
        print(f"no job named {name}")
        sys.exit(1)


def schedule_command(args):
    """Handle schedule subcommands."""
    subcmd = getattr(args, 'schedule_command', None)

    if subcmd is None or subcmd == "list":
        schedule_list()

    elif subcmd == "remove":
        schedule_remove(args.name)

    else:
        print(f"Unknown schedule command: {subcmd}")
        print("Usage: devagent schedule [list|remove NAME]")
        sys.exit(1)
