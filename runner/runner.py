"""
Step runner - executes a workflow's steps in order.

Steps run one at a time in the workflow's repository. The first step that
exits non-zero marks the run failed and ends it; later steps never start.
Everything that reaches run.log (command echoes and process output) is
redacted first.
"""

import logging
import os
import threading
from datetime import datetime, timezone
from typing import IO, Optional

from runner.local import execute_step, sanitized_env
from runner.redact import RedactingLineWriter, redact_sensitive_text
from runner.summary import (
    STATUS_FAILED,
    STATUS_SUCCESS,
    RunSummary,
    StepSummary,
    copy_outputs,
    create_run_dir,
    write_summary,
)
from workflow.dsl import Workflow, WorkflowValidationError

logger = logging.getLogger(__name__)

RUN_LOG_NAME = "run.log"
SUMMARY_NAME = "summary.json"


def resolve_repo(workflow: Workflow) -> str:
    """Expanded repository path, which must exist on disk."""
    repo = workflow.expand_repo()
    if not os.path.isdir(repo):
        raise WorkflowValidationError(f"repo path {repo} not accessible")
    return repo


def run_workflow(
    workflow: Workflow,
    *,
    stdout: Optional[IO[str]] = None,
    cancel_event: Optional[threading.Event] = None,
    step_timeout: Optional[float] = None,
    shell: str = "bash",
) -> RunSummary:
    """
    Execute a workflow and record the run.

    Args:
        workflow: The loaded workflow to run.
        stdout: Optional interactive sink; receives the same redacted lines as run.log.
        cancel_event: When set, the in-flight step is terminated and the run ends failed.
        step_timeout: Per-step wall-clock limit in seconds (None/0 = unlimited).
        shell: Shell used as ``<shell> -lc <step>``.

    Returns:
        The RunSummary that was written to summary.json.

    Raises:
        WorkflowValidationError: the repository can't be resolved (nothing is created).
        StepLaunchError: a step's process couldn't be started.
        OSError: the run directory, run.log or summary.json couldn't be written.
    """
    repo = resolve_repo(workflow)
    run_dir = create_run_dir(repo)
    logger.info("Running workflow '%s' in %s", workflow.name, run_dir)

    summary = RunSummary(
        name=workflow.name,
        repo=repo,
        started_at=datetime.now(timezone.utc),
    )
    env = sanitized_env()
    status = STATUS_SUCCESS

    with open(run_dir / RUN_LOG_NAME, "w", encoding="utf-8") as log_file:
        sinks = [log_file] if stdout is None else [log_file, stdout]

        for step in workflow.steps:
            cmd_text = (step.run or "").strip()
            if not cmd_text:
                continue

            shown = redact_sensitive_text(cmd_text)
            echo = f"$ {shown}\n"
            for sink in sinks:
                sink.write(echo)

            output = RedactingLineWriter(sinks)
            try:
                result = execute_step(
                    cmd_text,
                    repo,
                    output,
                    env=env,
                    shell=shell,
                    timeout=step_timeout or None,
                    cancel_event=cancel_event,
                )
            finally:
                output.close()

            if result.cancelled:
                log_file.write("[step cancelled]\n")
            elif result.timed_out:
                log_file.write(f"[step timed out after {step_timeout}s]\n")

            summary.steps.append(StepSummary(
                cmd=shown,
                exit_code=result.exit_code,
                duration_sec=result.duration_sec,
            ))

            if result.exit_code != 0:
                logger.info(
                    "Workflow '%s' step failed (exit=%d): %s",
                    workflow.name, result.exit_code, shown,
                )
                status = STATUS_FAILED
                break

    summary.ended_at = datetime.now(timezone.utc)
    summary.status = status
    write_summary(run_dir / SUMMARY_NAME, summary)

    if workflow.outputs and workflow.outputs.copy_if_exists:
        copy_outputs(repo, run_dir, workflow.outputs.copy_if_exists)

    logger.info("Workflow '%s' finished with %s", workflow.name, status)
    return summary
