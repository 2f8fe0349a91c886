"""
Workflow step runner for DevAgent.

Runs a workflow's shell steps sequentially (fail-fast), streams their output
through the redaction stage into ``run.log`` and writes ``summary.json``.
"""

from runner.local import StepLaunchError
from runner.runner import run_workflow
from runner.summary import RunSummary, StepSummary, load_summary

__all__ = [
    "RunSummary",
    "StepLaunchError",
    "StepSummary",
    "load_summary",
    "run_workflow",
]
