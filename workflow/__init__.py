"""
Workflow definitions for DevAgent jobs.

A workflow is the YAML file (by convention ``.devagent.yml``) that tells the
runner which repository to work in, when the job should fire, and which shell
steps to execute.
"""

from workflow.dsl import (
    Outputs,
    Schedule,
    Step,
    Workflow,
    WorkflowValidationError,
    load_workflow,
    save_workflow,
)

__all__ = [
    "Outputs",
    "Schedule",
    "Step",
    "Workflow",
    "WorkflowValidationError",
    "load_workflow",
    "save_workflow",
]
