"""
Workflow file loading and saving.

Workflow files are YAML documents of the form::

    version: 1
    name: nightly-tests
    repo: ~/code/project
    schedule:
      natural: every weekday at 9am
      cron: "0 9 * * 1-5"
      timezone: America/New_York
    steps:
      - run: git pull --ff-only
      - run: make test
    outputs:
      copy_if_exists:
        - coverage.xml
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml


class WorkflowValidationError(ValueError):
    """Raised when a workflow file is missing required fields or can't be used."""


@dataclass(frozen=True)
class Step:
    """A single shell command inside a workflow."""
    run: str


@dataclass(frozen=True)
class Schedule:
    cron: str
    timezone: str = ""
    natural: str = ""


@dataclass(frozen=True)
class Outputs:
    """Repo-relative files copied into the run directory when present."""
    copy_if_exists: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class Workflow:
    name: str
    repo: str
    schedule: Schedule
    steps: List[Step] = field(default_factory=list)
    outputs: Optional[Outputs] = None
    version: int = 1

    def expand_repo(self) -> str:
        """
        Resolve the repository path.

        Expands ``~``, environment variables and normalises the result.
        Does not check that the path exists.
        """
        repo = (self.repo or "").strip()
        if not repo:
            raise WorkflowValidationError("workflow repo is required")
        repo = os.path.expanduser(repo)
        repo = os.path.expandvars(repo)
        return os.path.normpath(repo)

    def to_dict(self) -> Dict[str, Any]:
        schedule: Dict[str, Any] = {}
        if self.schedule.natural:
            schedule["natural"] = self.schedule.natural
        schedule["cron"] = self.schedule.cron
        if self.schedule.timezone:
            schedule["timezone"] = self.schedule.timezone

        data: Dict[str, Any] = {
            "version": self.version,
            "name": self.name,
            "repo": self.repo,
            "schedule": schedule,
            "steps": [{"run": s.run} for s in self.steps],
        }
        if self.outputs and self.outputs.copy_if_exists:
            data["outputs"] = {"copy_if_exists": list(self.outputs.copy_if_exists)}
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Workflow":
        if not isinstance(data, dict):
            raise WorkflowValidationError("workflow must be a YAML mapping")

        name = str(data.get("name") or "").strip()
        if not name:
            raise WorkflowValidationError("workflow name is required")
        repo = str(data.get("repo") or "").strip()
        if not repo:
            raise WorkflowValidationError("workflow repo is required")

        raw_schedule = data.get("schedule") or {}
        if not isinstance(raw_schedule, dict):
            raise WorkflowValidationError("workflow schedule must be a mapping")
        cron = str(raw_schedule.get("cron") or "").strip()
        if not cron:
            raise WorkflowValidationError("workflow schedule cron is required")
        schedule = Schedule(
            cron=cron,
            timezone=str(raw_schedule.get("timezone") or ""),
            natural=str(raw_schedule.get("natural") or ""),
        )

        steps = []
        for raw in data.get("steps") or []:
            # Accept the bare-string shorthand ("- make test") as well as {run: ...}
            if isinstance(raw, str):
                steps.append(Step(run=raw))
            elif isinstance(raw, dict):
                steps.append(Step(run=str(raw.get("run") or "")))
            else:
                raise WorkflowValidationError(f"invalid step entry: {raw!r}")

        outputs = None
        raw_outputs = data.get("outputs")
        if isinstance(raw_outputs, dict):
            copies = raw_outputs.get("copy_if_exists") or []
            outputs = Outputs(copy_if_exists=[str(c) for c in copies])

        return cls(
            name=name,
            repo=repo,
            schedule=schedule,
            steps=steps,
            outputs=outputs,
            version=int(data.get("version") or 1),
        )


def load_workflow(path: Union[str, Path]) -> Workflow:
    """Read and validate a workflow file."""
    with open(path, "r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise WorkflowValidationError(f"invalid workflow YAML in {path}: {e}") from e
    return Workflow.from_dict(data)


def save_workflow(path: Union[str, Path], workflow: Workflow) -> Path:
    """Write a workflow to disk, creating parent directories as needed."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(workflow.to_dict(), f, sort_keys=False, default_flow_style=False)
    return path
