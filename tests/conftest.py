"""Shared fixtures: every test gets its own DEVAGENT_HOME and a scratch repo."""

import textwrap

import pytest


@pytest.fixture(autouse=True)
def devagent_home(tmp_path, monkeypatch):
    """Point DEVAGENT_HOME at a temp directory so tests never touch ~/.devagent."""
    home = tmp_path / "devagent_home"
    monkeypatch.setenv("DEVAGENT_HOME", str(home))
    return home


@pytest.fixture
def repo(tmp_path):
    path = tmp_path / "repo"
    path.mkdir()
    return path


@pytest.fixture
def write_workflow(tmp_path):
    """Write a workflow YAML file and return its path."""

    def _write(body: str, name: str = ".devagent.yml"):
        path = tmp_path / name
        path.write_text(textwrap.dedent(body).lstrip(), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def runs_of(repo):
    """List the run directories created under a repo."""

    def _runs():
        base = repo / "devagent_runs"
        if not base.exists():
            return []
        return sorted(p for p in base.iterdir() if p.is_dir())

    return _runs

