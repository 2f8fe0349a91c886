"""Tests for runner.runner -- sequential step execution and run artifacts."""

import errno
import io
import json
import threading
import time

import pytest

from runner.local import StepLaunchError
from runner.redact import REDACTED
from runner.runner import RUN_LOG_NAME, SUMMARY_NAME, run_workflow
from runner.summary import STATUS_FAILED, STATUS_SUCCESS, load_summary
from workflow.dsl import Outputs, Schedule, Step, Workflow, WorkflowValidationError


def _workflow(repo, *commands, outputs=None, name="wf"):
    return Workflow(
        name=name,
        repo=str(repo),
        schedule=Schedule(cron="0 9 * * *"),
        steps=[Step(run=c) for c in commands],
        outputs=outputs,
    )


class TestSequencing:
    def test_all_steps_succeed(self, repo, runs_of):
        summary = run_workflow(_workflow(repo, "echo one", "echo two"))

        assert summary.status == STATUS_SUCCESS
        assert summary.succeeded
        assert [s.cmd for s in summary.steps] == ["echo one", "echo two"]
        assert all(s.exit_code == 0 for s in summary.steps)
        assert summary.ended_at >= summary.started_at
        assert len(runs_of()) == 1

    def test_stops_at_first_failure(self, repo):
        marker = repo / "third-ran"
        summary = run_workflow(_workflow(repo, "true", "exit 2", f"touch {marker}"))

        assert summary.status == STATUS_FAILED
        assert [s.cmd for s in summary.steps] == ["true", "exit 2"]
        assert summary.steps[1].exit_code == 2
        assert not marker.exists()

    def test_blank_steps_are_skipped(self, repo):
        summary = run_workflow(_workflow(repo, "echo a", "   ", "", "echo b"))
        assert [s.cmd for s in summary.steps] == ["echo a", "echo b"]

    def test_no_steps_is_success(self, repo):
        summary = run_workflow(_workflow(repo))
        assert summary.status == STATUS_SUCCESS
        assert summary.steps == []

    def test_steps_run_in_repo(self, repo):
        run_workflow(_workflow(repo, "pwd > where.txt"))
        assert (repo / "where.txt").read_text().strip() == str(repo)

    def test_durations_are_non_negative(self, repo):
        summary = run_workflow(_workflow(repo, "true"))
        assert summary.steps[0].duration_sec >= 0


class TestArtifacts:
    def test_summary_json_matches_result(self, repo, runs_of):
        summary = run_workflow(_workflow(repo, "echo hi", "exit 1"))
        run_dir = runs_of()[0]

        on_disk = load_summary(run_dir / SUMMARY_NAME)
        assert on_disk.to_dict() == summary.to_dict()

        data = json.loads((run_dir / SUMMARY_NAME).read_text())
        assert list(data) == ["name", "repo", "started_at", "ended_at", "status", "steps"]
        assert data["status"] == "failed"
        assert data["started_at"].endswith("Z")

    def test_run_log_has_echoes_and_output(self, repo, runs_of):
        run_workflow(_workflow(repo, "echo hello", "echo oops 1>&2"))
        log = (runs_of()[0] / RUN_LOG_NAME).read_text()

        assert "$ echo hello\nhello\n" in log
        assert "$ echo oops 1>&2\noops\n" in log

    def test_trailing_partial_line_is_flushed(self, repo, runs_of):
        run_workflow(_workflow(repo, "printf 'no newline'"))
        log = (runs_of()[0] / RUN_LOG_NAME).read_text()
        assert log.endswith("no newline\n")

    def test_outputs_copied_when_present(self, repo, runs_of):
        (repo / "sub").mkdir()
        outputs = Outputs(copy_if_exists=["report.txt", "missing.txt", "sub/out.json", ""])
        run_workflow(_workflow(
            repo,
            "echo done > report.txt",
            "echo '{}' > sub/out.json",
            outputs=outputs,
        ))
        run_dir = runs_of()[0]

        assert (run_dir / "report.txt").read_text() == "done\n"
        assert (run_dir / "out.json").exists()
        assert not (run_dir / "missing.txt").exists()

    def test_outputs_copied_after_failure(self, repo, runs_of):
        outputs = Outputs(copy_if_exists=["partial.txt"])
        run_workflow(_workflow(repo, "echo x > partial.txt", "false", outputs=outputs))
        assert (runs_of()[0] / "partial.txt").exists()

    def test_each_run_gets_its_own_directory(self, repo, runs_of):
        wf = _workflow(repo, "true")
        run_workflow(wf)
        run_workflow(wf)
        assert len(runs_of()) == 2


class TestRedaction:
    def test_secret_in_output_never_reaches_log(self, repo, runs_of):
        summary = run_workflow(_workflow(repo, "echo token=ABC123"))
        log = (runs_of()[0] / RUN_LOG_NAME).read_text()

        assert "ABC123" not in log
        assert f"$ echo token={REDACTED}\n" in log
        assert f"\ntoken={REDACTED}\n" in log
        assert summary.steps[0].cmd == f"echo token={REDACTED}"

    def test_secret_never_reaches_summary(self, repo, runs_of):
        run_workflow(_workflow(repo, "export API_KEY=sk-live-1 && true"))
        assert "sk-live-1" not in (runs_of()[0] / SUMMARY_NAME).read_text()

    def test_interactive_sink_is_redacted_too(self, repo):
        terminal = io.StringIO()
        run_workflow(_workflow(repo, "echo secret=hunter2"), stdout=terminal)

        shown = terminal.getvalue()
        assert "hunter2" not in shown
        assert f"$ echo secret={REDACTED}\n" in shown
        assert f"secret={REDACTED}\n" in shown

    def test_secret_env_vars_are_not_inherited(self, repo, monkeypatch):
        monkeypatch.setenv("DEVAGENT_TEST_TOKEN", "leak-me")
        monkeypatch.setenv("DEVAGENT_TEST_PLAIN", "visible")
        run_workflow(_workflow(repo, "env > env.txt"))

        env_dump = (repo / "env.txt").read_text()
        assert "DEVAGENT_TEST_TOKEN" not in env_dump
        assert "leak-me" not in env_dump
        assert "DEVAGENT_TEST_PLAIN=visible" in env_dump


class TestRepoResolution:
    def test_missing_repo_creates_nothing(self, tmp_path):
        missing = tmp_path / "nope"
        with pytest.raises(WorkflowValidationError, match="not accessible"):
            run_workflow(_workflow(missing, "true"))
        assert not missing.exists()

    def test_tilde_is_expanded(self, tmp_path, monkeypatch, repo, runs_of):
        monkeypatch.setenv("HOME", str(tmp_path))
        summary = run_workflow(_workflow("~/repo", "true"))
        assert summary.repo == str(repo)
        assert len(runs_of()) == 1

    def test_env_vars_are_expanded(self, monkeypatch, repo, runs_of):
        monkeypatch.setenv("DEVAGENT_TEST_REPO", str(repo))
        summary = run_workflow(_workflow("$DEVAGENT_TEST_REPO", "true"))
        assert summary.repo == str(repo)


class TestInterruption:
    def test_cancel_event_stops_run(self, repo):
        cancel = threading.Event()
        timer = threading.Timer(0.5, cancel.set)
        timer.start()
        try:
            summary = run_workflow(_workflow(repo, "sleep 30", "echo never"), cancel_event=cancel)
        finally:
            timer.cancel()

        assert summary.status == STATUS_FAILED
        assert len(summary.steps) == 1
        assert summary.steps[0].exit_code != 0
        assert summary.steps[0].duration_sec < 10

    def test_step_timeout(self, repo, runs_of):
        summary = run_workflow(_workflow(repo, "sleep 30"), step_timeout=0.5)

        assert summary.status == STATUS_FAILED
        assert summary.steps[0].duration_sec < 10
        assert "[step timed out" in (runs_of()[0] / RUN_LOG_NAME).read_text()

    def test_launch_failure_raises(self, repo, runs_of):
        with pytest.raises(StepLaunchError):
            run_workflow(_workflow(repo, "true"), shell="/nonexistent/shell")
        assert not (runs_of()[0] / SUMMARY_NAME).exists()


class FullDiskSink(io.StringIO):
    """Terminal sink that accepts command echoes but fails on step output."""

    def write(self, text):
        if not text.startswith("$ "):
            raise OSError(errno.ENOSPC, "No space left on device")
        return super().write(text)


class TestSinkFailures:
    def test_output_write_error_propagates(self, repo, runs_of):
        marker = repo / "second-ran"
        with pytest.raises(OSError) as exc_info:
            run_workflow(
                _workflow(repo, "echo hello", f"touch {marker}"),
                stdout=FullDiskSink(),
            )

        assert exc_info.value.errno == errno.ENOSPC
        assert not marker.exists()
        assert not (runs_of()[0] / SUMMARY_NAME).exists()

    def test_chatty_step_does_not_hang(self, repo):
        started = time.monotonic()
        with pytest.raises(OSError):
            run_workflow(_workflow(repo, "yes"), stdout=FullDiskSink())
        assert time.monotonic() - started < 10
