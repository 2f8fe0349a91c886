"""Tests for runner.summary -- summary.json format and run directories."""

import json
from datetime import datetime, timedelta, timezone

from runner.summary import (
    RunSummary,
    StepSummary,
    copy_outputs,
    create_run_dir,
    format_rfc3339,
    load_summary,
    run_timestamp,
    write_summary,
)

STARTED = datetime(2024, 3, 5, 14, 7, 9, tzinfo=timezone.utc)


class TestTimestamps:
    def test_run_dir_name_format(self):
        assert run_timestamp(STARTED) == "2024-03-05T14-07-09Z"

    def test_run_dir_name_is_utc(self):
        eastern = STARTED.astimezone(timezone(timedelta(hours=-5)))
        assert run_timestamp(eastern) == "2024-03-05T14-07-09Z"

    def test_rfc3339_uses_z_suffix(self):
        assert format_rfc3339(STARTED) == "2024-03-05T14:07:09Z"

    def test_naive_datetime_treated_as_utc(self):
        assert format_rfc3339(STARTED.replace(tzinfo=None)) == "2024-03-05T14:07:09Z"


class TestRunSummary:
    def _summary(self):
        return RunSummary(
            name="nightly",
            repo="/src/app",
            started_at=STARTED,
            ended_at=STARTED + timedelta(seconds=3),
            status="failed",
            steps=[
                StepSummary(cmd="make", exit_code=0, duration_sec=1.5),
                StepSummary(cmd="make test", exit_code=2, duration_sec=1.25),
            ],
        )

    def test_to_dict_layout(self):
        data = self._summary().to_dict()
        assert list(data) == ["name", "repo", "started_at", "ended_at", "status", "steps"]
        assert data["ended_at"] == "2024-03-05T14:07:12Z"
        assert data["steps"][1] == {"cmd": "make test", "exit_code": 2, "duration_sec": 1.25}

    def test_succeeded(self):
        summary = self._summary()
        assert not summary.succeeded
        summary.status = "success"
        assert summary.succeeded

    def test_write_and_load(self, tmp_path):
        path = write_summary(tmp_path / "summary.json", self._summary())
        text = path.read_text()

        assert text.endswith("}\n")
        assert json.loads(text)["name"] == "nightly"
        loaded = load_summary(path)
        assert loaded.started_at == STARTED
        assert [s.exit_code for s in loaded.steps] == [0, 2]

    def test_unfinished_run_has_null_end(self):
        summary = RunSummary(name="x", repo="/r", started_at=STARTED)
        assert summary.to_dict()["ended_at"] is None
        assert RunSummary.from_dict(summary.to_dict()).ended_at is None


class TestRunDirectories:
    def test_created_under_runs_dir(self, repo):
        run_dir = create_run_dir(repo, STARTED)
        assert run_dir == repo / "devagent_runs" / "2024-03-05T14-07-09Z"
        assert run_dir.is_dir()

    def test_same_second_gets_suffix(self, repo):
        first = create_run_dir(repo, STARTED)
        second = create_run_dir(repo, STARTED)
        third = create_run_dir(repo, STARTED)

        assert first.name == "2024-03-05T14-07-09Z"
        assert second.name == "2024-03-05T14-07-09Z-1"
        assert third.name == "2024-03-05T14-07-09Z-2"


class TestCopyOutputs:
    def test_copies_existing_files_only(self, repo):
        run_dir = create_run_dir(repo, STARTED)
        (repo / "a.txt").write_text("a")
        (repo / "dir").mkdir()

        copied = copy_outputs(repo, run_dir, ["a.txt", "b.txt", "dir", "  "])

        assert copied == [run_dir / "a.txt"]
        assert (run_dir / "a.txt").read_text() == "a"
        assert not (run_dir / "dir").exists()
