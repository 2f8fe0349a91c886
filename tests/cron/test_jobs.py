"""Tests for cron.jobs -- the JSON job repository."""

import json
from datetime import datetime, timedelta, timezone

import pytest

from cron.jobs import Job, JsonJobRepository, RepositoryError


def _job(name="nightly", cron="0 9 * * 1-5", tz="America/New_York"):
    return Job(
        name=name,
        repo="~/code/app",
        cron=cron,
        timezone=tz,
        spec_path=f"/specs/{name}.yml",
    )


@pytest.fixture
def repository(tmp_path):
    return JsonJobRepository(tmp_path / "jobs.json")


class TestJobRepository:
    def test_empty_store(self, repository):
        assert repository.list_jobs() == []
        assert repository.list_scheduled() == []
        assert repository.get_job("nightly") is None

    def test_upsert_and_list(self, repository):
        repository.upsert_job(_job("zeta"))
        repository.upsert_job(_job("alpha"))

        assert [j.name for j in repository.list_jobs()] == ["alpha", "zeta"]
        assert {j.name for j in repository.list_scheduled()} == {"alpha", "zeta"}
        assert repository.get_job("alpha").spec_path == "/specs/alpha.yml"

    def test_upsert_replaces_definition(self, repository):
        repository.upsert_job(_job())
        repository.upsert_job(_job(cron="*/5 * * * *"))

        jobs = repository.list_jobs()
        assert len(jobs) == 1
        assert jobs[0].cron == "*/5 * * * *"

    def test_upsert_preserves_run_result(self, repository):
        repository.upsert_job(_job())
        repository.update_run_result("nightly", "failed", datetime(2024, 1, 1, tzinfo=timezone.utc))
        repository.upsert_job(_job(cron="0 8 * * *"))

        job = repository.get_job("nightly")
        assert job.cron == "0 8 * * *"
        assert job.last_status == "failed"
        assert job.last_run == "2024-01-01T00:00:00Z"

    def test_remove(self, repository):
        repository.upsert_job(_job("a"))
        repository.upsert_job(_job("b"))

        assert repository.remove_job("a") is True
        assert repository.remove_job("a") is False
        assert [j.name for j in repository.list_jobs()] == ["b"]

    def test_update_run_result_stores_utc(self, repository):
        repository.upsert_job(_job())
        eastern = timezone(timedelta(hours=-5))
        repository.update_run_result("nightly", "success", datetime(2024, 1, 1, 9, tzinfo=eastern))

        job = repository.get_job("nightly")
        assert job.last_status == "success"
        assert job.last_run == "2024-01-01T14:00:00Z"

    def test_update_run_result_unknown_job_is_ignored(self, repository):
        repository.upsert_job(_job())
        repository.update_run_result("ghost", "success", datetime.now(timezone.utc))
        assert [j.name for j in repository.list_jobs()] == ["nightly"]

    def test_file_format(self, repository):
        repository.upsert_job(_job())
        data = json.loads(repository.path.read_text())

        assert data["jobs"][0]["name"] == "nightly"
        assert data["jobs"][0]["timezone"] == "America/New_York"
        assert "updated_at" in data
        assert not list(repository.path.parent.glob(".jobs_*.tmp"))

    def test_corrupt_store_raises(self, repository):
        repository.path.write_text("{not json")
        with pytest.raises(RepositoryError):
            repository.list_scheduled()

    def test_defaults_to_home(self, devagent_home):
        JsonJobRepository().upsert_job(_job())
        assert (devagent_home / "jobs.json").exists()


class TestJobRecord:
    def test_missing_optional_fields(self):
        job = Job.from_dict({"name": "x", "cron": "* * * * *", "spec_path": "/x.yml"})
        assert job.timezone == ""
        assert job.last_status is None
        assert job.to_dict()["name"] == "x"
