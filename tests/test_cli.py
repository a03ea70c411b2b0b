"""Tests for the cloudjobs command line."""

import json

import pytest

from cloudjobs import cli
from cloudjobs.orchestrator.entities import JobStatus
from cloudjobs.orchestrator.job_store import JobStore


@pytest.fixture
def cli_settings(settings, monkeypatch):
    monkeypatch.setattr(cli, "get_settings", lambda: settings)
    monkeypatch.setattr(cli, "setup_logging", lambda *args, **kwargs: None)
    return settings


class TestParser:

    def test_submit_requires_payload(self):
        with pytest.raises(SystemExit):
            cli.create_parser().parse_args(["submit", "task.execute"])

    def test_payload_options_are_exclusive(self):
        with pytest.raises(SystemExit):
            cli.create_parser().parse_args(
                ["submit", "task.execute", "--payload", "{}", "--payload-file", "p.json"]
            )

    def test_serve_defaults(self):
        args = cli.create_parser().parse_args(["serve"])

        assert args.host == "127.0.0.1"
        assert args.port == 8000

    def test_no_command_prints_help(self, capsys):
        assert cli.main([]) == cli.EXIT_SUCCESS
        assert "usage" in capsys.readouterr().out


class TestSubmit:

    def test_submit_prints_job(self, cli_settings, capsys):
        code = cli.main(["submit", "task.execute", "--payload", '{"prompt": "Update the changelog"}'])

        assert code == cli.EXIT_SUCCESS
        output = json.loads(capsys.readouterr().out)
        job = JobStore(cli_settings.jobs_db_path).get_job(output["job_id"])
        assert job.status == JobStatus.PENDING
        assert output["dedup_key"] == f"task.execute-{job.job_id}"

    def test_submit_from_file(self, cli_settings, tmp_path, capsys):
        payload_file = tmp_path / "payload.json"
        payload_file.write_text(json.dumps({"repo": "acme/widgets", "issue": 3, "title": "Bug"}))

        code = cli.main(["submit", "github.issue.fix", "--payload-file", str(payload_file)])

        assert code == cli.EXIT_SUCCESS

    def test_invalid_json(self, cli_settings, capsys):
        code = cli.main(["submit", "task.execute", "--payload", "{oops"])

        assert code == cli.EXIT_INVALID_INPUT
        assert "invalid payload" in capsys.readouterr().err

    def test_unknown_kind(self, cli_settings, capsys):
        code = cli.main(["submit", "deploy.rollback", "--payload", "{}"])

        assert code == cli.EXIT_INVALID_INPUT
        assert "Known kinds: github.issue.fix, task.execute" in capsys.readouterr().err

    def test_schema_violation_lists_fields(self, cli_settings, capsys):
        code = cli.main(["submit", "github.issue.fix", "--payload", '{"repo": "acme/widgets"}'])

        err = capsys.readouterr().err
        assert code == cli.EXIT_INVALID_INPUT
        assert "issue:" in err
        assert "title:" in err


class TestStatus:

    def test_queue_status(self, cli_settings, capsys):
        cli.main(["submit", "task.execute", "--payload", '{"prompt": "hi"}'])
        capsys.readouterr()

        code = cli.main(["status"])

        output = json.loads(capsys.readouterr().out)
        assert code == cli.EXIT_SUCCESS
        assert output["queue"]["waiting"] == 1
        assert output["health"] == {"database": True, "queue": True}

    def test_job_status(self, cli_settings, capsys):
        cli.main(["submit", "task.execute", "--payload", '{"prompt": "hi"}'])
        job_id = json.loads(capsys.readouterr().out)["job_id"]

        code = cli.main(["status", "--job-id", job_id])

        assert code == cli.EXIT_SUCCESS
        assert json.loads(capsys.readouterr().out)["status"] == "pending"

    def test_missing_job(self, cli_settings, capsys):
        code = cli.main(["status", "--job-id", "nope"])

        assert code == cli.EXIT_FAILURE
        assert "job not found" in capsys.readouterr().err
