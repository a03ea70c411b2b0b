"""
Tests for task runners.

The subprocess runner is exercised with the running interpreter as the
task command; the Anthropic runner with a mocked client.
"""

import sys
from types import SimpleNamespace
from unittest.mock import MagicMock

import anthropic
import httpx
import pytest

from cloudjobs.orchestrator.errors import TaskExecutionError
from cloudjobs.tasks.runner import (
    AnthropicTaskRunner,
    SubprocessTaskRunner,
    build_task_runner,
)


ECHO_STDIN = "import sys; data = sys.stdin.read(); print('got: ' + data.strip())"


class TestSubprocessTaskRunner:

    def test_prompt_on_stdin_and_output_logged(self, tmp_path):
        runner = SubprocessTaskRunner([sys.executable, "-c", ECHO_STDIN], log_dir=tmp_path)

        result = runner.run("fix the bug", job_id="job-1")

        assert result["exit_code"] == 0
        assert result["log_path"] == str(tmp_path / "job-1.log")
        assert result["output_tail"] == "got: fix the bug"

    def test_nonzero_exit_raises(self, tmp_path):
        script = "import sys; print('compile error'); sys.exit(3)"
        runner = SubprocessTaskRunner([sys.executable, "-c", script], log_dir=tmp_path)

        with pytest.raises(TaskExecutionError, match="code 3: compile error"):
            runner.run("x", job_id="job-1")

    def test_settings_become_environment(self, tmp_path):
        script = "import os; print(os.environ['TASK_MODE'])"
        runner = SubprocessTaskRunner([sys.executable, "-c", script], log_dir=tmp_path)

        result = runner.run("x", settings={"TASK_MODE": "dry-run"}, job_id="job-1")

        assert result["output_tail"] == "dry-run"

    def test_workspace_is_cwd(self, tmp_path):
        workspace = tmp_path / "repo"
        workspace.mkdir()
        script = "import os; print(os.getcwd())"
        runner = SubprocessTaskRunner([sys.executable, "-c", script], log_dir=tmp_path / "logs")

        result = runner.run("x", workspace=str(workspace), job_id="job-1")

        assert result["output_tail"] == str(workspace.resolve())

    def test_timeout_raises(self, tmp_path):
        script = "import time; time.sleep(5)"
        runner = SubprocessTaskRunner([sys.executable, "-c", script], log_dir=tmp_path, timeout=0.5)

        with pytest.raises(TaskExecutionError, match="timed out"):
            runner.run("x", job_id="job-1")

    def test_missing_command_raises(self, tmp_path):
        runner = SubprocessTaskRunner([str(tmp_path / "no-such-binary")], log_dir=tmp_path)

        with pytest.raises(TaskExecutionError, match="Failed to start"):
            runner.run("x", job_id="job-1")

    def test_empty_command_rejected(self, tmp_path):
        with pytest.raises(ValueError):
            SubprocessTaskRunner([], log_dir=tmp_path)


class TestAnthropicTaskRunner:

    def _message(self, text: str = "Done."):
        return SimpleNamespace(
            content=[SimpleNamespace(type="text", text=text)],
            stop_reason="end_turn",
            usage=SimpleNamespace(input_tokens=12, output_tokens=3),
        )

    def test_returns_text_and_usage(self):
        client = MagicMock()
        client.messages.create.return_value = self._message()
        runner = AnthropicTaskRunner(api_key="", model="claude-test", client=client)

        result = runner.run("Say done", job_id="job-1")

        assert result == {
            "model": "claude-test",
            "text": "Done.",
            "stop_reason": "end_turn",
            "usage": {"input_tokens": 12, "output_tokens": 3},
        }
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["messages"] == [{"role": "user", "content": "Say done"}]
        assert kwargs["max_tokens"] == 8192

    def test_settings_override_model(self):
        client = MagicMock()
        client.messages.create.return_value = self._message()
        runner = AnthropicTaskRunner(api_key="", model="claude-test", client=client)

        result = runner.run("x", settings={"model": "claude-other", "max_tokens": 100})

        assert result["model"] == "claude-other"
        assert client.messages.create.call_args.kwargs["max_tokens"] == 100

    def test_api_error_raises_task_error(self):
        client = MagicMock()
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        client.messages.create.side_effect = anthropic.APIConnectionError(request=request)
        runner = AnthropicTaskRunner(api_key="", model="claude-test", client=client)

        with pytest.raises(TaskExecutionError, match="Anthropic API error"):
            runner.run("x")

    def test_requires_api_key(self):
        with pytest.raises(ValueError):
            AnthropicTaskRunner(api_key="", model="claude-test")


class TestBuildTaskRunner:

    def test_subprocess_runner(self, settings):
        settings.task_command = ["claude", "-p"]

        runner = build_task_runner(settings)

        assert isinstance(runner, SubprocessTaskRunner)
        assert runner.log_dir == settings.task_log_dir

    def test_anthropic_runner(self, settings):
        settings.task_runner = "anthropic"
        settings.anthropic_api_key = "sk-test"

        assert isinstance(build_task_runner(settings), AnthropicTaskRunner)

    def test_unknown_runner(self, settings):
        settings.task_runner = "carrier-pigeon"

        with pytest.raises(ValueError):
            build_task_runner(settings)
