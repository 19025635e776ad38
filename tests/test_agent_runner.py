"""Tests for the agent container runner."""

import json
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from cyberbrief.agent_runner import (
    AgentError,
    AgentRunConfig,
    build_docker_command,
    collect_agent_output,
    run_agent,
    write_articles_file,
)
from cyberbrief.analysis import build_local_analysis, save_analysis


def completed(returncode=0, stdout="DONE", stderr=""):
    result = MagicMock()
    result.returncode = returncode
    result.stdout = stdout
    result.stderr = stderr
    return result


@pytest.fixture
def run_config():
    return AgentRunConfig(
        image="agent:test",
        api_key="sk-secret",
        timeout_seconds=5,
        max_attempts=3,
        retry_interval_seconds=7,
    )


class TestBuildDockerCommand:
    """Tests for build_docker_command function."""

    def test_command_layout(self, run_config, tmp_path):
        """Test mounts, image and the claude invocation."""
        command = build_docker_command(run_config, tmp_path, "do the thing")

        assert command[:3] == ["docker", "run", "--rm"]
        assert f"{tmp_path.resolve()}:/workspace" in command
        assert command[command.index("-w") + 1] == "/workspace"
        assert command[-5:] == ["agent:test", "claude", "--print", "--dangerously-skip-permissions", "do the thing"]

    def test_api_key_passed_by_name_only(self, run_config, tmp_path):
        """Test that the key value never appears on the command line."""
        command = build_docker_command(run_config, tmp_path, "prompt")

        assert "ANTHROPIC_API_KEY" in command
        assert not any("sk-secret" in part for part in command)


class TestRunAgent:
    """Tests for run_agent function."""

    @patch("cyberbrief.agent_runner.time.sleep")
    @patch("cyberbrief.agent_runner.subprocess.run")
    def test_success_first_attempt(self, mock_run, mock_sleep, run_config, tmp_path):
        """Test a clean run."""
        mock_run.return_value = completed()

        result = run_agent(run_config, tmp_path, "prompt")

        assert result.attempts == 1
        assert result.stdout == "DONE"
        mock_sleep.assert_not_called()
        _, kwargs = mock_run.call_args
        assert kwargs["env"]["ANTHROPIC_API_KEY"] == "sk-secret"
        assert kwargs["timeout"] == 5

    @patch("cyberbrief.agent_runner.time.sleep")
    @patch("cyberbrief.agent_runner.subprocess.run")
    def test_retries_then_succeeds(self, mock_run, mock_sleep, run_config, tmp_path):
        """Test that failed attempts are retried at the configured interval."""
        mock_run.side_effect = [
            completed(returncode=1, stderr="rate limited"),
            subprocess.TimeoutExpired(cmd="docker", timeout=5),
            completed(),
        ]

        result = run_agent(run_config, tmp_path, "prompt")

        assert result.attempts == 3
        assert mock_sleep.call_count == 2
        mock_sleep.assert_called_with(7)

    @patch("cyberbrief.agent_runner.time.sleep")
    @patch("cyberbrief.agent_runner.subprocess.run")
    def test_all_attempts_fail(self, mock_run, mock_sleep, run_config, tmp_path):
        """Test that AgentError is raised after the last attempt."""
        mock_run.return_value = completed(returncode=125, stderr="no such image")

        with pytest.raises(AgentError) as exc_info:
            run_agent(run_config, tmp_path, "prompt")

        message = str(exc_info.value)
        assert "after 3 attempt(s)" in message
        assert "code 125" in message
        assert "no such image" in message
        assert mock_run.call_count == 3
        assert mock_sleep.call_count == 2

    @patch("cyberbrief.agent_runner.time.sleep")
    @patch("cyberbrief.agent_runner.subprocess.run")
    def test_docker_missing(self, mock_run, mock_sleep, tmp_path):
        """Test a missing docker binary."""
        mock_run.side_effect = FileNotFoundError()
        config = AgentRunConfig(image="agent:test", max_attempts=1)

        with pytest.raises(AgentError) as exc_info:
            run_agent(config, tmp_path, "prompt")

        assert "Docker binary not found" in str(exc_info.value)
        mock_sleep.assert_not_called()

    @patch("cyberbrief.agent_runner.time.sleep")
    @patch("cyberbrief.agent_runner.subprocess.run")
    def test_trace_logger_receives_output(self, mock_run, mock_sleep, run_config, tmp_path):
        """Test that full container output goes to the trace logger."""
        mock_run.return_value = completed(stdout="agent said hi", stderr="warn")
        trace_logger = MagicMock()

        run_agent(run_config, tmp_path, "prompt", trace_logger=trace_logger)

        logged = trace_logger.debug.call_args[0][0]
        assert "agent said hi" in logged
        assert "warn" in logged


class TestCollectAgentOutput:
    """Tests for collect_agent_output function."""

    def test_valid_output(self, tmp_path):
        """Test that a valid analysis is returned unchanged."""
        document = build_local_analysis([], feeds_processed=2, hours_back=24)
        save_analysis(document, tmp_path / "analysis.json")

        assert collect_agent_output(tmp_path) == document

    def test_missing_output_writes_error_document(self, tmp_path):
        """Test that a missing analysis is replaced by an error document."""
        document = collect_agent_output(tmp_path, metadata={"feeds_processed": 4})

        assert document.is_error
        assert "not found" in document.error
        saved = json.loads((tmp_path / "analysis.json").read_text())
        assert saved["error"] == document.error
        assert saved["metadata"]["feeds_processed"] == 4

    def test_invalid_output_is_kept_aside(self, tmp_path):
        """Test that rejected output is preserved next to the error document."""
        (tmp_path / "analysis.json").write_text('{"executive_summary": 1}')

        document = collect_agent_output(tmp_path)

        assert document.is_error
        assert (tmp_path / "analysis.rejected.json").read_text() == '{"executive_summary": 1}'
        assert "error" in json.loads((tmp_path / "analysis.json").read_text())

    def test_non_utf8_output_is_kept_aside(self, tmp_path):
        """Test that undecodable bytes yield an error document instead of raising."""
        raw = b'{"executive_summary": "caf\xe9"}'
        (tmp_path / "analysis.json").write_bytes(raw)

        document = collect_agent_output(tmp_path)

        assert document.is_error
        assert "not UTF-8" in document.error
        assert (tmp_path / "analysis.rejected.json").read_bytes() == raw
        assert "error" in json.loads((tmp_path / "analysis.json").read_text())

    def test_unreadable_output_path(self, tmp_path):
        """Test that a directory in place of the analysis file is handled."""
        (tmp_path / "analysis.json").mkdir()

        document = collect_agent_output(tmp_path)

        assert document.is_error
        assert "could not be read" in document.error
        assert (tmp_path / "analysis.json").is_file()

    def test_custom_filename(self, tmp_path):
        """Test reading an analysis file under another name."""
        document = collect_agent_output(tmp_path, filename="result.json")

        assert document.is_error
        assert (tmp_path / "result.json").exists()


class TestWriteArticlesFile:
    """Tests for write_articles_file function."""

    def test_writes_json_list(self, tmp_path):
        """Test that records are written as a JSON list."""
        records = [{"title": "Ünïcode", "url": "https://a"}]

        path = write_articles_file(tmp_path / "work", "articles.json", records)

        assert json.loads(path.read_text(encoding="utf-8")) == records
