"""Tests for the Claude Code client."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from devstory.agents.claude import (
    AgentResult,
    AgentSettings,
    ClaudeCodeClient,
    extract_result,
)
from devstory.lib.agents_config import AgentsConfig
from devstory.lib.errors import ExternalAgentError
from devstory.lib.process import ProcessResult


def proc(returncode=0, stdout="", stderr="", timed_out=False):
    return ProcessResult(returncode=returncode, stdout=stdout, stderr=stderr,
                         duration=2.0, timed_out=timed_out)


class TestAgentSettings:
    """Settings resolution from flags and environment."""

    def test_environment_fallback(self):
        settings = AgentSettings.from_env(environ={
            "ANTHROPIC_AUTH_TOKEN": "tok",
            "ANTHROPIC_BASE_URL": "https://proxy.example",
            "API_TIMEOUT_MS": "90000",
        })
        assert settings.api_key == "tok"
        assert settings.base_url == "https://proxy.example"
        assert settings.timeout == 90

    def test_explicit_values_win(self):
        settings = AgentSettings.from_env(
            api_key="flag", timeout_ms=5000,
            environ={"ANTHROPIC_AUTH_TOKEN": "env", "API_TIMEOUT_MS": "90000"},
        )
        assert settings.api_key == "flag"
        assert settings.timeout == 5

    def test_default_timeout(self):
        settings = AgentSettings.from_env(default_timeout=1800, environ={})
        assert settings.timeout == 1800
        assert settings.api_key is None

    def test_bad_timeout_ignored(self, caplog):
        settings = AgentSettings.from_env(default_timeout=600, environ={"API_TIMEOUT_MS": "soon"})
        assert settings.timeout == 600
        assert "API_TIMEOUT_MS" in caplog.text

    def test_child_env(self):
        env = AgentSettings(api_key="k", base_url="u", timeout=30).child_env({"PATH": "/bin"})
        assert env == {
            "PATH": "/bin",
            "ANTHROPIC_AUTH_TOKEN": "k",
            "ANTHROPIC_BASE_URL": "u",
            "API_TIMEOUT_MS": "30000",
        }


class TestExtractResult:
    def test_wrapper(self):
        assert extract_result(json.dumps({"type": "result", "result": "hi"})) == "hi"

    def test_plain_text(self):
        assert extract_result("hello") == "hello"

    def test_json_without_result(self):
        text = json.dumps({"developerStories": []})
        assert extract_result(text) == text


class TestExecute:
    """Tests for ClaudeCodeClient.execute()."""

    @patch("devstory.agents.claude.run_process")
    def test_runs_in_worktree_with_prompt_on_stdin(self, mock_run, tmp_path):
        mock_run.return_value = proc(stdout=json.dumps({"result": "ok"}))
        client = ClaudeCodeClient()

        result = client.execute("Add a test", tmp_path, AgentSettings(timeout=60, model="opus"))

        cmd = mock_run.call_args[0][0]
        kwargs = mock_run.call_args[1]
        assert cmd[0] == "claude"
        assert "--dangerously-skip-permissions" in cmd
        assert cmd[-2:] == ["--model", "opus"]
        assert kwargs["cwd"] == Path(tmp_path)
        assert kwargs["input"] == "Add a test"
        assert kwargs["timeout"] == 60
        assert result.success
        assert result.output == "ok"

    @patch("devstory.agents.claude.run_process")
    def test_failure_reported_not_raised(self, mock_run, tmp_path):
        mock_run.return_value = proc(returncode=-1, stderr="timed out", timed_out=True)
        result = ClaudeCodeClient().execute("x", tmp_path)
        assert not result.success
        assert result.timed_out

    @patch("devstory.agents.claude.run_process")
    def test_error_envelope_with_exit_zero_is_failure(self, mock_run, tmp_path):
        mock_run.return_value = proc(stdout=json.dumps({"is_error": True, "result": "rate limited"}))

        result = ClaudeCodeClient().execute("x", tmp_path)

        assert result.exit_code == 0
        assert result.is_error
        assert not result.success
        assert result.output == "rate limited"

    @patch("devstory.agents.claude.run_process")
    def test_text_output_never_checked_for_envelope(self, mock_run, tmp_path):
        mock_run.return_value = proc(stdout=json.dumps({"is_error": True}))
        config = AgentsConfig(stages={"refine": "r", "implement": "agent --output-format text"})
        assert ClaudeCodeClient(config).execute("x", tmp_path).success

    @patch("devstory.agents.claude.run_process")
    def test_missing_binary(self, mock_run, tmp_path):
        mock_run.side_effect = FileNotFoundError("claude")
        with pytest.raises(ExternalAgentError, match="Failed to start"):
            ClaudeCodeClient().execute("x", tmp_path)

    @patch("devstory.agents.claude.run_process")
    def test_custom_stage_command(self, mock_run, tmp_path):
        mock_run.return_value = proc()
        config = AgentsConfig(stages={"refine": "r", "implement": "agent --dir {worktree} {prompt}"})
        ClaudeCodeClient(config).execute("do it", tmp_path)
        assert mock_run.call_args[0][0] == ["agent", "--dir", str(tmp_path), "do it"]
        assert mock_run.call_args[1]["input"] is None


class TestRefine:
    """Tests for ClaudeCodeClient.refine()."""

    @patch("devstory.agents.claude.run_process")
    def test_returns_result_text(self, mock_run):
        mock_run.return_value = proc(stdout=json.dumps({"result": '{"developerStories": []}'}))
        assert ClaudeCodeClient().refine("prompt") == '{"developerStories": []}'

    @patch("devstory.agents.claude.run_process")
    def test_nonzero_exit(self, mock_run):
        mock_run.return_value = proc(returncode=1, stderr="auth failed")
        with pytest.raises(ExternalAgentError, match="auth failed"):
            ClaudeCodeClient().refine("prompt")

    @patch("devstory.agents.claude.run_process")
    def test_timeout(self, mock_run):
        mock_run.return_value = proc(returncode=-1, timed_out=True)
        with pytest.raises(ExternalAgentError, match="timed out"):
            ClaudeCodeClient().refine("prompt", AgentSettings(timeout=10))

    @patch("devstory.agents.claude.run_process")
    def test_is_error_envelope(self, mock_run):
        mock_run.return_value = proc(stdout=json.dumps({"is_error": True, "result": "quota"}))
        with pytest.raises(ExternalAgentError, match="quota"):
            ClaudeCodeClient().refine("prompt")

    @patch("devstory.agents.claude.run_process")
    def test_not_installed(self, mock_run):
        mock_run.side_effect = FileNotFoundError("claude")
        with pytest.raises(ExternalAgentError, match="not available"):
            ClaudeCodeClient().refine("prompt")


class TestIsAvailable:
    @patch("devstory.agents.claude.run_process")
    def test_available(self, mock_run):
        mock_run.return_value = proc(stdout="1.0.0")
        assert ClaudeCodeClient().is_available()
        assert mock_run.call_args[0][0] == ["claude", "--version"]

    @patch("devstory.agents.claude.run_process")
    def test_missing(self, mock_run):
        mock_run.side_effect = FileNotFoundError("claude")
        assert not ClaudeCodeClient().is_available()


def test_agent_result_success_requires_no_timeout():
    assert not AgentResult(exit_code=0, stdout="", stderr="", duration=1, timed_out=True).success


def test_agent_result_success_requires_no_envelope_error():
    assert not AgentResult(exit_code=0, stdout="", stderr="", duration=1, is_error=True).success
