"""Tests for the devstory CLI entrypoint."""

import json
from unittest.mock import MagicMock, patch

import pytest

from devstory.cli import build_parser, main
from devstory.lib.constants import (
    EXIT_CANCELLED,
    EXIT_CONFIG_ERROR,
    EXIT_INVALID_TRANSITION,
    EXIT_NOT_FOUND,
    EXIT_OK,
    EXIT_TOOL_FAILURE,
)
from devstory.lib.errors import ExecutionCancelled
from devstory.pm.models import StoryStatus, WorkItemStatus
from devstory.pm.store import Store

from conftest import FakeAgent, FakeWorkspace, failed_result

PLAN = {
    "developerStories": [
        {"title": "Model", "instructions": "Add models/user.py", "storyType": 0},
        {"title": "Tests", "instructions": "Add tests/test_user.py", "storyType": 1},
    ],
    "dependencies": [{"dependentStoryIndex": 1, "requiredStoryIndex": 0}],
    "analysis": "Two steps",
}


@pytest.fixture
def repo(tmp_path):
    return tmp_path


@pytest.fixture
def cli(repo):
    def invoke(*argv):
        return main(["--repo", str(repo), *argv])
    return invoke


@pytest.fixture
def plan_file(tmp_path):
    path = tmp_path / "plan.json"
    path.write_text(json.dumps(PLAN))
    return path


def open_store(repo):
    return Store(repo / ".devstory" / "devstory.db")


class TestParser:
    def test_requires_command(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_agent_options(self):
        args = build_parser().parse_args(["--timeout", "5000", "--model", "opus", "next"])
        assert args.timeout == 5000
        assert args.model == "opus"


class TestCreateAndList:
    def test_create(self, cli, repo, capsys):
        assert cli("create", "Add login", "-d", "OAuth", "-p", "2") == EXIT_OK
        assert "User story 1 created: Add login" in capsys.readouterr().out
        with open_store(repo) as store:
            assert store.get_work_item(1).priority == 2

    def test_create_bug(self, cli, capsys):
        assert cli("create", "Crash", "--type", "bug") == EXIT_OK
        assert "Bug 1 created" in capsys.readouterr().out

    def test_bad_priority(self, cli, capsys):
        assert cli("create", "X", "-p", "12") == EXIT_CONFIG_ERROR
        assert "Priority must be between 1 and 9" in capsys.readouterr().err

    def test_list(self, cli, capsys):
        cli("create", "First")
        cli("create", "Second")
        capsys.readouterr()
        assert cli("list") == EXIT_OK
        out = capsys.readouterr().out
        assert "First" in out and "Second" in out
        assert "2 work item(s)" in out

    def test_list_empty(self, cli, capsys):
        assert cli("list") == EXIT_OK
        assert "none" in capsys.readouterr().out

    def test_show_missing(self, cli, capsys):
        assert cli("show", "9") == EXIT_NOT_FOUND
        assert "Work item 9 not found" in capsys.readouterr().err


class TestRefineCommand:
    def test_from_file(self, cli, repo, plan_file, capsys):
        cli("create", "Users")
        assert cli("refine", "1", "--from-file", str(plan_file)) == EXIT_OK
        out = capsys.readouterr().out
        assert "refined into 2 stories" in out
        assert "Two steps" in out
        with open_store(repo) as store:
            assert store.get_work_item(1).status == WorkItemStatus.REFINED
            assert [s.status for s in store.list_stories()] == [StoryStatus.READY, StoryStatus.BLOCKED]

    def test_refine_twice_rejected(self, cli, plan_file):
        cli("create", "Users")
        cli("refine", "1", "--from-file", str(plan_file))
        assert cli("refine", "1", "--from-file", str(plan_file)) == EXIT_INVALID_TRANSITION

    def test_invalid_file(self, cli, tmp_path):
        cli("create", "Users")
        bad = tmp_path / "bad.json"
        bad.write_text("{}")
        assert cli("refine", "1", "--from-file", str(bad)) == EXIT_CONFIG_ERROR

    @patch("devstory.commands.refine.ClaudeCodeClient")
    def test_agent_unavailable(self, mock_client_cls, cli, repo, capsys):
        mock_client_cls.return_value = MagicMock(**{"is_available.return_value": False})
        cli("create", "Users")
        assert cli("refine", "1") == EXIT_TOOL_FAILURE
        assert "not available" in capsys.readouterr().err
        with open_store(repo) as store:
            assert store.get_work_item(1).status == WorkItemStatus.PENDING


class TestSchedulingCommands:
    def test_next_and_blocked(self, cli, plan_file, capsys):
        cli("create", "Users")
        cli("refine", "1", "--from-file", str(plan_file))
        capsys.readouterr()

        assert cli("next") == EXIT_OK
        assert "Next story: 1" in capsys.readouterr().out

        assert cli("blocked") == EXIT_OK
        assert "waits for 1" in capsys.readouterr().out

    def test_add_story(self, cli, repo, capsys):
        cli("create", "Docs")
        assert cli("add-story", "1", "Readme", "--type", "documentation", "-i", "Update README") == EXIT_OK
        with open_store(repo) as store:
            assert store.get_story(1).status == StoryStatus.READY

    def test_add_story_bad_type(self, cli):
        cli("create", "Docs")
        assert cli("add-story", "1", "Readme", "--type", "poetry", "-i", "x") == EXIT_CONFIG_ERROR

    def test_log_missing_story(self, cli):
        assert cli("log", "3") == EXIT_NOT_FOUND

    def test_retry_ready_story_rejected(self, cli, plan_file):
        cli("create", "Users")
        cli("refine", "1", "--from-file", str(plan_file))
        assert cli("retry", "1") == EXIT_INVALID_TRANSITION


class TestImplementCommand:
    @pytest.fixture
    def refined(self, cli, plan_file):
        cli("create", "Users")
        cli("refine", "1", "--from-file", str(plan_file))

    def _patch(self, agent, tmp_path):
        workspace = FakeWorkspace(tmp_path / "wt")
        return (
            patch("devstory.commands.implement.GitWorkspace", return_value=workspace),
            patch("devstory.commands.implement.ClaudeCodeClient", return_value=agent),
        )

    def test_success(self, cli, repo, refined, tmp_path, capsys):
        ws_patch, agent_patch = self._patch(FakeAgent(), tmp_path)
        with ws_patch, agent_patch:
            assert cli("implement", "1", "--show-output") == EXIT_OK
        out = capsys.readouterr().out
        assert "Story 1 completed" in out
        assert "done" in out
        with open_store(repo) as store:
            assert store.get_story(2).status == StoryStatus.READY

    def test_failure_exit_code(self, cli, repo, refined, tmp_path, capsys):
        ws_patch, agent_patch = self._patch(FakeAgent([failed_result("lint failed")]), tmp_path)
        with ws_patch, agent_patch:
            assert cli("implement", "1") == EXIT_TOOL_FAILURE
        assert "lint failed" in capsys.readouterr().out

    def test_blocked_story_rejected(self, cli, refined, tmp_path):
        ws_patch, agent_patch = self._patch(FakeAgent(), tmp_path)
        with ws_patch, agent_patch:
            assert cli("implement", "2") == EXIT_INVALID_TRANSITION

    def test_cancelled(self, cli, repo, refined, tmp_path):
        ws_patch, agent_patch = self._patch(FakeAgent(raises=ExecutionCancelled("stop")), tmp_path)
        with ws_patch, agent_patch:
            assert cli("implement", "1") == EXIT_CANCELLED
        with open_store(repo) as store:
            assert store.get_story(1).status == StoryStatus.ERROR

    @patch("devstory.commands.implement.is_locked", return_value=True)
    def test_reports_lock_held(self, _mock_locked, cli, refined, tmp_path, capsys):
        ws_patch, agent_patch = self._patch(FakeAgent(), tmp_path)
        with ws_patch, agent_patch:
            assert cli("implement", "1") == EXIT_OK
        assert "holds the project lock" in capsys.readouterr().out
