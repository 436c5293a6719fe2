"""Shared fixtures: a real sqlite store plus fake workspace and agent."""

from pathlib import Path

import pytest

from devstory.agents.claude import AgentResult
from devstory.pm.models import (
    DeveloperStory,
    DeveloperStoryDependency,
    StoryStatus,
    StoryType,
    WorkItem,
    WorkItemStatus,
    WorkItemType,
)
from devstory.pm.store import Store


@pytest.fixture
def store(tmp_path):
    s = Store(tmp_path / "devstory.db")
    yield s
    s.close()


def add_work_item(store, status=WorkItemStatus.REFINED, type=WorkItemType.USER_STORY,
                  priority=5, title="Work item"):
    item = store.add_work_item(WorkItem(
        title=title,
        description="Something to build",
        type=type,
        priority=priority,
        status=status,
    ))
    store.commit()
    return item


def add_story(store, work_item, status=StoryStatus.READY, priority=None,
              story_type=StoryType.IMPLEMENTATION, title="Story"):
    story = store.add_story(DeveloperStory(
        work_item_id=work_item.id,
        story_type=story_type,
        title=title,
        description="",
        instructions=f"Do {title}",
        priority=work_item.priority if priority is None else priority,
        status=status,
    ))
    store.commit()
    return story


def add_dependency(store, dependent, required):
    dep = store.add_dependency(DeveloperStoryDependency(
        dependent_story_id=dependent.id,
        required_story_id=required.id,
    ))
    store.commit()
    return dep


class FakeWorkspace:
    """In-memory stand-in for GitWorkspace that records calls."""

    def __init__(self, base: Path, existing_branches=(), fail_on=None):
        self.base = Path(base)
        self.branches = set(existing_branches)
        self.worktrees: set[Path] = set()
        self.calls: list[tuple] = []
        self.fail_on = fail_on or {}

    def _maybe_fail(self, op):
        if op in self.fail_on:
            raise self.fail_on[op]

    def branch_exists(self, branch):
        return branch in self.branches

    def create_branch(self, branch, base):
        self.calls.append(("create_branch", branch, base))
        self._maybe_fail("create_branch")
        self.branches.add(branch)

    def worktree_path(self, story):
        return self.base / story.worktree_name

    def worktree_exists(self, path):
        return Path(path) in self.worktrees

    def create_worktree(self, branch, path):
        self.calls.append(("create_worktree", branch, Path(path)))
        self._maybe_fail("create_worktree")
        self.worktrees.add(Path(path))

    def remove_worktree(self, path):
        self.calls.append(("remove_worktree", Path(path)))
        self._maybe_fail("remove_worktree")
        self.worktrees.discard(Path(path))


class FakeAgent:
    """Returns canned AgentResults (or raises) and records instructions."""

    def __init__(self, results=None, raises=None):
        self.results = list(results or [])
        self.raises = raises
        self.calls: list[tuple] = []

    def execute(self, instructions, working_directory, settings=None):
        self.calls.append((instructions, Path(working_directory)))
        if self.raises is not None:
            raise self.raises
        if self.results:
            return self.results.pop(0)
        return ok_result()


def ok_result(stdout='{"type": "result", "result": "done"}', duration=1.5):
    return AgentResult(exit_code=0, stdout=stdout, stderr="", duration=duration)


def failed_result(stderr="boom", exit_code=1):
    return AgentResult(exit_code=exit_code, stdout="", stderr=stderr, duration=0.5)


@pytest.fixture
def workspace(tmp_path):
    return FakeWorkspace(tmp_path / "worktrees")
