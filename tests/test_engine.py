"""Tests for the run-until-idle scheduling loop.

The flow body is called through .fn so no Prefect server is needed.
"""

import pytest

from devstory.lib.errors import ExecutionCancelled
from devstory.pm.models import StoryStatus, WorkItemStatus
from devstory.workflow.engine import (
    STOP_FAILED,
    STOP_IDLE,
    STOP_MAX_STORIES,
    next_story,
    run_until_idle,
)
from devstory.workflow.implement import implement
from devstory.workflow.refinement import RefinementProposal, apply_refinement
from devstory.workflow.resolution import select_next, update_dependency_statuses

from conftest import FakeAgent, add_dependency, add_story, add_work_item, failed_result, ok_result

TWO_STORY_PLAN = {
    "developerStories": [
        {"title": "S1", "instructions": "Add the model", "storyType": 0},
        {"title": "S2", "instructions": "Test the model", "storyType": 1},
    ],
    "dependencies": [{"dependentStoryIndex": 1, "requiredStoryIndex": 0}],
}


def run(store, workspace, agent, tmp_path, **kwargs):
    return run_until_idle.fn(
        store, tmp_path, "main", workspace=workspace, client=agent, **kwargs
    )


class TestRunUntilIdle:
    """Tests for run_until_idle()."""

    def test_idle_when_nothing_ready(self, store, workspace, tmp_path):
        summary = run(store, workspace, FakeAgent(), tmp_path)
        assert summary.implemented == []
        assert summary.stop_reason == STOP_IDLE

    def test_runs_dependency_chain(self, store, workspace, tmp_path):
        item = add_work_item(store)
        a = add_story(store, item, title="a")
        b = add_story(store, item, status=StoryStatus.PENDING, title="b")
        c = add_story(store, item, status=StoryStatus.PENDING, title="c")
        add_dependency(store, b, a)
        add_dependency(store, c, b)

        summary = run(store, workspace, FakeAgent(), tmp_path)

        assert summary.implemented == [a.id, b.id, c.id]
        assert summary.stop_reason == STOP_IDLE
        assert store.get_work_item(item.id).status == WorkItemStatus.COMPLETED

    def test_stops_after_failure(self, store, workspace, tmp_path):
        item = add_work_item(store)
        first = add_story(store, item, priority=1)
        second = add_story(store, item, priority=2)
        agent = FakeAgent([failed_result()])

        summary = run(store, workspace, agent, tmp_path)

        assert summary.failed == first.id
        assert summary.stop_reason == STOP_FAILED
        assert summary.implemented == []
        assert store.get_story(second.id).status == StoryStatus.READY
        assert len(agent.calls) == 1

    def test_max_stories(self, store, workspace, tmp_path):
        item = add_work_item(store)
        for i in range(3):
            add_story(store, item, title=f"s{i}")

        summary = run(store, workspace, FakeAgent(), tmp_path, max_stories=2)

        assert len(summary.implemented) == 2
        assert summary.stop_reason == STOP_MAX_STORIES

    def test_other_user_story_waits(self, store, workspace, tmp_path):
        first = add_work_item(store, priority=1)
        second = add_work_item(store, priority=2)
        a = add_story(store, first)
        b = add_story(store, first, status=StoryStatus.BLOCKED)
        add_dependency(store, b, a)
        later = add_story(store, second)

        summary = run(store, workspace, FakeAgent([ok_result(), failed_result()]), tmp_path)

        # second user story never starts while the first is unfinished
        assert summary.implemented == [a.id]
        assert summary.failed == b.id
        assert store.get_story(later.id).status == StoryStatus.READY
        assert store.get_work_item(second.id).status == WorkItemStatus.REFINED

    def test_cancellation_propagates(self, store, workspace, tmp_path):
        item = add_work_item(store)
        story = add_story(store, item)

        with pytest.raises(ExecutionCancelled):
            run(store, workspace, FakeAgent(raises=ExecutionCancelled("stop")), tmp_path)

        assert store.get_story(story.id).status == StoryStatus.ERROR


class TestNextStory:
    """Tests for next_story()."""

    def test_falls_back_to_select_next(self, store):
        item = add_work_item(store)
        story = add_story(store, item)
        assert next_story(store).id == story.id

    def test_active_user_story_finishes_first(self, store):
        active = add_work_item(store, status=WorkItemStatus.IN_PROGRESS, priority=9)
        waiting = add_work_item(store, priority=1)
        own = add_story(store, active, priority=5)
        add_story(store, waiting, priority=1)

        assert select_next(store) is None
        assert next_story(store).id == own.id

    def test_none_when_active_item_has_nothing_ready(self, store):
        active = add_work_item(store, status=WorkItemStatus.IN_PROGRESS)
        add_story(store, active, status=StoryStatus.IN_PROGRESS)
        add_story(store, add_work_item(store))
        assert next_story(store) is None


class TestRefinedWorkItemScenario:
    """W refined into S1 and S2, where S2 requires S1."""

    def _refine(self, store):
        item = add_work_item(store)
        result = apply_refinement(store, item, RefinementProposal.model_validate(TWO_STORY_PLAN))
        s1, s2 = result.stories
        return item, s1, s2

    def test_step_by_step(self, store, workspace, tmp_path):
        item, s1, s2 = self._refine(store)
        assert store.get_story(s1.id).status == StoryStatus.READY
        assert store.get_story(s2.id).status == StoryStatus.BLOCKED

        assert select_next(store).id == s1.id
        implement(store, s1.id, tmp_path, "main", workspace=workspace, client=FakeAgent())
        assert store.get_work_item(item.id).status == WorkItemStatus.IN_PROGRESS

        update_dependency_statuses(store)
        assert store.get_story(s2.id).status == StoryStatus.READY
        assert select_next(store) is None
        assert next_story(store).id == s2.id

        implement(store, s2.id, tmp_path, "main", workspace=workspace, client=FakeAgent())
        assert store.get_work_item(item.id).status == WorkItemStatus.COMPLETED
        assert next_story(store) is None

    def test_run_until_idle(self, store, workspace, tmp_path):
        item, s1, s2 = self._refine(store)

        summary = run(store, workspace, FakeAgent(), tmp_path)

        assert summary.implemented == [s1.id, s2.id]
        assert summary.stop_reason == STOP_IDLE
        assert store.get_work_item(item.id).status == WorkItemStatus.COMPLETED
