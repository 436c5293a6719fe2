"""Tests for work item operations."""

import pytest

from devstory.lib.errors import InvalidStateTransitionError, NotFoundError, ValidationError
from devstory.pm.models import StoryStatus, StoryType, WorkItemStatus, WorkItemType
from devstory.pm.work_items import (
    add_developer_story,
    create_work_item,
    has_in_progress_user_story,
    reset_work_item,
    retry_story,
    update_work_item_status,
    validate_priority,
)

from conftest import add_story, add_work_item


class TestCreateWorkItem:
    """Tests for create_work_item()."""

    def test_creates_pending(self, store):
        item = create_work_item(
            store, WorkItemType.USER_STORY, "  Add login  ", "OAuth login",
            acceptance_criteria="Users can sign in", priority=2,
        )
        loaded = store.get_work_item(item.id)
        assert loaded.title == "Add login"
        assert loaded.status == WorkItemStatus.PENDING
        assert loaded.priority == 2
        assert loaded.acceptance_criteria == "Users can sign in"

    @pytest.mark.parametrize("priority", [0, 10, -3])
    def test_priority_out_of_range(self, store, priority):
        with pytest.raises(ValidationError) as exc_info:
            create_work_item(store, WorkItemType.BUG, "Crash", "", priority=priority)
        assert exc_info.value.field == "priority"
        assert store.list_work_items() == []

    def test_empty_title(self, store):
        with pytest.raises(ValidationError):
            create_work_item(store, WorkItemType.BUG, "   ", "")


class TestValidatePriority:
    def test_bounds_accepted(self):
        assert validate_priority(1) == 1
        assert validate_priority(9) == 9

    def test_bool_rejected(self):
        with pytest.raises(ValidationError):
            validate_priority(True)


class TestStatusChanges:
    """Validated work item status changes."""

    def test_update_status(self, store):
        item = add_work_item(store, status=WorkItemStatus.PENDING)
        updated = update_work_item_status(store, item.id, WorkItemStatus.REFINING)
        assert updated.status == WorkItemStatus.REFINING
        assert store.get_work_item(item.id).status == WorkItemStatus.REFINING

    def test_invalid_update_leaves_item(self, store):
        item = add_work_item(store, status=WorkItemStatus.PENDING)
        with pytest.raises(InvalidStateTransitionError):
            update_work_item_status(store, item.id, WorkItemStatus.COMPLETED)
        assert store.get_work_item(item.id).status == WorkItemStatus.PENDING

    def test_missing(self, store):
        with pytest.raises(NotFoundError, match="Work item 5 not found"):
            update_work_item_status(store, 5, WorkItemStatus.REFINING)

    def test_reset_from_error(self, store):
        item = add_work_item(store, status=WorkItemStatus.ERROR)
        assert reset_work_item(store, item.id).status == WorkItemStatus.PENDING

    def test_has_in_progress_user_story(self, store):
        assert not has_in_progress_user_story(store)
        add_work_item(store, type=WorkItemType.BUG, status=WorkItemStatus.IN_PROGRESS)
        assert not has_in_progress_user_story(store)
        add_work_item(store, status=WorkItemStatus.IN_PROGRESS)
        assert has_in_progress_user_story(store)


class TestAddDeveloperStory:
    """Tests for add_developer_story()."""

    def test_inherits_priority_and_starts_ready(self, store):
        item = add_work_item(store, priority=3)
        story = add_developer_story(
            store, item.id, StoryType.DOCUMENTATION, "Docs", "", "Update README.md",
        )
        loaded = store.get_story(story.id)
        assert loaded.status == StoryStatus.READY
        assert loaded.priority == 3
        assert loaded.metadata == {"source": "manual"}

    def test_requires_instructions(self, store):
        item = add_work_item(store)
        with pytest.raises(ValidationError, match="Instructions"):
            add_developer_story(store, item.id, StoryType.IMPLEMENTATION, "T", "", " ")

    def test_missing_work_item(self, store):
        with pytest.raises(NotFoundError):
            add_developer_story(store, 99, StoryType.IMPLEMENTATION, "T", "", "do")


class TestRetryStory:
    """Tests for retry_story()."""

    def test_error_back_to_ready(self, store):
        item = add_work_item(store)
        story = add_story(store, item, status=StoryStatus.ERROR)
        retried = retry_story(store, story.id)
        assert retried.status == StoryStatus.READY
        assert store.get_story(story.id).error_message is None

    def test_completed_cannot_retry(self, store):
        item = add_work_item(store)
        story = add_story(store, item, status=StoryStatus.COMPLETED)
        with pytest.raises(InvalidStateTransitionError):
            retry_story(store, story.id)
