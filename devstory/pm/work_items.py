"""
Work item operations.

Creation, validated status changes, manual story entry and the operator
retry paths out of the error state.
"""

import logging
from typing import Optional

from devstory.lib.constants import MAX_PRIORITY, MIN_PRIORITY
from devstory.lib.errors import NotFoundError, ValidationError
from devstory.pm.models import (
    DeveloperStory,
    StoryStatus,
    StoryType,
    WorkItem,
    WorkItemStatus,
    WorkItemType,
    utcnow,
)
from devstory.pm.store import Store
from devstory.workflow.state_machine import transition_story, transition_work_item

logger = logging.getLogger(__name__)


def validate_priority(priority: int) -> int:
    if not isinstance(priority, int) or isinstance(priority, bool):
        raise ValidationError(f"Priority must be an integer, got {priority!r}", field="priority")
    if not MIN_PRIORITY <= priority <= MAX_PRIORITY:
        raise ValidationError(
            f"Priority must be between {MIN_PRIORITY} and {MAX_PRIORITY}, got {priority}",
            field="priority",
        )
    return priority


def create_work_item(
    store: Store,
    type: WorkItemType,
    title: str,
    description: str,
    acceptance_criteria: Optional[str] = None,
    priority: int = 5,
) -> WorkItem:
    """Create a pending work item.

    Raises:
        ValidationError: if priority is outside 1-9 or the title is empty
    """
    validate_priority(priority)
    if not title or not title.strip():
        raise ValidationError("Title must not be empty", field="title")

    now = utcnow()
    item = store.add_work_item(WorkItem(
        type=type,
        title=title.strip(),
        description=description,
        acceptance_criteria=acceptance_criteria or None,
        priority=priority,
        status=WorkItemStatus.PENDING,
        created_at=now,
        updated_at=now,
    ))
    store.commit()
    logger.info(f"Created {type.value} {item.id}: {item.title}")
    return item


def get_work_item(store: Store, work_item_id: int) -> WorkItem:
    """Raises NotFoundError if missing."""
    item = store.get_work_item(work_item_id)
    if item is None:
        raise NotFoundError("Work item", work_item_id)
    return item


def get_story(store: Store, story_id: int) -> DeveloperStory:
    """Raises NotFoundError if missing."""
    story = store.get_story(story_id)
    if story is None:
        raise NotFoundError("Developer story", story_id)
    return story


def update_work_item_status(
    store: Store,
    work_item_id: int,
    target: WorkItemStatus,
    error_message: Optional[str] = None,
) -> WorkItem:
    """Move a work item to target through the transition table and commit.

    Raises:
        NotFoundError: if the work item does not exist
        InvalidStateTransitionError: if the move is not allowed
    """
    item = get_work_item(store, work_item_id)
    updated = transition_work_item(item, target, error_message=error_message)
    store.save_work_item(updated)
    store.commit()
    return updated


def has_in_progress_user_story(store: Store) -> bool:
    return any(
        item.type == WorkItemType.USER_STORY
        for item in store.get_in_progress_work_items()
    )


def add_developer_story(
    store: Store,
    work_item_id: int,
    story_type: StoryType,
    title: str,
    description: str,
    instructions: str,
) -> DeveloperStory:
    """Add a story by hand. It starts ready with the work item's priority.

    Raises:
        NotFoundError: if the work item does not exist
        ValidationError: if title or instructions are empty
    """
    item = get_work_item(store, work_item_id)
    if not title or not title.strip():
        raise ValidationError("Title must not be empty", field="title")
    if not instructions or not instructions.strip():
        raise ValidationError("Instructions must not be empty", field="instructions")

    story = store.add_story(DeveloperStory(
        work_item_id=item.id,
        story_type=story_type,
        title=title.strip(),
        description=description,
        instructions=instructions,
        priority=item.priority,
        status=StoryStatus.READY,
        metadata={"source": "manual"},
    ))
    store.commit()
    logger.info(f"Added {story_type.value} story {story.id} to work item {item.id}")
    return story


def retry_story(store: Store, story_id: int) -> DeveloperStory:
    """Return a failed story to ready so the scheduler picks it up again.

    The error message is cleared; the worktree, if any, is kept and reused.

    Raises:
        NotFoundError, InvalidStateTransitionError
    """
    story = get_story(store, story_id)
    updated = transition_story(story, StoryStatus.READY)
    store.save_story(updated)
    store.commit()
    return updated


def reset_work_item(store: Store, work_item_id: int) -> WorkItem:
    """Return a failed work item to pending so it can be refined again."""
    return update_work_item_status(store, work_item_id, WorkItemStatus.PENDING)
