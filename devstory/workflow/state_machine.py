"""Validated status transitions for work items and developer stories.

Thin layer over the tables in fsm.py:
- can_transition() / valid_transitions() answer questions about the tables
- transition_work_item() / transition_story() return the next snapshot of an
  entity with status, timestamps and error message applied

Usage:
    from devstory.workflow.state_machine import transition_story

    story = transition_story(story, StoryStatus.IN_PROGRESS)
    store.save_story(story)

The input entity is never mutated, so a rejected transition leaves the
caller's object (and anything persisted from it) untouched.
"""

import logging
from dataclasses import replace
from datetime import datetime
from typing import Optional, Union

from transitions import MachineError

from devstory.lib.errors import InvalidStateTransitionError
from devstory.pm.models import DeveloperStory, StoryStatus, WorkItem, WorkItemStatus, utcnow
from devstory.workflow.fsm import (
    STORY_TRIGGER_FOR,
    WORK_ITEM_TRIGGER_FOR,
    StoryMachine,
    WorkItemMachine,
)

logger = logging.getLogger(__name__)

Status = Union[WorkItemStatus, StoryStatus]

DEFAULT_ERROR_MESSAGE = "Unknown error"


def _trigger_table(status: Status) -> dict[tuple[str, str], str]:
    if isinstance(status, WorkItemStatus):
        return WORK_ITEM_TRIGGER_FOR
    if isinstance(status, StoryStatus):
        return STORY_TRIGGER_FOR
    raise TypeError(f"Not a status: {status!r}")


def can_transition(current: Status, target: Status) -> bool:
    """Return True if current -> target is in the transition table.

    Both arguments must be of the same status enum.
    """
    if type(current) is not type(target):
        return False
    return (current.value, target.value) in _trigger_table(current)


def valid_transitions(current: Status) -> list[Status]:
    """All statuses reachable from current in one step, in declaration order."""
    enum_cls = type(current)
    return [
        enum_cls(dest)
        for (source, dest) in _trigger_table(current)
        if source == current.value
    ]


def transition_work_item(
    item: WorkItem,
    target: WorkItemStatus,
    error_message: Optional[str] = None,
    now: Optional[datetime] = None,
) -> WorkItem:
    """Return a copy of item moved to target.

    Raises:
        InvalidStateTransitionError: if the pair is not in the table
    """
    trigger = WORK_ITEM_TRIGGER_FOR.get((item.status.value, target.value))
    if trigger is None:
        raise InvalidStateTransitionError("work item", item.status, target)

    _fire(WorkItemMachine(item.status.value, name=f"work item {item.id}"), trigger,
          "work item", item.status, target)

    now = now or utcnow()
    logger.info(f"[STATE] work item {item.id}: {item.status.value} -> {target.value}")
    return replace(
        item,
        status=target,
        updated_at=now,
        error_message=_next_error_message(item.error_message, target, error_message),
    )


def transition_story(
    story: DeveloperStory,
    target: StoryStatus,
    error_message: Optional[str] = None,
    now: Optional[datetime] = None,
) -> DeveloperStory:
    """Return a copy of story moved to target.

    Entering in_progress stamps started_at, entering completed stamps
    completed_at.

    Raises:
        InvalidStateTransitionError: if the pair is not in the table
    """
    trigger = STORY_TRIGGER_FOR.get((story.status.value, target.value))
    if trigger is None:
        raise InvalidStateTransitionError("developer story", story.status, target)

    _fire(StoryMachine(story.status.value, name=f"story {story.id}"), trigger,
          "developer story", story.status, target)

    now = now or utcnow()
    changes = {
        "status": target,
        "error_message": _next_error_message(story.error_message, target, error_message),
    }
    if target == StoryStatus.IN_PROGRESS:
        changes["started_at"] = now
        changes["completed_at"] = None
    elif target == StoryStatus.COMPLETED:
        changes["completed_at"] = now

    logger.info(f"[STATE] story {story.id}: {story.status.value} -> {target.value}")
    return replace(story, **changes)


def _fire(machine, trigger: str, entity: str, current: Status, target: Status) -> None:
    try:
        getattr(machine, trigger)()
    except MachineError as e:
        raise InvalidStateTransitionError(entity, current, target) from e
    # Shared triggers (fail, block, ...) must land on the requested state
    if machine.state != target.value:
        raise InvalidStateTransitionError(entity, current, target)


def _next_error_message(
    current_message: Optional[str],
    target: Status,
    error_message: Optional[str],
) -> Optional[str]:
    if target.value == "error":
        return error_message or current_message or DEFAULT_ERROR_MESSAGE
    return None
