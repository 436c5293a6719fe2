"""Scheduling loop: implement ready stories one at a time until idle.

Wrapped with Prefect @flow for observability. Each iteration refreshes
ready/blocked statuses, asks the resolver for the next story and runs it.
The loop stops when nothing is selectable, a story fails, or the story
budget is spent.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from prefect import flow

from devstory.agents.claude import AgentSettings
from devstory.pm.models import DeveloperStory
from devstory.pm.store import Store
from devstory.workflow.implement import CodeAgent, Workspace, implement
from devstory.workflow.resolution import (
    get_active_user_story,
    select_next,
    select_next_for_work_item,
    update_dependency_statuses,
)

logger = logging.getLogger(__name__)

STOP_IDLE = "idle"
STOP_FAILED = "failed"
STOP_MAX_STORIES = "max_stories"


@dataclass
class RunSummary:
    implemented: list[int] = field(default_factory=list)
    failed: Optional[int] = None
    stop_reason: str = ""


def next_story(store: Store) -> Optional[DeveloperStory]:
    """Story the loop runs next.

    An in-progress user story is finished before anything else starts, so
    its own stories are taken ahead of select_next, which offers nothing
    while it is active.
    """
    active = get_active_user_story(store)
    if active is not None:
        return select_next_for_work_item(store, active.id)
    return select_next(store)


@flow(name="devstory_run_until_idle", validate_parameters=False)
def run_until_idle(
    store: Store,
    repo_path: Path,
    main_branch: str,
    settings: Optional[AgentSettings] = None,
    max_stories: Optional[int] = None,
    workspace: Optional[Workspace] = None,
    client: Optional[CodeAgent] = None,
) -> RunSummary:
    """Implement selectable stories until there are none left.

    Exceptions from implement() (cancellation, workspace and agent errors)
    propagate after the story has been recorded as failed.
    """
    summary = RunSummary()

    while True:
        if max_stories is not None and len(summary.implemented) >= max_stories:
            summary.stop_reason = STOP_MAX_STORIES
            break

        update_dependency_statuses(store)
        story = next_story(store)
        if story is None:
            summary.stop_reason = STOP_IDLE
            break

        logger.info(f"Selected story {story.id}: {story.title}")
        result = implement(
            store,
            story.id,
            repo_path,
            main_branch,
            agent_settings=settings,
            workspace=workspace,
            client=client,
        )
        if not result.success:
            summary.failed = story.id
            summary.stop_reason = STOP_FAILED
            break
        summary.implemented.append(story.id)

    logger.info(
        f"Run finished ({summary.stop_reason}): {len(summary.implemented)} implemented"
        + (f", story {summary.failed} failed" if summary.failed else "")
    )
    return summary
