"""Execution orchestrator: run one developer story to completion or error.

A story runs in its own git worktree, checked out on the branch shared by
its work item. Every failure after validation leaves the story in error
(with a failed log entry) before control returns to the caller, so no
story is left stuck in progress.
"""

import logging
import time
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from devstory.agents.claude import AgentResult, AgentSettings, ClaudeCodeClient
from devstory.git.worktree import GitWorkspace
from devstory.lib.config import get_control_dir
from devstory.lib.constants import DEFAULT_WORKTREE_DIRNAME
from devstory.lib.errors import (
    ExecutionCancelled,
    InvalidStateTransitionError,
    NotFoundError,
    WorkspaceOperationError,
)
from devstory.pm.models import (
    DeveloperStory,
    ExecutionEventType,
    ExecutionLog,
    StoryStatus,
    WorkItem,
    WorkItemStatus,
    WorkItemType,
)
from devstory.pm.store import Store
from devstory.workflow.resolution import update_dependency_statuses
from devstory.workflow.state_machine import can_transition, transition_story, transition_work_item

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Implementation was cancelled"


@runtime_checkable
class Workspace(Protocol):
    def branch_exists(self, branch: str) -> bool: ...
    def create_branch(self, branch: str, base: str) -> None: ...
    def worktree_path(self, story: DeveloperStory) -> Path: ...
    def worktree_exists(self, path: Path) -> bool: ...
    def create_worktree(self, branch: str, path: Path) -> None: ...
    def remove_worktree(self, path: Path) -> None: ...


@runtime_checkable
class CodeAgent(Protocol):
    def execute(
        self, instructions: str, working_directory: Path, settings: Optional[AgentSettings] = None
    ) -> AgentResult: ...


@dataclass
class ImplementationResult:
    story: DeveloperStory
    success: bool
    output: str = ""
    error: Optional[str] = None
    duration: float = 0.0  # seconds


def default_workspace(repo_path: Path) -> GitWorkspace:
    repo_path = Path(repo_path)
    return GitWorkspace(repo_path, get_control_dir(repo_path) / DEFAULT_WORKTREE_DIRNAME)


def ensure_branch_for_work_item(
    store: Store,
    work_item_id: int,
    repo_path: Path,
    main_branch: str,
    workspace: Optional[Workspace] = None,
) -> str:
    """Create the work item's branch from main_branch unless it exists.

    Returns:
        The branch name (us-<id> or bug-<id>)

    Raises:
        NotFoundError: if the work item does not exist
        WorkspaceOperationError: if the branch cannot be created
    """
    workspace = workspace or default_workspace(repo_path)
    item = store.get_work_item(work_item_id)
    if item is None:
        raise NotFoundError("Work item", work_item_id)

    branch = item.branch_name
    if not workspace.branch_exists(branch):
        workspace.create_branch(branch, main_branch)
        logger.info(f"Created branch {branch} for work item {item.id} from {main_branch}")
    return branch


def implement(
    store: Store,
    story_id: int,
    repo_path: Path,
    main_branch: str,
    agent_settings: Optional[AgentSettings] = None,
    workspace: Optional[Workspace] = None,
    client: Optional[CodeAgent] = None,
) -> ImplementationResult:
    """Run one developer story.

    Returns a result with success=False when the agent reports failure.

    Raises:
        NotFoundError: story or work item missing (nothing changed)
        InvalidStateTransitionError: story not eligible to start (nothing changed)
        ExecutionCancelled, KeyboardInterrupt: after the story is recorded as cancelled
        WorkspaceOperationError, ExternalAgentError: after the story is recorded as failed
    """
    workspace = workspace or default_workspace(repo_path)
    client = client or ClaudeCodeClient()

    story = store.get_story(story_id)
    if story is None:
        raise NotFoundError("Developer story", story_id)
    if not can_transition(story.status, StoryStatus.IN_PROGRESS):
        raise InvalidStateTransitionError("developer story", story.status, StoryStatus.IN_PROGRESS)

    item = store.get_work_item(story.work_item_id)
    if item is None:
        raise NotFoundError("Work item", story.work_item_id)
    _check_single_active_user_story(store, item)

    required = store.get_required_stories(story.id)
    logger.info(
        f"Implementing story {story.id} ({story.story_type.value}): {story.title} "
        f"[{len(required)} dependencies]"
    )

    start = time.monotonic()
    try:
        if item.status == WorkItemStatus.REFINED:
            item = transition_work_item(item, WorkItemStatus.IN_PROGRESS)
            store.save_work_item(item)

        branch = story.git_branch or ensure_branch_for_work_item(
            store, item.id, repo_path, main_branch, workspace
        )

        path = workspace.worktree_path(story)
        if not workspace.worktree_exists(path):
            workspace.create_worktree(branch, path)
            _log(store, story, ExecutionEventType.WORKTREE_CREATED, f"Created worktree at {path}")

        story = transition_story(story, StoryStatus.IN_PROGRESS)
        story = replace(story, git_branch=branch, git_worktree=str(path))
        store.save_story(story)
        store.commit()

        _log(store, story, ExecutionEventType.STARTED, f"Started implementation: {story.title}")
        store.commit()

        agent_result = client.execute(story.instructions, path, agent_settings)
    except (ExecutionCancelled, KeyboardInterrupt):
        _record_failure(store, story, CANCELLED_MESSAGE)
        logger.warning(f"Story {story.id}: {CANCELLED_MESSAGE}")
        raise
    except Exception as e:
        _record_failure(store, story, str(e) or type(e).__name__)
        logger.error(f"Error implementing story {story.id}: {e}")
        raise

    duration = agent_result.duration or (time.monotonic() - start)

    if not agent_result.success:
        message = _failure_message(agent_result)
        story = _record_failure(
            store, story, message,
            metadata={"exit_code": agent_result.exit_code, "duration_seconds": round(duration, 3),
                      "timed_out": agent_result.timed_out},
        )
        logger.error(f"Failed to implement story {story.id}: {message}")
        return ImplementationResult(
            story=story,
            success=False,
            output=agent_result.output,
            error=message,
            duration=duration,
        )

    story = transition_story(story, StoryStatus.COMPLETED)
    store.save_story(story)
    _log(
        store, story, ExecutionEventType.COMPLETED,
        f"Implementation completed successfully in {duration:.1f}s",
        metadata={"exit_code": agent_result.exit_code, "duration_seconds": round(duration, 3)},
    )
    store.commit()

    story = _remove_worktree(store, story, workspace, path)
    _check_work_item_completion(store, story.work_item_id)
    update_dependency_statuses(store)

    logger.info(f"Successfully implemented story {story.id} in {duration:.1f}s")
    return ImplementationResult(
        story=story,
        success=True,
        output=agent_result.output,
        duration=duration,
    )


def _check_single_active_user_story(store: Store, item: WorkItem) -> None:
    if item.type != WorkItemType.USER_STORY or item.status != WorkItemStatus.REFINED:
        return
    others = [
        w for w in store.get_in_progress_work_items()
        if w.type == WorkItemType.USER_STORY and w.id != item.id
    ]
    if others:
        raise InvalidStateTransitionError(
            "work item", item.status, WorkItemStatus.IN_PROGRESS,
            reason=f"user story {others[0].id} is already in progress",
        )


def _log(
    store: Store,
    story: DeveloperStory,
    event_type: ExecutionEventType,
    details: Optional[str] = None,
    error_message: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> None:
    store.append_log(ExecutionLog(
        developer_story_id=story.id,
        event_type=event_type,
        details=details,
        error_message=error_message,
        metadata=metadata,
    ))


def _record_failure(
    store: Store,
    story: DeveloperStory,
    message: str,
    metadata: Optional[dict] = None,
) -> DeveloperStory:
    """Move story to error, append a failed log entry and commit."""
    failed = transition_story(story, StoryStatus.ERROR, error_message=message)
    store.save_story(failed)
    _log(store, failed, ExecutionEventType.FAILED, error_message=message, metadata=metadata)
    store.commit()
    return failed


def _failure_message(result: AgentResult) -> str:
    return (
        result.stderr.strip()
        or result.output.strip()
        or f"Agent exited with code {result.exit_code}"
    )


def _remove_worktree(
    store: Store,
    story: DeveloperStory,
    workspace: Workspace,
    path: Path,
) -> DeveloperStory:
    try:
        workspace.remove_worktree(path)
    except (WorkspaceOperationError, OSError) as e:
        logger.warning(f"Failed to remove worktree for story {story.id}: {e}")
        return story

    story = replace(story, git_worktree=None)
    store.save_story(story)
    _log(store, story, ExecutionEventType.WORKTREE_REMOVED, f"Removed worktree at {path}")
    store.commit()
    return story


def _check_work_item_completion(store: Store, work_item_id: int) -> None:
    item = store.get_work_item(work_item_id)
    stories = store.list_stories(work_item_id=work_item_id)
    if item is None or not stories:
        return
    if not all(s.status == StoryStatus.COMPLETED for s in stories):
        return
    if not can_transition(item.status, WorkItemStatus.COMPLETED):
        logger.warning(
            f"All stories of work item {item.id} are completed but it is "
            f"{item.status.value}, leaving it as is"
        )
        return

    store.save_work_item(transition_work_item(item, WorkItemStatus.COMPLETED))
    store.commit()
    logger.info(f"Work item {item.id} completed: all {len(stories)} stories done")
