"""
devstory retry / reset - Recover stories and work items from the error state.
"""

from devstory.lib.config import ProjectConfig
from devstory.pm.store import Store
from devstory.pm.work_items import reset_work_item, retry_story


def cmd_retry(args, config: ProjectConfig, store: Store) -> int:
    """Move a failed story back to ready."""
    story = retry_story(store, args.story)
    print(f"Story {story.id} is {story.status.value} again")
    if story.git_worktree:
        print(f"  Existing worktree will be reused: {story.git_worktree}")
    return 0


def cmd_reset(args, config: ProjectConfig, store: Store) -> int:
    """Move a failed work item back to pending."""
    item = reset_work_item(store, args.work_item)
    print(f"Work item {item.id} is {item.status.value} again")
    return 0
