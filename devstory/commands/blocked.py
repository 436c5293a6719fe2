"""
devstory blocked - List blocked stories and what they wait for.
"""

from devstory.lib.config import ProjectConfig
from devstory.pm.store import Store
from devstory.workflow.resolution import BlockedStory, get_blocked_stories


def print_blocked(blocked: list[BlockedStory]) -> None:
    print("Blocked stories")
    print("-" * 60)
    for entry in blocked:
        story = entry.story
        print(f"  {story.id:<5} {story.title}")
        for blocker in entry.blockers:
            print(f"        waits for {blocker.id} ({blocker.status.value}): {blocker.title}")


def cmd_blocked(args, config: ProjectConfig, store: Store) -> int:
    blocked = get_blocked_stories(store)
    if not blocked:
        print("No blocked stories.")
        return 0
    print_blocked(blocked)
    return 0
