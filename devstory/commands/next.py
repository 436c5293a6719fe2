"""
devstory next - Show which story would run next.
"""

from devstory.commands.blocked import print_blocked
from devstory.lib.config import ProjectConfig
from devstory.pm.store import Store
from devstory.workflow.engine import next_story
from devstory.workflow.resolution import get_blocked_stories, update_dependency_statuses


def cmd_next(args, config: ProjectConfig, store: Store) -> int:
    changed = update_dependency_statuses(store)
    for story in changed:
        print(f"  story {story.id} -> {story.status.value}")
    if changed:
        print()

    story = next_story(store)
    if story is None:
        print("No story is ready to run.")
        blocked = get_blocked_stories(store)
        if blocked:
            print()
            print_blocked(blocked)
        return 0

    print(f"Next story: {story.id}")
    print("-" * 60)
    print(f"Title:      {story.title}")
    print(f"Type:       {story.story_type.value}")
    print(f"Work item:  {story.work_item_id}")
    print(f"Priority:   {story.priority}")
    print()
    print(f"Run it with: devstory implement {story.id}")
    return 0
