"""
devstory show - Show a work item with its stories and dependencies.
"""

from devstory.lib.config import ProjectConfig
from devstory.pm.store import Store
from devstory.pm.work_items import get_work_item


def cmd_show(args, config: ProjectConfig, store: Store) -> int:
    item = get_work_item(store, args.id)

    print(f"Work item {item.id}: {item.title}")
    print("=" * 60)
    print(f"Type:      {item.type.value}")
    print(f"Status:    {item.status.value}")
    print(f"Priority:  {item.priority}")
    print(f"Branch:    {item.branch_name}")
    print(f"Created:   {item.created_at:%Y-%m-%d %H:%M}")
    if item.error_message:
        print(f"Error:     {item.error_message}")
    print()
    print(item.description)
    if item.acceptance_criteria:
        print()
        print("Acceptance criteria:")
        print(item.acceptance_criteria)
    print()

    stories = store.list_stories(work_item_id=item.id)
    if not stories:
        print("Stories: none (run 'devstory refine' to create them)")
        return 0

    print("Stories")
    print("-" * 60)
    for story in stories:
        title = story.title[:36] + "..." if len(story.title) > 36 else story.title
        print(f"  {story.id:<5} {story.story_type.value:<14} {story.status.value:<12} {title}")
        required = store.get_required_stories(story.id)
        if required:
            print(f"        needs: {', '.join(str(r.id) for r in required)}")
        if story.git_worktree:
            print(f"        worktree: {story.git_worktree}")
        if story.error_message:
            print(f"        error: {story.error_message[:100]}")
    return 0
