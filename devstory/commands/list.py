"""
devstory list - List work items with story progress.
"""

from devstory.lib.config import ProjectConfig
from devstory.pm.models import StoryStatus, WorkItemStatus
from devstory.pm.store import Store


def cmd_list(args, config: ProjectConfig, store: Store) -> int:
    """List work items, optionally filtered by status."""
    status = WorkItemStatus(args.status) if args.status else None
    items = store.list_work_items(status)

    if not items:
        print("Work items: none")
        print()
        print("Get started:")
        print('  devstory create "Title" -d "Description"')
        return 0

    print("Work items")
    print("-" * 72)
    for item in items:
        stories = store.list_stories(work_item_id=item.id)
        done = sum(1 for s in stories if s.status == StoryStatus.COMPLETED)
        failed = sum(1 for s in stories if s.status == StoryStatus.ERROR)
        progress = f"{done}/{len(stories)}" if stories else "-"
        if failed:
            progress += f" ({failed} error)"
        kind = "story" if item.branch_prefix == "us" else "bug"
        title = item.title[:32] + "..." if len(item.title) > 32 else item.title
        print(f"  {item.id:<5} {kind:<6} P{item.priority}  {item.status.value:<12} {progress:<12} {title}")
    print()
    print(f"{len(items)} work item(s)")
    return 0
