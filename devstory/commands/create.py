"""
devstory create - Create a work item (user story or bug).
"""

from devstory.lib.config import ProjectConfig
from devstory.pm.models import WorkItemType
from devstory.pm.store import Store
from devstory.pm.work_items import create_work_item


def cmd_create(args, config: ProjectConfig, store: Store) -> int:
    item_type = WorkItemType.BUG if args.type == "bug" else WorkItemType.USER_STORY

    item = create_work_item(
        store,
        item_type,
        args.title,
        args.description or "",
        acceptance_criteria=args.acceptance_criteria,
        priority=args.priority,
    )

    label = "User story" if item.type == WorkItemType.USER_STORY else "Bug"
    print(f"{label} {item.id} created: {item.title}")
    print(f"  Priority: {item.priority}")
    print(f"  Status:   {item.status.value}")
    print()
    print(f"Next: devstory refine {item.id}")
    return 0
