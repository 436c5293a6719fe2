"""
devstory log - Show the execution log of a story.
"""

from devstory.lib.config import ProjectConfig
from devstory.pm.store import Store
from devstory.pm.work_items import get_story


def cmd_log(args, config: ProjectConfig, store: Store) -> int:
    story = get_story(store, args.story)
    entries = store.list_logs(story.id)

    print(f"Story {story.id}: {story.title} [{story.status.value}]")
    print("-" * 60)
    if not entries:
        print("  (no execution history)")
        return 0

    for entry in entries:
        line = f"  {entry.timestamp:%Y-%m-%d %H:%M:%S}  {entry.event_type.value:<17}"
        if entry.details:
            line += f" {entry.details}"
        print(line)
        if entry.error_message:
            first = entry.error_message.strip().splitlines()[0] if entry.error_message.strip() else ""
            print(f"  {'':<19}  error: {first[:120]}")
    return 0
