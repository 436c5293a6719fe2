"""
devstory add-story - Add a developer story to a work item by hand.
"""

from pathlib import Path

from devstory.lib.config import ProjectConfig
from devstory.lib.errors import ValidationError
from devstory.pm.models import parse_story_type
from devstory.pm.store import Store
from devstory.pm.work_items import add_developer_story


def cmd_add_story(args, config: ProjectConfig, store: Store) -> int:
    try:
        story_type = parse_story_type(args.type)
    except ValueError as e:
        raise ValidationError(str(e), field="type") from None

    instructions = args.instructions
    if args.instructions_file:
        instructions = Path(args.instructions_file).read_text()
    if not instructions:
        raise ValidationError("Provide --instructions or --instructions-file", field="instructions")

    story = add_developer_story(
        store,
        args.work_item,
        story_type,
        args.title,
        args.description or "",
        instructions,
    )
    print(f"Story {story.id} added to work item {story.work_item_id} ({story.story_type.value}, {story.status.value})")
    return 0
