"""
devstory refine - Break a work item into developer stories.
"""

import logging
from pathlib import Path

from devstory.agents.claude import ClaudeCodeClient
from devstory.lib.config import ProjectConfig
from devstory.lib.errors import ExternalAgentError
from devstory.pm.refine import load_proposal_file, refine_work_item
from devstory.pm.store import Store

logger = logging.getLogger(__name__)


def cmd_refine(args, config: ProjectConfig, store: Store, settings=None) -> int:
    proposal = None
    client = None
    if args.from_file:
        proposal = load_proposal_file(Path(args.from_file))
    else:
        client = ClaudeCodeClient(config.agents)
        if not client.is_available():
            raise ExternalAgentError(
                "Claude Code CLI is not available. Please ensure it is installed and on PATH."
            )
        print(f"Refining work item {args.id} (this can take a few minutes)...")

    result = refine_work_item(store, args.id, client=client, settings=settings, proposal=proposal)

    print(f"Work item {result.work_item.id} refined into {len(result.stories)} stories")
    print("-" * 60)
    for index, story in enumerate(result.stories):
        print(f"  [{index}] {story.id:<5} {story.story_type.value:<14} {story.status.value:<8} {story.title}")
    if result.dependencies:
        print()
        print("Dependencies")
        for dep in result.dependencies:
            note = f"  ({dep.description})" if dep.description else ""
            print(f"  {dep.dependent_story_id} needs {dep.required_story_id}{note}")
    if result.skipped_edges:
        print()
        print(f"Skipped {len(result.skipped_edges)} dependency edge(s):")
        for skipped in result.skipped_edges:
            edge = skipped.edge
            print(f"  {edge.dependent_story_index} -> {edge.required_story_index}: {skipped.reason}")
    if result.analysis:
        print()
        print("Analysis")
        print(result.analysis)
    return 0
