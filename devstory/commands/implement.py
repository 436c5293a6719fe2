"""
devstory implement - Run one developer story with the code-generation agent.
"""

import logging

from devstory.agents.claude import ClaudeCodeClient
from devstory.git.worktree import GitWorkspace
from devstory.lib.config import ProjectConfig
from devstory.lib.constants import EXIT_OK, EXIT_TOOL_FAILURE
from devstory.lib.locking import global_lock, is_locked
from devstory.pm.store import Store
from devstory.workflow.implement import implement

logger = logging.getLogger(__name__)


def cmd_implement(args, config: ProjectConfig, store: Store, settings=None) -> int:
    main_branch = args.main_branch or config.default_branch
    workspace = GitWorkspace(config.repo_path, config.worktree_base)
    client = ClaudeCodeClient(config.agents)

    if is_locked(config.lock_dir):
        print("Another devstory run holds the project lock, waiting...")
    with global_lock(config.lock_dir):
        print(f"Implementing story {args.story} (base branch {main_branch})...")
        result = implement(
            store,
            args.story,
            config.repo_path,
            main_branch,
            agent_settings=settings,
            workspace=workspace,
            client=client,
        )

    if result.success:
        print(f"Story {result.story.id} completed in {result.duration:.1f}s")
        if args.show_output and result.output:
            print()
            print(result.output)
        return EXIT_OK

    print(f"Story {result.story.id} failed after {result.duration:.1f}s")
    print(f"  Error: {result.error}")
    if result.story.git_worktree:
        print(f"  Worktree kept for inspection: {result.story.git_worktree}")
    print(f"  Retry with: devstory retry {result.story.id}")
    return EXIT_TOOL_FAILURE
