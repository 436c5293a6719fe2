"""
devstory run - Implement ready stories one after another until idle.
"""

from devstory.agents.claude import ClaudeCodeClient
from devstory.git.worktree import GitWorkspace
from devstory.lib.config import ProjectConfig
from devstory.lib.constants import EXIT_OK, EXIT_TOOL_FAILURE
from devstory.lib.locking import global_lock, is_locked
from devstory.pm.store import Store
from devstory.workflow.engine import STOP_FAILED, run_until_idle


def cmd_run(args, config: ProjectConfig, store: Store, settings=None) -> int:
    main_branch = args.main_branch or config.default_branch
    workspace = GitWorkspace(config.repo_path, config.worktree_base)
    client = ClaudeCodeClient(config.agents)

    if is_locked(config.lock_dir):
        print("Another devstory run holds the project lock, waiting...")
    with global_lock(config.lock_dir):
        summary = run_until_idle(
            store,
            config.repo_path,
            main_branch,
            settings=settings,
            max_stories=args.max,
            workspace=workspace,
            client=client,
        )

    print(f"Implemented {len(summary.implemented)} story(s)"
          + (f": {', '.join(str(i) for i in summary.implemented)}" if summary.implemented else ""))
    if summary.stop_reason == STOP_FAILED:
        story = store.get_story(summary.failed)
        print(f"Stopped: story {summary.failed} failed")
        if story and story.error_message:
            print(f"  Error: {story.error_message[:200]}")
        return EXIT_TOOL_FAILURE
    print(f"Stopped: {summary.stop_reason.replace('_', ' ')}")
    return EXIT_OK
