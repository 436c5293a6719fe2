"""
devstory branch - Ensure a work item's branch exists.
"""

from devstory.git.worktree import GitWorkspace
from devstory.lib.config import ProjectConfig
from devstory.pm.store import Store
from devstory.workflow.implement import ensure_branch_for_work_item


def cmd_branch(args, config: ProjectConfig, store: Store) -> int:
    base = args.base or config.default_branch
    workspace = GitWorkspace(config.repo_path, config.worktree_base)
    branch = ensure_branch_for_work_item(store, args.work_item, config.repo_path, base, workspace)
    print(f"Branch for work item {args.work_item}: {branch}")
    return 0
