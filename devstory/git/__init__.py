"""Git operations for devstory.

Return type conventions:
- Functions returning GitResult: Caller must check .success before using output.
- Functions returning bool: True on success/condition met, False otherwise.
- Mutating operations (create_branch, create_worktree, remove_worktree)
  return None and raise WorkspaceOperationError on failure.
"""

from devstory.git.runner import GitResult, run_git
from devstory.git.branch import (
    branch_exists,
    create_branch,
    get_commit_sha,
)
from devstory.git.worktree import (
    GitWorkspace,
    create_worktree,
    remove_worktree,
    worktree_exists,
    worktree_path,
)

__all__ = [
    # runner
    "GitResult",
    "run_git",
    # branch
    "branch_exists",
    "create_branch",
    "get_commit_sha",
    # worktree
    "GitWorkspace",
    "create_worktree",
    "remove_worktree",
    "worktree_exists",
    "worktree_path",
]
