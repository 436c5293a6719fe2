"""Git worktree operations.

Each developer story runs in its own worktree under the configured base
directory, checked out on the branch shared by its work item.
"""

import logging
import shutil
from pathlib import Path

from devstory.git.branch import branch_exists, create_branch
from devstory.git.runner import run_git
from devstory.lib.errors import WorkspaceOperationError
from devstory.pm.models import DeveloperStory

logger = logging.getLogger(__name__)

WORKTREE_TIMEOUT = 120


def worktree_path(story: DeveloperStory, base: Path) -> Path:
    """Deterministic worktree location for a story, e.g. <base>/impl-12."""
    return Path(base) / story.worktree_name


def worktree_exists(repo: Path, path: Path) -> bool:
    """True if path is a checked-out worktree (directory with a .git entry)."""
    path = Path(path)
    return path.is_dir() and (path / ".git").exists()


def create_worktree(repo: Path, branch: str, path: Path) -> None:
    """
    Check out branch into a new worktree at path.

    --force lets several stories of one work item share the branch; only one
    story runs at a time so their checkouts never race.

    Raises:
        WorkspaceOperationError: if git refuses
    """
    path = Path(path)
    if path.exists() and not (path / ".git").exists():
        _clear_stale_directory(repo, path)
    path.parent.mkdir(parents=True, exist_ok=True)
    result = run_git(
        ["worktree", "add", "--force", str(path), branch], repo, timeout=WORKTREE_TIMEOUT
    )
    if not result.success:
        raise WorkspaceOperationError("create worktree", f"{path}: {result.stderr.strip()}")
    logger.info(f"Created worktree {path} on {branch}")


def _clear_stale_directory(repo: Path, path: Path) -> None:
    """Delete a directory left behind by a half-finished removal and prune git's record of it."""
    logger.warning(f"{path} exists but is not a worktree, removing it")
    try:
        shutil.rmtree(path)
    except OSError as e:
        raise WorkspaceOperationError("create worktree", f"{path}: {e}") from e
    prune = run_git(["worktree", "prune"], repo)
    if not prune.success:
        raise WorkspaceOperationError("prune worktrees", prune.stderr.strip())


def remove_worktree(repo: Path, path: Path) -> None:
    """
    Remove a worktree and its administrative entry.

    Falls back to deleting the directory and pruning when
    `git worktree remove` fails (e.g. the directory was half-deleted).

    Raises:
        WorkspaceOperationError: if the directory cannot be removed
    """
    path = Path(path)
    result = run_git(["worktree", "remove", "--force", str(path)], repo, timeout=WORKTREE_TIMEOUT)
    if result.success:
        logger.info(f"Removed worktree {path}")
        return

    logger.warning(f"git worktree remove {path} failed ({result.stderr.strip()}), deleting directly")
    if path.exists():
        try:
            shutil.rmtree(path)
        except OSError as e:
            raise WorkspaceOperationError("remove worktree", f"{path}: {e}") from e
    prune = run_git(["worktree", "prune"], repo)
    if not prune.success:
        raise WorkspaceOperationError("prune worktrees", prune.stderr.strip())
    logger.info(f"Removed worktree {path} (directory delete + prune)")


class GitWorkspace:
    """Branch and worktree operations bound to one repository.

    Passed to the execution orchestrator so tests can substitute a fake.
    """

    def __init__(self, repo_path: Path, worktree_base: Path):
        self.repo_path = Path(repo_path)
        self.worktree_base = Path(worktree_base)

    def branch_exists(self, branch: str) -> bool:
        return branch_exists(self.repo_path, branch)

    def create_branch(self, branch: str, base: str) -> None:
        create_branch(self.repo_path, branch, base)

    def worktree_path(self, story: DeveloperStory) -> Path:
        return worktree_path(story, self.worktree_base)

    def worktree_exists(self, path: Path) -> bool:
        return worktree_exists(self.repo_path, path)

    def create_worktree(self, branch: str, path: Path) -> None:
        create_worktree(self.repo_path, branch, path)

    def remove_worktree(self, path: Path) -> None:
        remove_worktree(self.repo_path, path)
