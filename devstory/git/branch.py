"""Git branch operations."""

import logging
from pathlib import Path

from devstory.git.runner import run_git
from devstory.lib.errors import WorkspaceOperationError

logger = logging.getLogger(__name__)


def branch_exists(repo: Path, branch: str) -> bool:
    """Check if a local branch exists."""
    result = run_git(["show-ref", "--verify", "--quiet", f"refs/heads/{branch}"], repo)
    return result.success


def get_commit_sha(repo: Path, ref: str = "HEAD") -> str | None:
    """Resolve a ref to a commit SHA."""
    result = run_git(["rev-parse", "--verify", f"{ref}^{{commit}}"], repo)
    if result.success:
        return result.stdout.strip() or None
    return None


def create_branch(repo: Path, branch: str, base: str) -> None:
    """
    Create branch at base without checking it out.

    Tries `git branch` first; if that fails, resolves base and writes the
    ref directly with `git update-ref`.

    Raises:
        WorkspaceOperationError: if both paths fail
    """
    result = run_git(["branch", branch, base], repo)
    if result.success:
        logger.info(f"Created branch {branch} from {base}")
        return

    logger.warning(
        f"git branch {branch} {base} failed ({result.stderr.strip()}), trying update-ref"
    )
    sha = get_commit_sha(repo, base)
    if sha is None:
        raise WorkspaceOperationError(
            "create branch", f"{branch}: cannot resolve base '{base}': {result.stderr.strip()}"
        )
    fallback = run_git(["update-ref", f"refs/heads/{branch}", sha, ""], repo)
    if not fallback.success:
        raise WorkspaceOperationError(
            "create branch", f"{branch}: {fallback.stderr.strip() or result.stderr.strip()}"
        )
    logger.info(f"Created branch {branch} at {sha[:12]} via update-ref")
