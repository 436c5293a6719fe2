"""Git command runner with timeout handling."""

import logging
from dataclasses import dataclass
from pathlib import Path

from devstory.lib.process import run_process

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30


@dataclass
class GitResult:
    """Result of a git command."""
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.returncode == 0 and not self.timed_out


def run_git(
    args: list[str],
    cwd: Path,
    timeout: int = DEFAULT_TIMEOUT,
) -> GitResult:
    """
    Run a git command with timeout handling.

    Args:
        args: Git command arguments (e.g., ["worktree", "prune"])
        cwd: Repository (or worktree) the command runs against
        timeout: Timeout in seconds

    Returns:
        GitResult with returncode, stdout, stderr, and timed_out flag.
        A missing git executable is reported as returncode 127.
    """
    cmd = ["git", "-C", str(cwd)] + args
    logger.debug(f"git {' '.join(args)} (in {cwd})")
    try:
        result = run_process(cmd, timeout=timeout)
    except FileNotFoundError:
        return GitResult(returncode=127, stdout="", stderr="git executable not found")
    return GitResult(
        returncode=result.returncode,
        stdout=result.stdout,
        stderr=result.stderr,
        timed_out=result.timed_out,
    )
