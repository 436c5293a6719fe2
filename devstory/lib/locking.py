"""
Lock management for devstory.

Only one story may run at a time per repository. The scheduling check
("is a user story already in progress?") and the transition to in_progress
are a read-then-write sequence, so every command that can start work holds
the project lock around it.
"""

import fcntl
import logging
import os
import time
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)


class LockTimeout(Exception):
    """Lock acquisition timed out."""


@contextmanager
def _acquire_lock(lock_file: Path, timeout: float, lock_name: str, poll: float = 1.0):
    """
    Acquire an exclusive flock on lock_file, waiting up to timeout seconds.

    The lock file itself is never deleted; unlinking it would let two
    processes hold "exclusive" locks on different inodes with the same path.
    """
    lock_file.parent.mkdir(parents=True, exist_ok=True)

    fd = open(lock_file, 'a+')
    start = time.monotonic()

    while True:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            break
        except BlockingIOError:
            if time.monotonic() - start >= timeout:
                fd.close()
                raise LockTimeout(f"Could not acquire {lock_name} within {timeout}s")
            time.sleep(poll)

    try:
        fd.seek(0)
        fd.truncate()
        fd.write(f"{os.getpid()}\n")
        fd.flush()
        logger.debug(f"Acquired {lock_name}")
        yield
    finally:
        fcntl.flock(fd, fcntl.LOCK_UN)
        fd.close()
        logger.debug(f"Released {lock_name}")


@contextmanager
def global_lock(lock_dir: Path, timeout: float = 10):
    """
    Acquire the project-wide scheduling lock, yield, release on exit.

    Held around select-next/implement so two invocations against the same
    repository cannot both move a story to in_progress.
    """
    with _acquire_lock(lock_dir / "scheduler.lock", timeout, "scheduler lock"):
        yield


def is_locked(lock_dir: Path) -> bool:
    """Check whether another process holds the scheduling lock."""
    lock_file = lock_dir / "scheduler.lock"
    if not lock_file.exists():
        return False
    with open(lock_file, 'r') as fd:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            return True
        fcntl.flock(fd, fcntl.LOCK_UN)
    return False
