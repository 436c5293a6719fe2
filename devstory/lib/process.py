"""
Process execution for devstory.

Single entry point for every external command (git, claude). Both the
primary and fallback paths of git operations and every agent call go
through run_process, so tests only need to patch one function.
"""

import logging
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from devstory.lib.errors import ExecutionCancelled

logger = logging.getLogger(__name__)

# How often a running child is checked for timeout/cancellation
POLL_INTERVAL = 0.5


@dataclass
class ProcessResult:
    """Result of an external command."""
    returncode: int
    stdout: str
    stderr: str
    duration: float = 0.0
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.returncode == 0 and not self.timed_out


def run_process(
    cmd: list[str],
    cwd: Optional[Path] = None,
    timeout: Optional[float] = None,
    input: Optional[str] = None,
    env: Optional[dict] = None,
    cancel_event: Optional[threading.Event] = None,
) -> ProcessResult:
    """
    Run a command, capturing output, with timeout and cancellation.

    Args:
        cmd: Command and arguments
        cwd: Working directory
        timeout: Seconds before the child is killed (None = no limit)
        input: Text written to stdin
        env: Full environment for the child (None = inherit)
        cancel_event: When set, the child is killed and ExecutionCancelled raised

    Returns:
        ProcessResult. A timeout is reported as returncode -1 with timed_out=True.

    Raises:
        FileNotFoundError: if the executable does not exist
        ExecutionCancelled: if cancel_event is set while the child runs
        KeyboardInterrupt: re-raised after the child is killed
    """
    start = time.monotonic()
    proc = subprocess.Popen(
        cmd,
        cwd=str(cwd) if cwd else None,
        stdin=subprocess.PIPE if input is not None else subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        env=env,
    )

    pending_input = input
    try:
        while True:
            try:
                stdout, stderr = proc.communicate(input=pending_input, timeout=POLL_INTERVAL)
                break
            except subprocess.TimeoutExpired:
                # Input is only sent on the first communicate() call
                pending_input = None

            if cancel_event is not None and cancel_event.is_set():
                _kill(proc)
                raise ExecutionCancelled(f"Cancelled: {cmd[0]}")

            if timeout is not None and time.monotonic() - start > timeout:
                _kill(proc)
                stdout, stderr = proc.communicate()
                logger.warning(f"{cmd[0]} timed out after {timeout}s")
                return ProcessResult(
                    returncode=-1,
                    stdout=stdout or "",
                    stderr=(stderr or "") + f"\nCommand timed out after {timeout}s",
                    duration=time.monotonic() - start,
                    timed_out=True,
                )
    except KeyboardInterrupt:
        _kill(proc)
        raise

    return ProcessResult(
        returncode=proc.returncode,
        stdout=stdout or "",
        stderr=stderr or "",
        duration=time.monotonic() - start,
    )


def _kill(proc: subprocess.Popen) -> None:
    if proc.poll() is None:
        proc.kill()
    try:
        proc.wait(timeout=5)
    except subprocess.TimeoutExpired:
        logger.warning(f"Process {proc.pid} did not exit after kill")
