"""
Claude Code integration for devstory.

Claude Code is used for two stages:
- REFINE: break a work item into developer stories (returns JSON text)
- IMPLEMENT: carry out one story's instructions inside its worktree

Both run the CLI configured in agents.yaml (see devstory.lib.agents_config)
with the prompt on stdin to avoid argument length limits.
"""

import json
import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from devstory.lib.agents_config import (
    AgentsConfig,
    get_stage_binary,
    get_stage_command,
)
from devstory.lib.constants import LOG_PREVIEW_CHARS
from devstory.lib.errors import ExternalAgentError
from devstory.lib.process import run_process

logger = logging.getLogger(__name__)

VERSION_CHECK_TIMEOUT = 30


@dataclass
class AgentSettings:
    """Credentials and limits for one agent call.

    Values left unset fall back to ANTHROPIC_AUTH_TOKEN, ANTHROPIC_BASE_URL
    and API_TIMEOUT_MS (milliseconds) from the environment.
    """
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    timeout: Optional[float] = None  # seconds
    model: Optional[str] = None

    @classmethod
    def from_env(
        cls,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_ms: Optional[int] = None,
        model: Optional[str] = None,
        default_timeout: Optional[float] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "AgentSettings":
        environ = os.environ if environ is None else environ

        if timeout_ms is None and environ.get("API_TIMEOUT_MS"):
            try:
                timeout_ms = int(environ["API_TIMEOUT_MS"])
            except ValueError:
                logger.warning(f"Ignoring non-integer API_TIMEOUT_MS={environ['API_TIMEOUT_MS']!r}")

        return cls(
            api_key=api_key or environ.get("ANTHROPIC_AUTH_TOKEN") or None,
            base_url=base_url or environ.get("ANTHROPIC_BASE_URL") or None,
            timeout=timeout_ms / 1000 if timeout_ms else default_timeout,
            model=model or None,
        )

    def child_env(self, base: Optional[Mapping[str, str]] = None) -> dict[str, str]:
        """Environment for the agent process with credentials injected."""
        env = dict(os.environ if base is None else base)
        if self.api_key:
            env["ANTHROPIC_AUTH_TOKEN"] = self.api_key
        if self.base_url:
            env["ANTHROPIC_BASE_URL"] = self.base_url
        if self.timeout:
            env["API_TIMEOUT_MS"] = str(int(self.timeout * 1000))
        return env


@dataclass
class AgentResult:
    exit_code: int
    stdout: str
    stderr: str
    duration: float  # seconds
    timed_out: bool = False
    is_error: bool = False  # envelope reported an error despite exit 0

    @property
    def success(self) -> bool:
        return self.exit_code == 0 and not self.timed_out and not self.is_error

    @property
    def output(self) -> str:
        """Agent's answer, unwrapped from the JSON envelope when present."""
        return extract_result(self.stdout)


def envelope_is_error(stdout: str) -> bool:
    """True if stdout is a JSON wrapper with is_error set."""
    try:
        wrapper = json.loads(stdout.strip())
    except json.JSONDecodeError:
        return False
    return isinstance(wrapper, dict) and bool(wrapper.get("is_error"))


def extract_result(stdout: str) -> str:
    """Pull the "result" field out of Claude's --output-format json wrapper.

    Non-JSON output is returned as-is.
    """
    try:
        wrapper = json.loads(stdout.strip())
    except json.JSONDecodeError:
        return stdout
    if not isinstance(wrapper, dict):
        return stdout
    result = wrapper.get("result")
    return result if isinstance(result, str) else stdout


class ClaudeCodeClient:
    def __init__(
        self,
        agents_config: Optional[AgentsConfig] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.config = agents_config or AgentsConfig()
        self.cancel_event = cancel_event

    def is_available(self) -> bool:
        """True if `<binary> --version` exits 0."""
        binary = get_stage_binary(self.config, "implement")
        try:
            result = run_process([binary, "--version"], timeout=VERSION_CHECK_TIMEOUT)
        except OSError as e:
            logger.debug(f"{binary} not available: {e}")
            return False
        return result.success

    def execute(
        self,
        instructions: str,
        working_directory: Path,
        settings: Optional[AgentSettings] = None,
    ) -> AgentResult:
        """
        Run the implement stage in working_directory.

        A non-zero exit or timeout is reported in the result, not raised.

        Raises:
            ExternalAgentError: if the agent binary cannot be started
            ExecutionCancelled: if the cancel event is set while it runs
            KeyboardInterrupt: after the child is killed
        """
        settings = settings or AgentSettings()
        stage = get_stage_command(
            self.config,
            "implement",
            {"worktree": str(working_directory), "prompt": instructions, "model": settings.model},
        )
        logger.info(
            f"Executing {stage.cmd[0]} in {working_directory}: "
            f"{instructions[:LOG_PREVIEW_CHARS]}"
        )

        try:
            result = run_process(
                stage.cmd,
                cwd=Path(working_directory),
                timeout=settings.timeout,
                input=stage.get_stdin_input(instructions),
                env=settings.child_env(),
                cancel_event=self.cancel_event,
            )
        except OSError as e:
            raise ExternalAgentError(f"Failed to start {stage.cmd[0]}: {e}") from e

        is_error = stage.output_format == "json" and envelope_is_error(result.stdout)
        if is_error:
            logger.warning(f"{stage.cmd[0]} exited {result.returncode} but reported an error")
        logger.info(f"{stage.cmd[0]} exited {result.returncode} after {result.duration:.1f}s")
        return AgentResult(
            exit_code=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
            duration=result.duration,
            timed_out=result.timed_out,
            is_error=is_error,
        )

    def refine(
        self,
        prompt: str,
        settings: Optional[AgentSettings] = None,
        cwd: Optional[Path] = None,
    ) -> str:
        """
        Run the refine stage and return the agent's text answer.

        Raises:
            ExternalAgentError: if the agent cannot start, fails, times out,
                or reports an error in its JSON envelope
        """
        settings = settings or AgentSettings()
        stage = get_stage_command(self.config, "refine", {"prompt": prompt, "model": settings.model})

        try:
            result = run_process(
                stage.cmd,
                cwd=cwd,
                timeout=settings.timeout,
                input=stage.get_stdin_input(prompt),
                env=settings.child_env(),
                cancel_event=self.cancel_event,
            )
        except OSError as e:
            raise ExternalAgentError(
                f"Claude Code CLI is not available ({e}). Install: https://claude.ai/claude-code"
            ) from e

        if result.timed_out:
            raise ExternalAgentError(f"Refinement timed out after {settings.timeout}s")
        if result.returncode != 0:
            error_msg = result.stderr.strip() or result.stdout.strip() or "(no output)"
            raise ExternalAgentError(f"Refinement failed (exit {result.returncode}): {error_msg}")

        if stage.output_format == "json":
            try:
                wrapper = json.loads(result.stdout.strip())
            except json.JSONDecodeError:
                return result.stdout
            if isinstance(wrapper, dict) and wrapper.get("is_error"):
                raise ExternalAgentError(f"Claude Code CLI error: {wrapper.get('result') or wrapper}")
        return extract_result(result.stdout)
