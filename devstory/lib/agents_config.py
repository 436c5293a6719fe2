"""
Agent command configuration.

Loads .devstory/agents.yaml to decide which CLI command runs for each
agent stage. Without a config file the Claude Code CLI defaults are used.

STAGE COMMAND TEMPLATES
=======================

Templates support {variable} substitution from a context dict:
- {prompt}: the prompt text. If present in the template it is passed as a
  CLI argument; otherwise the prompt is written to the child's stdin.
- {worktree}: the story's worktree (implement only).
- {model}: model name. If the template has no {model} and a model is
  requested, "--model <name>" is appended.
"""

import logging
import re
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from devstory.lib.validate import SchemaValidationError, validate

logger = logging.getLogger(__name__)


DEFAULT_STAGE_COMMANDS = {
    "refine": "claude -p --output-format json",
    # Work item -> developer stories + dependency edges JSON

    "implement": "claude -p --output-format json --dangerously-skip-permissions",
    # Story instructions -> code changes in the worktree (cwd)
}

STAGE_REQUIRED_VARIABLES = {
    "implement": ["worktree"],
}

PROMPT_PLACEHOLDER = "__PROMPT_PLACEHOLDER__"


@dataclass
class AgentsConfig:
    """Agent configuration from agents.yaml."""
    stages: dict[str, str] = field(default_factory=lambda: DEFAULT_STAGE_COMMANDS.copy())


def load_agents_config(control_dir: Optional[Path]) -> AgentsConfig:
    """Load agents.yaml and return AgentsConfig.

    If control_dir is None or the file doesn't exist, returns defaults.
    A file that fails to parse or validate is ignored with a warning.
    """
    if control_dir is None:
        return AgentsConfig()

    config_path = control_dir / "agents.yaml"
    if not config_path.exists():
        return AgentsConfig()

    try:
        data = yaml.safe_load(config_path.read_text()) or {}
        validate(data, "agents")
    except (yaml.YAMLError, SchemaValidationError) as e:
        logger.warning(f"Failed to load {config_path}: {e}")
        return AgentsConfig()

    stages = DEFAULT_STAGE_COMMANDS.copy()
    stages.update(data.get("stages", {}))
    return AgentsConfig(stages=stages)


@dataclass
class StageCommand:
    """Result of building a stage command."""
    cmd: list[str]
    prompt_via_stdin: bool
    output_format: str | None

    def get_stdin_input(self, prompt: str) -> str | None:
        """Return prompt if it should be passed via stdin, else None."""
        return prompt if self.prompt_via_stdin else None


def get_stage_command(
    config: AgentsConfig,
    stage: str,
    context: dict[str, str] | None = None,
) -> StageCommand:
    """Build the command list for a stage with variable substitution.

    Raises:
        ValueError: If stage is unknown or required variables are missing.

    Example:
        >>> result = get_stage_command(AgentsConfig(), "implement", {"worktree": "/tmp/ws", "model": "opus"})
        >>> result.cmd[-2:]
        ['--model', 'opus']
        >>> result.prompt_via_stdin
        True
    """
    if stage not in config.stages:
        raise ValueError(f"Unknown stage: {stage}")

    context = dict(context or {})
    missing = [v for v in STAGE_REQUIRED_VARIABLES.get(stage, []) if v not in context]
    if missing:
        raise ValueError(f"Stage '{stage}' requires variables {missing} in context")

    cmd_template = config.stages[stage]
    prompt_via_stdin = "{prompt}" not in cmd_template
    model = context.pop("model", None)
    append_model = bool(model) and "{model}" not in cmd_template

    prompt_value = context.pop("prompt", None)
    if prompt_value is not None:
        cmd_template = cmd_template.replace("{prompt}", PROMPT_PLACEHOLDER)
    if model:
        cmd_template = cmd_template.replace("{model}", model)

    for key, value in context.items():
        cmd_template = cmd_template.replace(f"{{{key}}}", shlex.quote(str(value)))

    remaining_vars = re.findall(r'\{(\w+)\}', cmd_template)
    if remaining_vars:
        logger.error(f"Stage '{stage}' has unsubstituted variables: {remaining_vars}")

    cmd = shlex.split(cmd_template)
    if prompt_value is not None:
        cmd = [prompt_value if arg == PROMPT_PLACEHOLDER else arg for arg in cmd]
    if append_model:
        cmd.extend(["--model", model])

    return StageCommand(
        cmd=cmd,
        prompt_via_stdin=prompt_via_stdin,
        output_format=_detect_output_format(cmd),
    )


def _detect_output_format(cmd: list[str]) -> str | None:
    for i, part in enumerate(cmd):
        if part == "--output-format" and i + 1 < len(cmd):
            return cmd[i + 1]
        if part.startswith("--output-format="):
            return part.split("=", 1)[1]
    return None


def get_stage_binary(config: AgentsConfig, stage: str) -> str:
    """Get the binary name for a stage (first element of command)."""
    if stage not in config.stages:
        raise ValueError(f"Unknown stage: {stage}")
    parts = shlex.split(config.stages[stage])
    return parts[0] if parts else ""
