"""
Configuration loaders for devstory.

Project configuration lives in <repo>/.devstory/project.env (optional).
Any key can be overridden from the environment with a DEVSTORY_ prefix.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from devstory.lib import envparse
from devstory.lib.agents_config import AgentsConfig, load_agents_config
from devstory.lib.constants import (
    CONTROL_DIR_NAME,
    DEFAULT_BRANCH,
    DEFAULT_DB_FILENAME,
    DEFAULT_IMPLEMENT_TIMEOUT,
    DEFAULT_REFINE_TIMEOUT,
    DEFAULT_WORKTREE_DIRNAME,
)
from devstory.lib.errors import ValidationError

logger = logging.getLogger(__name__)

ENV_OVERRIDE_PREFIX = "DEVSTORY_"


@dataclass
class ProjectConfig:
    """Project-level configuration from project.env"""
    repo_path: Path
    control_dir: Path
    default_branch: str
    db_path: Path
    worktree_base: Path
    implement_timeout: int  # seconds
    refine_timeout: int  # seconds
    model: str | None = None
    agents: AgentsConfig = field(default_factory=AgentsConfig)

    @property
    def lock_dir(self) -> Path:
        return self.control_dir / "locks"


def get_control_dir(repo_path: Path) -> Path:
    """Get the .devstory directory for a repository."""
    return repo_path / CONTROL_DIR_NAME


def load_project_config(
    repo_path: Path,
    environ: Optional[Mapping[str, str]] = None,
) -> ProjectConfig:
    """Load project.env (if any) plus environment overrides.

    Relative DB_PATH / WORKTREE_BASE values are resolved against the
    repository root.

    Raises:
        ValidationError: if a numeric setting is not an integer
    """
    repo_path = Path(repo_path).resolve()
    control_dir = get_control_dir(repo_path)

    env = envparse.load_env_optional(control_dir / "project.env")
    env = envparse.apply_overrides(env, ENV_OVERRIDE_PREFIX, environ)

    db_path = _resolve(repo_path, env.get("DB_PATH"), control_dir / DEFAULT_DB_FILENAME)
    worktree_base = _resolve(
        repo_path, env.get("WORKTREE_BASE"), control_dir / DEFAULT_WORKTREE_DIRNAME
    )

    return ProjectConfig(
        repo_path=repo_path,
        control_dir=control_dir,
        default_branch=env.get("DEFAULT_BRANCH", DEFAULT_BRANCH),
        db_path=db_path,
        worktree_base=worktree_base,
        implement_timeout=_int_setting(env, "IMPLEMENT_TIMEOUT", DEFAULT_IMPLEMENT_TIMEOUT),
        refine_timeout=_int_setting(env, "REFINE_TIMEOUT", DEFAULT_REFINE_TIMEOUT),
        model=env.get("MODEL") or None,
        agents=load_agents_config(control_dir),
    )


def _resolve(repo_path: Path, value: str | None, default: Path) -> Path:
    if not value:
        return default
    path = Path(value)
    return path if path.is_absolute() else repo_path / path


def _int_setting(env: dict, key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValidationError(f"{key} must be an integer, got '{raw}'", field=key) from None
    if value <= 0:
        raise ValidationError(f"{key} must be positive, got {value}", field=key)
    return value
