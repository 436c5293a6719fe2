"""Shared constants for devstory."""

# CLI exit codes
EXIT_OK = 0
EXIT_TOOL_FAILURE = 1
EXIT_CONFIG_ERROR = 2
EXIT_NOT_FOUND = 3
EXIT_INVALID_TRANSITION = 4
EXIT_DEPENDENCY_ERROR = 5
EXIT_LOCK_TIMEOUT = 6
EXIT_CANCELLED = 130

# Priorities: 1 is highest
MIN_PRIORITY = 1
MAX_PRIORITY = 9
DEFAULT_PRIORITY = 5

# Per-project control directory, relative to the repository root
CONTROL_DIR_NAME = ".devstory"
DEFAULT_DB_FILENAME = "devstory.db"
DEFAULT_WORKTREE_DIRNAME = "worktrees"

DEFAULT_BRANCH = "main"
DEFAULT_IMPLEMENT_TIMEOUT = 1800
DEFAULT_REFINE_TIMEOUT = 600

# Truncation for instructions echoed into logs
LOG_PREVIEW_CHARS = 100
