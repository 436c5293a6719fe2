"""devstory: refine work items into developer stories and run them one at a time.

A work item (user story or bug) is broken down by an external agent into a
dependency graph of developer stories. Stories are scheduled by priority once
their direct dependencies are completed, and each one is executed by the
Claude Code CLI inside its own git worktree on the work item's branch.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
