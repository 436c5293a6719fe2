#!/usr/bin/env python3
"""devstory CLI entrypoint."""

import argparse
import logging
import sys
from pathlib import Path

from devstory import __version__
from devstory.agents.claude import AgentSettings
from devstory.commands import add_story as cmd_add_story_module
from devstory.commands import blocked as cmd_blocked_module
from devstory.commands import branch as cmd_branch_module
from devstory.commands import create as cmd_create_module
from devstory.commands import implement as cmd_implement_module
from devstory.commands import list as cmd_list_module
from devstory.commands import log as cmd_log_module
from devstory.commands import next as cmd_next_module
from devstory.commands import refine as cmd_refine_module
from devstory.commands import reset as cmd_reset_module
from devstory.commands import run as cmd_run_module
from devstory.commands import show as cmd_show_module
from devstory.lib.config import ProjectConfig, load_project_config
from devstory.lib.constants import (
    DEFAULT_PRIORITY,
    EXIT_CANCELLED,
    EXIT_CONFIG_ERROR,
    EXIT_DEPENDENCY_ERROR,
    EXIT_INVALID_TRANSITION,
    EXIT_LOCK_TIMEOUT,
    EXIT_NOT_FOUND,
    EXIT_TOOL_FAILURE,
)
from devstory.lib.errors import (
    DependencyError,
    ExecutionCancelled,
    ExternalAgentError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
    WorkspaceOperationError,
)
from devstory.lib.locking import LockTimeout
from devstory.pm.models import StoryType, WorkItemStatus
from devstory.pm.store import Store

logger = logging.getLogger(__name__)


def get_project_config(args) -> ProjectConfig:
    """Load project config for --repo (default: current directory)."""
    return load_project_config(Path(args.repo or Path.cwd()))


def build_agent_settings(args, config: ProjectConfig, default_timeout: int) -> AgentSettings:
    """CLI flags first, then ANTHROPIC_* / API_TIMEOUT_MS, then project defaults."""
    return AgentSettings.from_env(
        api_key=args.api_key,
        base_url=args.base_url,
        timeout_ms=args.timeout,
        model=args.model or config.model,
        default_timeout=default_timeout,
    )


def _with_store(handler, needs_settings: str | None = None):
    """Wrap a command module function with config + store setup."""
    def run(args):
        config = get_project_config(args)
        with Store(config.db_path) as store:
            if needs_settings == "implement":
                settings = build_agent_settings(args, config, config.implement_timeout)
                return handler(args, config, store, settings=settings)
            if needs_settings == "refine":
                settings = build_agent_settings(args, config, config.refine_timeout)
                return handler(args, config, store, settings=settings)
            return handler(args, config, store)
    return run


cmd_create = _with_store(cmd_create_module.cmd_create)
cmd_list = _with_store(cmd_list_module.cmd_list)
cmd_show = _with_store(cmd_show_module.cmd_show)
cmd_refine = _with_store(cmd_refine_module.cmd_refine, needs_settings="refine")
cmd_add_story = _with_store(cmd_add_story_module.cmd_add_story)
cmd_next = _with_store(cmd_next_module.cmd_next)
cmd_blocked = _with_store(cmd_blocked_module.cmd_blocked)
cmd_implement = _with_store(cmd_implement_module.cmd_implement, needs_settings="implement")
cmd_branch = _with_store(cmd_branch_module.cmd_branch)
cmd_run = _with_store(cmd_run_module.cmd_run, needs_settings="implement")
cmd_retry = _with_store(cmd_reset_module.cmd_retry)
cmd_reset = _with_store(cmd_reset_module.cmd_reset)
cmd_log = _with_store(cmd_log_module.cmd_log)


# Most specific first
EXIT_CODES = [
    (LockTimeout, EXIT_LOCK_TIMEOUT),
    (ValidationError, EXIT_CONFIG_ERROR),
    (NotFoundError, EXIT_NOT_FOUND),
    (InvalidStateTransitionError, EXIT_INVALID_TRANSITION),
    (DependencyError, EXIT_DEPENDENCY_ERROR),
    (WorkspaceOperationError, EXIT_TOOL_FAILURE),
    (ExternalAgentError, EXIT_TOOL_FAILURE),
]


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='devstory',
        description='Refine work items into developer stories and implement them with Claude Code',
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('--repo', '-C', help='Repository root (default: current directory)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')

    agent = parser.add_argument_group('agent options')
    agent.add_argument('--api-key', help='API key for Claude Code (default: $ANTHROPIC_AUTH_TOKEN)')
    agent.add_argument('--base-url', help='API base URL (default: $ANTHROPIC_BASE_URL)')
    agent.add_argument('--timeout', type=int, help='Agent timeout in milliseconds (default: $API_TIMEOUT_MS)')
    agent.add_argument('--model', help='Model passed to Claude Code')

    subparsers = parser.add_subparsers(dest='command', required=True)

    # devstory create
    p_create = subparsers.add_parser('create', help='Create a work item')
    p_create.add_argument('title', help='Work item title')
    p_create.add_argument('--description', '-d', help='Description')
    p_create.add_argument('--acceptance-criteria', '-a', help='Acceptance criteria')
    p_create.add_argument('--type', '-t', choices=['user-story', 'bug'], default='user-story')
    p_create.add_argument('--priority', '-p', type=int, default=DEFAULT_PRIORITY,
                          help='1 (highest) to 9 (lowest), default 5')
    p_create.set_defaults(func=cmd_create)

    # devstory list
    p_list = subparsers.add_parser('list', help='List work items')
    p_list.add_argument('--status', '-s', choices=[s.value for s in WorkItemStatus])
    p_list.set_defaults(func=cmd_list)

    # devstory show
    p_show = subparsers.add_parser('show', help='Show a work item and its stories')
    p_show.add_argument('id', type=int, help='Work item ID')
    p_show.set_defaults(func=cmd_show)

    # devstory refine
    p_refine = subparsers.add_parser('refine', help='Break a work item into developer stories')
    p_refine.add_argument('id', type=int, help='Work item ID')
    p_refine.add_argument('--from-file', '-f', help='Use a refinement JSON file instead of the agent')
    p_refine.set_defaults(func=cmd_refine)

    # devstory add-story
    p_add = subparsers.add_parser('add-story', help='Add a developer story by hand')
    p_add.add_argument('work_item', type=int, help='Work item ID')
    p_add.add_argument('title', help='Story title')
    p_add.add_argument('--type', '-t', default=StoryType.IMPLEMENTATION.value,
                       help='implementation, unit_tests, feature_tests or documentation')
    p_add.add_argument('--description', '-d', help='Description')
    p_add.add_argument('--instructions', '-i', help='Instructions for the agent')
    p_add.add_argument('--instructions-file', help='Read instructions from a file')
    p_add.set_defaults(func=cmd_add_story)

    # devstory next
    p_next = subparsers.add_parser('next', help='Update dependency status and show the next story')
    p_next.set_defaults(func=cmd_next)

    # devstory blocked
    p_blocked = subparsers.add_parser('blocked', help='List blocked stories')
    p_blocked.set_defaults(func=cmd_blocked)

    # devstory implement
    p_impl = subparsers.add_parser('implement', help='Implement one developer story')
    p_impl.add_argument('story', type=int, help='Developer story ID')
    p_impl.add_argument('main_branch', nargs='?', help='Base branch (default: DEFAULT_BRANCH)')
    p_impl.add_argument('--show-output', action='store_true', help="Print the agent's final answer")
    p_impl.set_defaults(func=cmd_implement)

    # devstory branch
    p_branch = subparsers.add_parser('branch', help="Create a work item's branch if missing")
    p_branch.add_argument('work_item', type=int, help='Work item ID')
    p_branch.add_argument('--base', help='Base branch (default: DEFAULT_BRANCH)')
    p_branch.set_defaults(func=cmd_branch)

    # devstory run
    p_run = subparsers.add_parser('run', help='Implement ready stories until none are left')
    p_run.add_argument('--max', type=int, help='Stop after this many stories')
    p_run.add_argument('--main-branch', help='Base branch (default: DEFAULT_BRANCH)')
    p_run.set_defaults(func=cmd_run)

    # devstory retry
    p_retry = subparsers.add_parser('retry', help='Move a failed story back to ready')
    p_retry.add_argument('story', type=int, help='Developer story ID')
    p_retry.set_defaults(func=cmd_retry)

    # devstory reset
    p_reset = subparsers.add_parser('reset', help='Move a failed work item back to pending')
    p_reset.add_argument('work_item', type=int, help='Work item ID')
    p_reset.set_defaults(func=cmd_reset)

    # devstory log
    p_log = subparsers.add_parser('log', help="Show a story's execution log")
    p_log.add_argument('story', type=int, help='Developer story ID')
    p_log.set_defaults(func=cmd_log)

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    try:
        return args.func(args)
    except (ExecutionCancelled, KeyboardInterrupt):
        print("Cancelled.", file=sys.stderr)
        return EXIT_CANCELLED
    except tuple(cls for cls, _ in EXIT_CODES) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        for cls, code in EXIT_CODES:
            if isinstance(e, cls):
                return code
        return EXIT_TOOL_FAILURE


if __name__ == '__main__':
    sys.exit(main())
