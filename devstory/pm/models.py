"""
Data models for devstory.

A WorkItem (user story or bug) is refined into DeveloperStory rows linked
by DeveloperStoryDependency edges. ExecutionLog rows record what happened
to each story while it ran. Entities are plain dataclasses; status changes
go through devstory.workflow.state_machine, never direct assignment.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from devstory.lib.constants import DEFAULT_PRIORITY


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkItemType(Enum):
    USER_STORY = "user_story"
    BUG = "bug"


class WorkItemStatus(Enum):
    PENDING = "pending"
    REFINING = "refining"
    REFINED = "refined"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ERROR = "error"


class StoryType(Enum):
    IMPLEMENTATION = "implementation"
    UNIT_TESTS = "unit_tests"
    FEATURE_TESTS = "feature_tests"
    DOCUMENTATION = "documentation"


class StoryStatus(Enum):
    PENDING = "pending"
    READY = "ready"
    BLOCKED = "blocked"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ERROR = "error"


class ExecutionEventType(Enum):
    STARTED = "started"
    WORKTREE_CREATED = "worktree_created"
    WORKTREE_REMOVED = "worktree_removed"
    COMPLETED = "completed"
    FAILED = "failed"


# Refinement agents number story types 0-3 in this order
STORY_TYPE_CODES = [
    StoryType.IMPLEMENTATION,
    StoryType.UNIT_TESTS,
    StoryType.FEATURE_TESTS,
    StoryType.DOCUMENTATION,
]

WORKTREE_PREFIXES = {
    StoryType.IMPLEMENTATION: "impl",
    StoryType.UNIT_TESTS: "unit",
    StoryType.FEATURE_TESTS: "feat",
    StoryType.DOCUMENTATION: "docs",
}


def parse_story_type(value) -> StoryType:
    """Parse a story type from its value, name, or 0-based integer code.

    Raises:
        ValueError: if the value matches no story type
    """
    if isinstance(value, StoryType):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Unknown story type: {value!r}")
    if isinstance(value, int):
        if 0 <= value < len(STORY_TYPE_CODES):
            return STORY_TYPE_CODES[value]
        raise ValueError(f"Unknown story type code: {value}")

    text = str(value).strip()
    if text.isdigit():
        return parse_story_type(int(text))
    normalized = text.lower().replace("-", "_").replace(" ", "_")
    for story_type in StoryType:
        if normalized in (story_type.value, story_type.name.lower()):
            return story_type
    # CamelCase names such as "UnitTests"
    compact = text.lower().replace("_", "").replace("-", "").replace(" ", "")
    for story_type in StoryType:
        if compact == story_type.value.replace("_", ""):
            return story_type
    raise ValueError(f"Unknown story type: {value!r}")


@dataclass
class WorkItem:
    """A top-level unit of requested work.

    At most one work item of type user_story may be in_progress at a time;
    bugs are exempt.
    """
    title: str
    description: str
    type: WorkItemType = WorkItemType.USER_STORY
    acceptance_criteria: Optional[str] = None
    priority: int = DEFAULT_PRIORITY           # 1 (highest) .. 9
    status: WorkItemStatus = WorkItemStatus.PENDING
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    error_message: Optional[str] = None
    id: Optional[int] = None

    @property
    def branch_prefix(self) -> str:
        return "us" if self.type == WorkItemType.USER_STORY else "bug"

    @property
    def branch_name(self) -> str:
        """Branch shared by every story of this work item."""
        return f"{self.branch_prefix}-{self.id}"


@dataclass
class DeveloperStory:
    """One schedulable unit of execution belonging to a WorkItem."""
    work_item_id: int
    story_type: StoryType
    title: str
    description: str
    instructions: str                          # Handed verbatim to the agent
    priority: int = DEFAULT_PRIORITY
    status: StoryStatus = StoryStatus.PENDING
    git_branch: Optional[str] = None
    git_worktree: Optional[str] = None         # Set only while a worktree exists
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    metadata: dict = field(default_factory=dict)
    id: Optional[int] = None

    @property
    def worktree_name(self) -> str:
        return f"{WORKTREE_PREFIXES[self.story_type]}-{self.id}"


@dataclass
class DeveloperStoryDependency:
    """Edge: dependent story cannot run until required story is completed."""
    dependent_story_id: int
    required_story_id: int
    description: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    id: Optional[int] = None


@dataclass(frozen=True)
class ExecutionLog:
    """Append-only audit entry for one story."""
    developer_story_id: int
    event_type: ExecutionEventType
    timestamp: datetime = field(default_factory=utcnow)
    details: Optional[str] = None
    error_message: Optional[str] = None
    metadata: Optional[dict] = None
    id: Optional[int] = None
