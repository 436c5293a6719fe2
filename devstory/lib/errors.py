"""
Error taxonomy for devstory.

Every failure the CLI can report maps to one of these classes. Validation,
not-found and invalid-transition errors are raised before anything is
persisted. Workspace and agent errors are raised after the affected story
has been moved to its error state.
"""


class DevstoryError(Exception):
    """Base class for all devstory errors."""


class ValidationError(DevstoryError):
    """Input failed validation (e.g. priority outside 1-9)."""

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class NotFoundError(DevstoryError):
    """A referenced entity does not exist."""

    def __init__(self, entity: str, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class InvalidStateTransitionError(DevstoryError):
    """Attempted a status change that the transition table does not allow."""

    def __init__(self, entity: str, current, target, reason: str = ""):
        self.entity = entity
        self.current = current
        self.target = target
        self.reason = reason
        super().__init__(
            f"Invalid {entity} transition: {_label(current)} -> {_label(target)}"
            + (f" ({reason})" if reason else "")
        )


class DependencyError(DevstoryError):
    """The dependency graph is invalid (self-edge or cycle)."""

    def __init__(self, message: str, cycle: list | None = None):
        self.cycle = cycle or []
        super().__init__(message)


class WorkspaceOperationError(DevstoryError):
    """A branch or worktree operation failed."""

    def __init__(self, operation: str, detail: str = ""):
        self.operation = operation
        self.detail = detail
        super().__init__(f"{operation} failed" + (f": {detail}" if detail else ""))


class ExternalAgentError(DevstoryError):
    """The code-generation agent is unavailable or produced unusable output."""


class ExecutionCancelled(Exception):
    """A long-running agent call was cancelled.

    Not a DevstoryError: callers must be able to tell a deliberate
    cancellation apart from a tool failure.
    """


def _label(status) -> str:
    return getattr(status, "value", str(status))
