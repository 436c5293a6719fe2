"""Work item and developer story state machines using the transitions library.

The transition tables below are the single source of truth for which status
changes are legal. state_machine.py answers questions against them and
applies them to entity snapshots.

Usage:
    from devstory.workflow.fsm import StoryMachine

    machine = StoryMachine("ready", name="story 7")
    machine.start()      # ready -> in_progress
    machine.complete()   # in_progress -> completed
"""

import logging
from typing import Callable

from transitions import Machine

logger = logging.getLogger(__name__)


WORK_ITEM_STATES = [
    "pending",
    "refining",
    "refined",
    "in_progress",
    "completed",
    "error",
]

STORY_STATES = [
    "pending",
    "ready",
    "blocked",
    "in_progress",
    "completed",
    "error",
]

# Each trigger becomes a method on the machine model
WORK_ITEM_TRANSITIONS = [
    {"trigger": "start_refining", "source": "pending", "dest": "refining"},
    {"trigger": "finish_refining", "source": "refining", "dest": "refined"},
    {"trigger": "start", "source": "refined", "dest": "in_progress"},
    {"trigger": "complete", "source": "in_progress", "dest": "completed"},

    # Every non-terminal state can fail
    {"trigger": "fail", "source": "pending", "dest": "error"},
    {"trigger": "fail", "source": "refining", "dest": "error"},
    {"trigger": "fail", "source": "refined", "dest": "error"},
    {"trigger": "fail", "source": "in_progress", "dest": "error"},

    # Recovery
    {"trigger": "reset", "source": "error", "dest": "pending"},
    {"trigger": "start_refining", "source": "error", "dest": "refining"},
]

STORY_TRANSITIONS = [
    # Initial status after refinement
    {"trigger": "mark_ready", "source": "pending", "dest": "ready"},
    {"trigger": "block", "source": "pending", "dest": "blocked"},
    {"trigger": "fail", "source": "pending", "dest": "error"},

    {"trigger": "start", "source": "ready", "dest": "in_progress"},
    {"trigger": "block", "source": "ready", "dest": "blocked"},
    {"trigger": "fail", "source": "ready", "dest": "error"},

    {"trigger": "complete", "source": "in_progress", "dest": "completed"},
    {"trigger": "fail", "source": "in_progress", "dest": "error"},
    {"trigger": "block", "source": "in_progress", "dest": "blocked"},

    # Dependencies resolved
    {"trigger": "mark_ready", "source": "blocked", "dest": "ready"},
    {"trigger": "fail", "source": "blocked", "dest": "error"},

    # Operator retry
    {"trigger": "reset", "source": "error", "dest": "pending"},
    {"trigger": "retry", "source": "error", "dest": "ready"},
]


def _build_trigger_lookup(transitions: list[dict]) -> dict[tuple[str, str], str]:
    """Build lookup from (source, dest) -> trigger name."""
    lookup: dict[tuple[str, str], str] = {}
    for t in transitions:
        key = (t["source"], t["dest"])
        if key not in lookup:
            lookup[key] = t["trigger"]
    return lookup


WORK_ITEM_TRIGGER_FOR = _build_trigger_lookup(WORK_ITEM_TRANSITIONS)
STORY_TRIGGER_FOR = _build_trigger_lookup(STORY_TRANSITIONS)


class _EntityMachine:
    """Shared wiring for the two machines.

    The model holds only the status string; persistence is the caller's job.
    """

    STATES: list[str] = []
    TRANSITIONS: list[dict] = []

    def __init__(
        self,
        initial: str,
        name: str = "",
        on_transition: Callable[[str, str, str], None] | None = None,
    ):
        if initial not in self.STATES:
            raise ValueError(f"Unknown state '{initial}' for {type(self).__name__}")
        self.name = name
        self.on_transition = on_transition
        self.machine = Machine(
            model=self,
            states=self.STATES,
            transitions=self.TRANSITIONS,
            initial=initial,
            auto_transitions=False,
            send_event=True,
            after_state_change="on_state_change",
        )

    def on_state_change(self, event) -> None:
        from_state = event.transition.source
        to_state = event.transition.dest
        trigger = event.event.name

        logger.debug(f"[FSM] {self.name}: {from_state} -> {to_state} ({trigger})")

        if self.on_transition:
            self.on_transition(from_state, to_state, trigger)


class WorkItemMachine(_EntityMachine):
    STATES = WORK_ITEM_STATES
    TRANSITIONS = WORK_ITEM_TRANSITIONS


class StoryMachine(_EntityMachine):
    STATES = STORY_STATES
    TRANSITIONS = STORY_TRANSITIONS
