"""Dependency resolution: which developer story runs next.

Stories form a DAG through DeveloperStoryDependency edges (dependent ->
required). A story is runnable when it is ready and every story it
requires is completed. Only one user story may be in progress at a time:
while one is, select_next offers nothing and the scheduling loop finishes
that item through select_next_for_work_item.
"""

import logging
from dataclasses import dataclass, field
from typing import Hashable, Iterable, Optional

from devstory.lib.constants import DEFAULT_PRIORITY
from devstory.pm.models import DeveloperStory, StoryStatus, WorkItem, WorkItemType
from devstory.pm.store import Store
from devstory.workflow.state_machine import transition_story

logger = logging.getLogger(__name__)


@dataclass
class BlockedStory:
    story: DeveloperStory
    blockers: list[DeveloperStory] = field(default_factory=list)


def get_active_user_story(store: Store) -> Optional[WorkItem]:
    """The in-progress user story, if any. Bugs never count."""
    for item in store.get_in_progress_work_items():
        if item.type == WorkItemType.USER_STORY:
            return item
    return None


def select_next(store: Store) -> Optional[DeveloperStory]:
    """Return the next runnable story, or None.

    Candidates are ready stories whose direct dependencies are completed,
    ordered by story priority, then parent priority, then id. While a
    user story is in progress nothing is selectable.
    """
    active = get_active_user_story(store)
    if active is not None:
        logger.info(f"User story {active.id} is in progress, nothing selectable")
        return None

    return _first_by_priority(store, store.get_ready_with_resolved_dependencies())


def select_next_for_work_item(store: Store, work_item_id: int) -> Optional[DeveloperStory]:
    """Next runnable story belonging to one work item, same ordering as select_next."""
    candidates = [
        s for s in store.get_ready_with_resolved_dependencies()
        if s.work_item_id == work_item_id
    ]
    return _first_by_priority(store, candidates)


def _first_by_priority(store: Store, candidates: list[DeveloperStory]) -> Optional[DeveloperStory]:
    if not candidates:
        logger.debug("No ready stories available")
        return None

    parent_priority: dict[int, int] = {}
    for story in candidates:
        if story.work_item_id not in parent_priority:
            parent = store.get_work_item(story.work_item_id)
            parent_priority[story.work_item_id] = parent.priority if parent else DEFAULT_PRIORITY

    candidates.sort(key=lambda s: (s.priority, parent_priority[s.work_item_id], s.id))
    return candidates[0]


def update_dependency_statuses(store: Store) -> list[DeveloperStory]:
    """Recompute ready/blocked for every pending or blocked story.

    No dependencies, or all completed, means ready; otherwise blocked.
    Stories whose status would not change are left alone. All changes are
    committed together.

    Returns:
        The stories whose status changed, in their new state
    """
    changed: list[DeveloperStory] = []
    for story in store.list_stories(status=[StoryStatus.PENDING, StoryStatus.BLOCKED]):
        required = store.get_required_stories(story.id)
        if all(r.status == StoryStatus.COMPLETED for r in required):
            target = StoryStatus.READY
        else:
            target = StoryStatus.BLOCKED

        if story.status == target:
            continue

        updated = transition_story(story, target)
        store.save_story(updated)
        changed.append(updated)

    store.commit()
    if changed:
        logger.info(f"Updated dependency status of {len(changed)} stories")
    return changed


def get_blocked_stories(store: Store) -> list[BlockedStory]:
    """Blocked stories with the required stories that are not yet completed."""
    result = []
    for story in store.list_stories(status=StoryStatus.BLOCKED):
        blockers = [
            r for r in store.get_required_stories(story.id)
            if r.status != StoryStatus.COMPLETED
        ]
        result.append(BlockedStory(story=story, blockers=blockers))
    return result


def find_cycle(edges: Iterable[tuple[Hashable, Hashable]]) -> Optional[list]:
    """Find one cycle in a directed graph given as (dependent, required) pairs.

    Returns:
        The cycle as a node list whose first and last entries are equal,
        e.g. [0, 1, 0], or None if the graph is acyclic.
    """
    graph: dict = {}
    for dependent, required in edges:
        graph.setdefault(dependent, []).append(required)
        graph.setdefault(required, [])

    WHITE, GREY, BLACK = 0, 1, 2
    colour = {node: WHITE for node in graph}
    path: list = []

    def visit(node) -> Optional[list]:
        colour[node] = GREY
        path.append(node)
        for nxt in graph[node]:
            if colour[nxt] == GREY:
                return path[path.index(nxt):] + [nxt]
            if colour[nxt] == WHITE:
                cycle = visit(nxt)
                if cycle:
                    return cycle
        path.pop()
        colour[node] = BLACK
        return None

    for node in graph:
        if colour[node] == WHITE:
            cycle = visit(node)
            if cycle:
                return cycle
    return None
