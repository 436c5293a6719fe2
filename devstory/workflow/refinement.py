"""Turn a refinement proposal into persisted developer stories and edges.

A proposal refers to stories by their 0-based position in the list, so
edges are validated against positions before any row exists. Self-edges
and out-of-range indices are skipped, duplicates collapse to one edge, and
a cycle rejects the whole proposal.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from devstory.lib.errors import DependencyError
from devstory.pm.models import (
    DeveloperStory,
    DeveloperStoryDependency,
    StoryStatus,
    StoryType,
    WorkItem,
    parse_story_type,
)
from devstory.pm.store import Store
from devstory.workflow.resolution import find_cycle
from devstory.workflow.state_machine import transition_story

logger = logging.getLogger(__name__)


class StorySpec(BaseModel):
    """One story as proposed by the refinement agent."""
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(..., min_length=1)
    description: str = Field(default="")
    instructions: str = Field(..., min_length=1)
    story_type: StoryType = Field(default=StoryType.IMPLEMENTATION, alias="storyType")

    @field_validator("description", mode="before")
    @classmethod
    def _none_to_empty(cls, v):
        return v or ""

    @field_validator("story_type", mode="before")
    @classmethod
    def _parse_story_type(cls, v):
        return parse_story_type(v)


class EdgeSpec(BaseModel):
    """Dependency between two proposed stories, by list position."""
    model_config = ConfigDict(populate_by_name=True)

    dependent_story_index: int = Field(..., alias="dependentStoryIndex")
    required_story_index: int = Field(..., alias="requiredStoryIndex")
    description: Optional[str] = None


class RefinementProposal(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    developer_stories: list[StorySpec] = Field(..., min_length=1, alias="developerStories")
    dependencies: list[EdgeSpec] = Field(default_factory=list)
    analysis: Optional[str] = None

    @field_validator("dependencies", mode="before")
    @classmethod
    def _none_to_list(cls, v):
        return v or []


@dataclass
class SkippedEdge:
    edge: EdgeSpec
    reason: str


@dataclass
class RefinementResult:
    work_item: WorkItem
    stories: list[DeveloperStory]
    dependencies: list[DeveloperStoryDependency]
    analysis: Optional[str] = None
    skipped_edges: list[SkippedEdge] = field(default_factory=list)


def validate_edges(proposal: RefinementProposal) -> tuple[list[EdgeSpec], list[SkippedEdge]]:
    """Split proposed edges into usable ones and skipped ones."""
    count = len(proposal.developer_stories)
    kept: list[EdgeSpec] = []
    skipped: list[SkippedEdge] = []
    seen: set[tuple[int, int]] = set()

    for edge in proposal.dependencies:
        dep, req = edge.dependent_story_index, edge.required_story_index
        if not (0 <= dep < count and 0 <= req < count):
            logger.error(
                f"Dependency index out of range: {dep} -> {req} "
                f"(proposal has {count} stories), skipping"
            )
            skipped.append(SkippedEdge(edge, "index out of range"))
        elif dep == req:
            logger.warning(f"Story {dep} cannot depend on itself, skipping edge")
            skipped.append(SkippedEdge(edge, "self-dependency"))
        elif (dep, req) in seen:
            logger.debug(f"Duplicate dependency {dep} -> {req}, skipping")
            skipped.append(SkippedEdge(edge, "duplicate"))
        else:
            seen.add((dep, req))
            kept.append(edge)

    return kept, skipped


def apply_refinement(
    store: Store,
    work_item: WorkItem,
    proposal: RefinementProposal,
) -> RefinementResult:
    """Persist a proposal's stories and edges under work_item.

    Stories inherit the work item's priority. A story with no incoming
    edge starts ready, otherwise blocked. Everything is committed in one
    unit of work.

    Raises:
        DependencyError: if the usable edges contain a cycle (nothing is written)
    """
    edges, skipped = validate_edges(proposal)

    cycle = find_cycle((e.dependent_story_index, e.required_story_index) for e in edges)
    if cycle:
        path = " -> ".join(str(i) for i in cycle)
        raise DependencyError(f"Refinement proposal has a dependency cycle: {path}", cycle=cycle)

    has_incoming = {e.dependent_story_index for e in edges}

    with store.unit_of_work():
        stories: list[DeveloperStory] = []
        for index, spec in enumerate(proposal.developer_stories):
            story = store.add_story(DeveloperStory(
                work_item_id=work_item.id,
                story_type=spec.story_type,
                title=spec.title,
                description=spec.description,
                instructions=spec.instructions,
                priority=work_item.priority,
                status=StoryStatus.PENDING,
                metadata={"refinement_index": index},
            ))
            stories.append(story)

        dependencies = [
            store.add_dependency(DeveloperStoryDependency(
                dependent_story_id=stories[e.dependent_story_index].id,
                required_story_id=stories[e.required_story_index].id,
                description=e.description,
            ))
            for e in edges
        ]

        for index, story in enumerate(stories):
            target = StoryStatus.BLOCKED if index in has_incoming else StoryStatus.READY
            stories[index] = transition_story(story, target)
            store.save_story(stories[index])

    logger.info(
        f"Work item {work_item.id}: created {len(stories)} stories, "
        f"{len(dependencies)} dependencies ({len(skipped)} skipped)"
    )
    return RefinementResult(
        work_item=work_item,
        stories=stories,
        dependencies=dependencies,
        analysis=proposal.analysis,
        skipped_edges=skipped,
    )
