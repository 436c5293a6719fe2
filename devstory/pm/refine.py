"""
Refinement workflow: ask the agent to break a work item into developer
stories, then persist them through the refinement translator.

Agent output goes through three layers before it is trusted:
JSON envelope -> JSON object (fenced or bare) -> JSON Schema + pydantic.
"""

import json
import logging
from pathlib import Path
from typing import Optional, Protocol

import pydantic

from devstory.agents.claude import AgentSettings, extract_result
from devstory.lib.errors import ExternalAgentError, InvalidStateTransitionError, ValidationError
from devstory.lib.validate import SchemaValidationError, validate, validate_file
from devstory.pm.models import WorkItem, WorkItemStatus, WorkItemType
from devstory.pm.store import Store
from devstory.pm.work_items import get_work_item
from devstory.workflow.refinement import RefinementProposal, RefinementResult, apply_refinement
from devstory.workflow.state_machine import can_transition, transition_work_item

logger = logging.getLogger(__name__)


class RefinementSource(Protocol):
    def refine(self, prompt: str, settings: Optional[AgentSettings] = None) -> str:
        ...


REFINEMENT_PROMPT = """\
You are an expert software architect and developer. Break the work item below
into small, self-contained developer stories that a code-generation agent can
carry out one at a time in an isolated git worktree.

Before answering, analyze the requirements: identify the specific files,
classes and methods that will need to change, and any technical
considerations or edge cases. Make reasonable assumptions for anything that
is unclear; do not ask questions.

# {type_text}: {title}

**Description:** {description}
{acceptance_section}
**Priority:** {priority} (1=highest, 9=lowest)

Story types: 0=Implementation, 1=UnitTests, 2=FeatureTests, 3=Documentation

Instructions for each story must be:
- Self-contained (include all file paths and context needed)
- Specific about what to change and where
- Scoped: implementation stories only modify implementation files, test
  stories only modify test files

Dependencies use 0-based story indices: the dependent story cannot start until
the required story is complete. No story may depend on itself and the
dependencies must not form a cycle.

Return ONLY a JSON object with this structure:
{{
  "developerStories": [
    {{"title": "...", "description": "...", "instructions": "...", "storyType": 0}}
  ],
  "dependencies": [
    {{"dependentStoryIndex": 1, "requiredStoryIndex": 0, "description": "..."}}
  ],
  "analysis": "..."
}}
"""


def build_refinement_prompt(work_item: WorkItem) -> str:
    type_text = "User Story" if work_item.type == WorkItemType.USER_STORY else "Bug"
    acceptance_section = ""
    if work_item.acceptance_criteria and work_item.acceptance_criteria.strip():
        acceptance_section = f"\n**Acceptance Criteria:**\n{work_item.acceptance_criteria}\n"
    return REFINEMENT_PROMPT.format(
        type_text=type_text,
        title=work_item.title,
        description=work_item.description,
        acceptance_section=acceptance_section,
        priority=work_item.priority,
    )


def strip_markdown_fences(text: str) -> str:
    """Return the body of the first ``` fenced block, or text unchanged."""
    text = text.strip()
    if "```" not in text:
        return text
    start = text.find("```json")
    if start == -1:
        start = text.find("```")
    newline = text.find("\n", start)
    if newline == -1:
        return text
    close = text.find("```", newline)
    if close == -1:
        return text[newline + 1:].strip()
    return text[newline + 1:close].strip()


def extract_json_object(text: str) -> str:
    """Find the outermost {...} object in text, respecting JSON strings."""
    text = strip_markdown_fences(text)
    start = text.find("{")
    if start == -1:
        return text

    depth = 0
    in_string = False
    escape = False
    for i in range(start, len(text)):
        c = text[i]
        if escape:
            escape = False
        elif c == "\\" and in_string:
            escape = True
        elif c == '"':
            in_string = not in_string
        elif not in_string:
            if c == "{":
                depth += 1
            elif c == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
    return text[start:]


def parse_refinement_output(text: str) -> RefinementProposal:
    """Parse agent output into a validated proposal.

    Raises:
        ExternalAgentError: if the output is not a valid refinement
    """
    inner = extract_result(text)
    candidate = extract_json_object(inner)
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as e:
        preview = inner.strip()[:200]
        raise ExternalAgentError(f"Refinement output is not valid JSON ({e}): {preview}") from e
    return _to_proposal(data, ExternalAgentError)


def load_proposal_file(path: Path) -> RefinementProposal:
    """Load a refinement proposal written by hand.

    Raises:
        ValidationError: if the file is missing, not JSON, or invalid
    """
    data = validate_file(Path(path), "refinement")
    return _to_proposal(data, ValidationError)


def _to_proposal(data, error_cls) -> RefinementProposal:
    try:
        validate(data, "refinement")
        return RefinementProposal.model_validate(data)
    except SchemaValidationError as e:
        raise error_cls(f"Invalid refinement: {e}") from e
    except pydantic.ValidationError as e:
        raise error_cls(f"Invalid refinement: {e}") from e


def refine_work_item(
    store: Store,
    work_item_id: int,
    client: Optional[RefinementSource] = None,
    settings: Optional[AgentSettings] = None,
    proposal: Optional[RefinementProposal] = None,
) -> RefinementResult:
    """Refine a work item into developer stories.

    Uses proposal when given, otherwise asks client. The work item moves
    to refining before the agent is called and to refined once the stories
    are stored. Any failure after that point leaves it in error with the
    message, and the exception is re-raised.

    Raises:
        NotFoundError: if the work item does not exist
        InvalidStateTransitionError: if the work item cannot be refined
    """
    item = get_work_item(store, work_item_id)
    if item.status != WorkItemStatus.REFINING and not can_transition(
        item.status, WorkItemStatus.REFINING
    ):
        raise InvalidStateTransitionError("work item", item.status, WorkItemStatus.REFINING)
    if proposal is None and client is None:
        raise ValueError("refine_work_item needs a client or a proposal")

    if item.status != WorkItemStatus.REFINING:
        item = transition_work_item(item, WorkItemStatus.REFINING)
        store.save_work_item(item)
        store.commit()

    try:
        if proposal is None:
            logger.info(f"Requesting refinement of work item {item.id} from agent")
            output = client.refine(build_refinement_prompt(item), settings)
            proposal = parse_refinement_output(output)

        result = apply_refinement(store, item, proposal)

        item = transition_work_item(item, WorkItemStatus.REFINED)
        store.save_work_item(item)
        store.commit()
    except (Exception, KeyboardInterrupt) as e:
        store.rollback()
        failed = transition_work_item(
            item, WorkItemStatus.ERROR, error_message=str(e) or type(e).__name__
        )
        store.save_work_item(failed)
        store.commit()
        logger.error(f"Refinement of work item {item.id} failed: {e}")
        raise

    result.work_item = item
    return result
