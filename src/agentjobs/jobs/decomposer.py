"""Turns a job goal into an ordered list of agent-assigned tasks."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ..agents.base import Agent
from ..errors import DecompositionError
from ..llm.caller import split_reasoning
from ..llm.provider import PLANNING, LLMProvider, PromptContext
from ..tasks.base import PlannedTask

LOGGER = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*\n?(.*?)\n?```$", re.DOTALL | re.IGNORECASE)

PLANNING_RULES = """\
1. Break down the goal into GRANULAR, ATOMIC tasks - each task should do ONE specific thing
2. Each task should be assigned to the most appropriate agent based on capabilities
3. Tasks should be ordered logically (dependencies first)
4. An agent can have MULTIPLE tasks assigned to it - don't combine steps into one task
5. Include a clear title and description for each task
6. If a reviewer agent is available, add a final review task
7. Use the agent's id for the agentId field
8. Each task should map to roughly ONE tool call when executed"""


@dataclass
class DecompositionResult:
    tasks: List[PlannedTask] = field(default_factory=list)
    reasoning: Optional[str] = None


class GoalDecomposer:
    """Asks a provider for a task plan and validates it against the job's agents."""

    def __init__(self, provider: LLMProvider, *, tool_descriptions: Optional[Mapping[str, str]] = None) -> None:
        self.provider = provider
        self.tool_descriptions = dict(tool_descriptions or {})

    def decompose(self, goal: str, agents: Sequence[Agent], *, job_id: str = "") -> DecompositionResult:
        if not agents:
            raise DecompositionError("At least one agent is required to plan a job")
        prompt = self.build_prompt(goal, agents)
        context = PromptContext(
            agent_name="planner",
            task_id=job_id or "decomposition",
            iteration=1,
            purpose=PLANNING,
        )
        try:
            response = self.provider.generate(prompt, context)
        except Exception as exc:
            raise DecompositionError(f"Planner failed: {exc}") from exc
        result = self.parse(response, agents)
        LOGGER.info("Decomposed job %s into %d tasks", job_id or "<new>", len(result.tasks))
        return result

    def build_prompt(self, goal: str, agents: Sequence[Agent]) -> str:
        capabilities = [agent.capabilities(self.tool_descriptions) for agent in agents]
        return (
            "You are a task planning assistant. Analyze the user's goal and break it down into "
            "discrete, actionable tasks.\n\n"
            f"Available Agents:\n{json.dumps(capabilities, indent=2)}\n\n"
            f"Rules:\n{PLANNING_RULES}\n\n"
            "Respond with ONLY a valid JSON array of tasks, no markdown or explanation:\n"
            '[\n  {\n    "title": "Task title",\n'
            '    "description": "Detailed description of what this task should accomplish",\n'
            '    "agentId": "id-of-assigned-agent",\n    "order": 1\n  }\n]\n\n'
            f"Goal: {goal}"
        )

    def parse(self, response: str, agents: Sequence[Agent]) -> DecompositionResult:
        text, reasoning = split_reasoning(response or "")
        payload = _load_json(text)
        if isinstance(payload, dict):
            if payload.get("reasoning") and not reasoning:
                reasoning = str(payload["reasoning"])
            payload = payload.get("tasks")
        if not isinstance(payload, list):
            raise DecompositionError("Planner response must be a JSON array of tasks")

        known = {agent.id for agent in agents}
        tasks: List[PlannedTask] = []
        seen_orders: Dict[int, int] = {}
        for index, item in enumerate(payload, start=1):
            tasks.append(_validate_item(item, index, known, seen_orders))
        tasks.sort(key=lambda task: task.order)
        return DecompositionResult(tasks=tasks, reasoning=reasoning)


def _load_json(text: str) -> Any:
    text = text.strip()
    match = _FENCE_RE.match(text)
    if match:
        text = match.group(1).strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    # Fall back to the first JSON value embedded in prose.
    decoder = json.JSONDecoder()
    for index, char in enumerate(text):
        if char not in "[{":
            continue
        try:
            value, _ = decoder.raw_decode(text[index:])
        except json.JSONDecodeError:
            continue
        return value
    raise DecompositionError("Planner response did not contain JSON")


def _validate_item(item: Any, index: int, known: set, seen_orders: Dict[int, int]) -> PlannedTask:
    if not isinstance(item, Mapping):
        raise DecompositionError(f"Task #{index} is not an object")
    title = str(item.get("title") or "").strip()
    if not title:
        raise DecompositionError(f"Task #{index} is missing a title")
    agent_id = item.get("agentId", item.get("agent_id"))
    if agent_id is None or str(agent_id) not in known:
        raise DecompositionError(f"Task #{index} references unknown agent {agent_id!r}")
    order = _coerce_order(item.get("order"))
    if order is None:
        raise DecompositionError(f"Task #{index} has no valid order")
    if order in seen_orders:
        raise DecompositionError(f"Task #{index} reuses order {order} from task #{seen_orders[order]}")
    seen_orders[order] = index
    return PlannedTask(
        title=title,
        description=str(item.get("description") or ""),
        agent_id=str(agent_id),
        order=order,
    )


def _coerce_order(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return None
