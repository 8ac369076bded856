"""Provider-backed tool-calling loop."""

from __future__ import annotations

import json
import textwrap
from dataclasses import dataclass
from typing import Any, Dict, List

from ..errors import ToolStepLimitError
from ..llm.caller import ToolCallOutcome, split_reasoning
from ..llm.provider import TASK, LLMProvider, PromptContext
from ..tools.base import Toolset


@dataclass
class AgentAction:
    """Parsed output from the model."""

    thought: str
    action: str
    action_input: Any
    answer: str | None = None

    @property
    def is_final(self) -> bool:
        return self.action == "final"


class PlanningLoop:
    """Simple ReAct-style planning loop over a text-only provider."""

    def __init__(
        self,
        provider: LLMProvider,
        *,
        instructions: str,
        prompt: str,
        toolset: Toolset,
        max_steps: int,
    ) -> None:
        self.provider = provider
        self.instructions = instructions
        self.prompt = prompt
        self.toolset = toolset
        self.max_steps = max_steps
        self.trace: List[str] = []
        self.thoughts: List[str] = []

    def execute(self) -> ToolCallOutcome:
        for iteration in range(1, self.max_steps + 2):
            context = PromptContext(
                agent_name=self.toolset.agent_name,
                task_id=self.toolset.task_id,
                iteration=iteration,
                purpose=TASK,
            )
            response = self.provider.generate(self._build_prompt(iteration), context)
            self.trace.append(f"model@{iteration}: {response}")
            action = self._parse_response(response)
            if action.thought:
                self.thoughts.append(action.thought)
            if action.is_final:
                answer = action.answer if action.answer is not None else action.action_input
                return ToolCallOutcome(
                    text=str(answer or ""),
                    reasoning="\n".join(self.thoughts) or None,
                    tool_calls=list(self.toolset.calls),
                )
            if iteration > self.max_steps:
                break
            self._invoke_tool(action, iteration)
        raise ToolStepLimitError(f"No final answer after {self.max_steps} tool steps")

    def _build_prompt(self, iteration: int) -> str:
        tools_desc = "\n".join(f"- {name}: {desc}" for name, desc in self.toolset.describe().items())
        observations = "\n".join(
            f"{call.tool_name}({json.dumps(call.arguments, default=str)}) => "
            + (f"ERROR {call.error}" if call.error else str(call.result))
            for call in self.toolset.calls
        )
        protocol = textwrap.dedent(
            """
            You MUST respond using JSON with keys thought, action, input, answer.
            Set action to a tool name to call it with input, or to "final" together with answer.
            """
        ).strip()
        return "\n\n".join(
            [
                self.instructions,
                self.prompt,
                protocol,
                f"Tools available:\n{tools_desc or '- none'}",
                f"Tool results so far:\n{observations or 'none'}",
                f"Step: {iteration} of {self.max_steps + 1}",
            ]
        )

    def _parse_response(self, response: str) -> AgentAction:
        text, reasoning = split_reasoning(response)
        if text.startswith("```"):
            text = text.strip("`")
            if text.lower().startswith("json"):
                text = text[4:]
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            payload = None
        if not isinstance(payload, dict):
            # Treat as direct answer
            return AgentAction(
                thought=reasoning or "Responding directly",
                action="final",
                action_input=text,
                answer=text,
            )
        thought = str(payload.get("thought", "") or "")
        if reasoning:
            thought = f"{reasoning}\n{thought}".strip()
        return AgentAction(
            thought=thought,
            action=str(payload.get("action", "final") or "final"),
            action_input=payload.get("input", ""),
            answer=payload.get("answer"),
        )

    def _invoke_tool(self, action: AgentAction, iteration: int) -> None:
        arguments: Dict[str, Any]
        if isinstance(action.action_input, dict):
            arguments = dict(action.action_input)
        elif action.action_input in (None, ""):
            arguments = {}
        else:
            arguments = {"input": action.action_input if isinstance(action.action_input, str) else json.dumps(action.action_input)}
        self.toolset.call(action.action, arguments, step=iteration)


class ProviderToolCaller:
    """Tool caller that drives a :class:`PlanningLoop` for every invocation."""

    def __init__(self, provider: LLMProvider) -> None:
        self.provider = provider

    def execute_with_tools(
        self,
        instructions: str,
        prompt: str,
        toolset: Toolset,
        max_steps: int,
    ) -> ToolCallOutcome:
        loop = PlanningLoop(
            self.provider,
            instructions=instructions,
            prompt=prompt,
            toolset=toolset,
            max_steps=max_steps,
        )
        return loop.execute()
