"""Contract for the reasoning-with-tools collaborator used to execute tasks."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Tuple

from ..tools.base import ToolCallRecord, Toolset

_THINK_RE = re.compile(r"<think>(.*?)</think>", re.DOTALL | re.IGNORECASE)


@dataclass
class ToolCallOutcome:
    """What a tool-calling invocation produced."""

    text: str
    reasoning: Optional[str] = None
    tool_calls: List[ToolCallRecord] = field(default_factory=list)


class ToolCaller(Protocol):
    """Runs one instruction + prompt against a model that may call tools.

    Implementations route every tool call through ``toolset.call`` so the calls
    are recorded in order, stop after ``max_steps`` tool-call rounds, and raise
    on any failure instead of returning a partial answer.
    """

    def execute_with_tools(
        self,
        instructions: str,
        prompt: str,
        toolset: Toolset,
        max_steps: int,
    ) -> ToolCallOutcome:  # pragma: no cover - interface
        ...


def split_reasoning(text: str) -> Tuple[str, Optional[str]]:
    """Separate ``<think>`` blocks emitted by reasoning models from the answer."""

    thoughts = [match.strip() for match in _THINK_RE.findall(text or "")]
    remainder = _THINK_RE.sub("", text or "").strip()
    reasoning = "\n".join(item for item in thoughts if item) or None
    return remainder, reasoning
