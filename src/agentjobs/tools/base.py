"""Base classes for tools and the per-execution toolset."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional


@dataclass
class ToolContext:
    """Metadata passed to tool invocations."""

    agent_name: str
    task_id: str
    iteration: int
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass
class ToolResult:
    """Result returned by a tool."""

    content: str
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass
class ToolCallRecord:
    """One tool call observed during a task attempt."""

    tool_name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    result: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tool_name": self.tool_name,
            "arguments": dict(self.arguments),
            "result": self.result,
            "error": self.error,
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ToolCallRecord":
        return cls(
            tool_name=str(data["tool_name"]),
            arguments=dict(data.get("arguments") or {}),
            result=data.get("result"),
            error=data.get("error"),
        )


class Tool:
    """Base tool class."""

    name: str
    description: str

    def __init__(self, name: str, description: str | None = None, **kwargs: object) -> None:
        self.name = name
        self.description = description or self.__class__.__doc__ or ""
        self.config = kwargs

    def connect(self) -> None:
        """Acquire external resources before an execution uses the tool."""

    def disconnect(self) -> None:
        """Release whatever :meth:`connect` acquired."""

    def run(self, *, input_text: str, context: ToolContext) -> ToolResult:  # pragma: no cover - abstract
        raise NotImplementedError


ToolCallListener = Callable[[ToolCallRecord], None]


def format_tool_input(arguments: Mapping[str, Any]) -> str:
    """Collapse call arguments into the single text input a tool receives."""

    if set(arguments) == {"input"} and isinstance(arguments["input"], str):
        return arguments["input"]
    if not arguments:
        return ""
    return json.dumps(dict(arguments), default=str)


class Toolset:
    """Tools opened for one execution; records every call in the order observed."""

    def __init__(
        self,
        tools: Mapping[str, Tool],
        *,
        agent_name: str,
        task_id: str,
        user_id: str | None = None,
        listener: ToolCallListener | None = None,
    ) -> None:
        self._tools = dict(tools)
        self.agent_name = agent_name
        self.task_id = task_id
        self.user_id = user_id
        self._listener = listener
        self.calls: List[ToolCallRecord] = []

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    @property
    def names(self) -> List[str]:
        return list(self._tools)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def describe(self) -> Dict[str, str]:
        return {name: tool.description or name for name, tool in self._tools.items()}

    def call(self, name: str, arguments: Mapping[str, Any] | None = None, *, step: int = 0) -> ToolCallRecord:
        """Run a tool and record its result, or the error it raised."""

        record = ToolCallRecord(tool_name=name, arguments=dict(arguments or {}))
        tool = self._tools.get(name)
        if tool is None:
            record.error = f"Unknown tool '{name}'"
        else:
            metadata = {"tool": name}
            if self.user_id:
                metadata["user_id"] = self.user_id
            try:
                result = tool.run(
                    input_text=format_tool_input(record.arguments),
                    context=ToolContext(
                        agent_name=self.agent_name,
                        task_id=self.task_id,
                        iteration=step,
                        metadata=metadata,
                    ),
                )
                record.result = result.content
            except Exception as exc:
                record.error = f"{type(exc).__name__}: {exc}"
        self.calls.append(record)
        if self._listener is not None:
            self._listener(record)
        return record
