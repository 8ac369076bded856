"""Autogen-powered tool caller backed by a local or hosted chat model."""

from __future__ import annotations

import itertools
from typing import Any, Dict, List, Optional

from autogen import AssistantAgent, UserProxyAgent, register_function

from ..tools.base import Toolset
from .caller import ToolCallOutcome, split_reasoning


class AutogenToolCaller:
    """Runs a task prompt through an autogen assistant whose functions are the toolset."""

    def __init__(
        self,
        model: str = "llama3",
        *,
        host: str = "http://127.0.0.1:11434",
        api_type: str = "ollama",
        api_key: str = "NA",
        timeout: float = 120,
    ) -> None:
        self.model = model
        self.host = host
        self.api_type = api_type
        self.api_key = api_key
        self.timeout = timeout

    def execute_with_tools(
        self,
        instructions: str,
        prompt: str,
        toolset: Toolset,
        max_steps: int,
    ) -> ToolCallOutcome:
        assistant = AssistantAgent(
            name=f"{_safe_name(toolset.agent_name)}_assistant",
            llm_config={
                "timeout": self.timeout,
                "config_list": self._config_list(),
                "cache_seed": None,
            },
            system_message=(
                f"{instructions}\n\nUse the registered functions when they help. "
                "When you finish, respond with: FINAL: <concise answer>."
            ),
        )
        user = UserProxyAgent(
            name=f"{_safe_name(toolset.task_id)}_runner",
            human_input_mode="NEVER",
            code_execution_config=False,
            is_termination_msg=self._is_final_message,
        )
        steps = itertools.count(1)
        for name, description in toolset.describe().items():
            register_function(
                self._wrap_tool(toolset, name, steps),
                caller=assistant,
                executor=user,
                name=name,
                description=description,
            )
        result = user.initiate_chat(assistant, message=prompt, max_turns=max_steps + 1)
        content = self._extract_content(result)
        text, reasoning = split_reasoning(content)
        if text.upper().startswith("FINAL:"):
            text = text[6:].strip()
        if not text:
            raise RuntimeError("Model returned an empty response")
        return ToolCallOutcome(text=text, reasoning=reasoning, tool_calls=list(toolset.calls))

    def _config_list(self) -> List[Dict[str, Any]]:
        entry: Dict[str, Any] = {"model": self.model, "api_type": self.api_type}
        if self.api_type == "ollama":
            entry["client_host"] = self.host
        else:
            entry["base_url"] = self.host
            entry["api_key"] = self.api_key
        return [entry]

    @staticmethod
    def _wrap_tool(toolset: Toolset, name: str, steps: "itertools.count[int]"):
        def _tool_func(input_text: str = "") -> str:
            record = toolset.call(name, {"input": input_text}, step=next(steps))
            if record.error:
                return f"ERROR: {record.error}"
            return str(record.result)

        _tool_func.__name__ = name
        _tool_func.__doc__ = toolset.describe().get(name, name)
        return _tool_func

    def _extract_content(self, result: Any) -> str:
        if isinstance(result, str):
            return self._dedupe_content(result)
        summary = getattr(result, "summary", None)
        if isinstance(summary, str) and summary.strip():
            return self._dedupe_content(summary)
        chat_history = getattr(result, "chat_history", None)
        if isinstance(chat_history, list):
            for item in reversed(chat_history):
                if isinstance(item, dict):
                    content = item.get("content")
                    if isinstance(content, str) and content.strip():
                        return self._dedupe_content(content)
        return ""

    @staticmethod
    def _dedupe_content(content: str) -> str:
        text = content.strip()
        if not text:
            return text
        # Some models echo the whole answer twice back-to-back.
        half = len(text) // 2
        if len(text) % 2 == 0 and text[:half] == text[half:]:
            return text[:half].strip()
        if text.count("FINAL:") >= 2:
            first = text.find("FINAL:")
            rest = text.find("FINAL:", first + 6)
            return text[:rest].strip()
        return text

    @staticmethod
    def _is_final_message(message: Optional[Dict[str, Any]]) -> bool:
        content = (message or {}).get("content", "") or ""
        return content.strip().upper().startswith("FINAL:")


def _safe_name(value: str) -> str:
    return "".join(ch if ch.isalnum() or ch in "_-" else "_" for ch in value) or "agent"
