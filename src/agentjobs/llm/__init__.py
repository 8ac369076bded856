"""LLM provider and tool-caller interfaces."""

from .caller import ToolCaller, ToolCallOutcome, split_reasoning
from .provider import (
    ConsoleEchoProvider,
    LLMProvider,
    PLANNING,
    TASK,
    OllamaProvider,
    PromptContext,
    StaticResponseProvider,
)

__all__ = [
    "LLMProvider",
    "PromptContext",
    "PLANNING",
    "TASK",
    "ConsoleEchoProvider",
    "StaticResponseProvider",
    "OllamaProvider",
    "ToolCaller",
    "ToolCallOutcome",
    "split_reasoning",
]
