"""Tool primitives."""

from .base import Tool, ToolCallRecord, ToolContext, ToolResult, Toolset
from .builtin import register_builtin_tools
from .registry import ToolRegistry

__all__ = [
    "Tool",
    "ToolCallRecord",
    "ToolContext",
    "ToolResult",
    "Toolset",
    "ToolRegistry",
    "register_builtin_tools",
]
