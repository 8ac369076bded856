"""Built-in tools available to every agent."""

from __future__ import annotations

import ast
import json
import operator
from datetime import datetime, timezone
from typing import Any, Callable, Dict

import yaml

from .base import Tool, ToolContext, ToolResult
from .registry import ToolRegistry


def _load_structured(text: Any) -> Any:
    if isinstance(text, (dict, list)):
        return text
    if not isinstance(text, str):
        return text
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        try:
            return yaml.safe_load(text)
        except yaml.YAMLError:
            return text


class EchoTool(Tool):
    """Returns its input unchanged. Useful for wiring checks."""

    def run(self, *, input_text: str, context: ToolContext) -> ToolResult:
        return ToolResult(content=input_text, metadata={"agent": context.agent_name})


class ClockTool(Tool):
    """Returns the current UTC time in ISO 8601 format."""

    def run(self, *, input_text: str, context: ToolContext) -> ToolResult:
        return ToolResult(content=datetime.now(timezone.utc).isoformat())


_BINARY_OPS: Dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}
_UNARY_OPS: Dict[type, Callable[[Any], Any]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}


def _evaluate(node: ast.AST) -> Any:
    if isinstance(node, ast.Expression):
        return _evaluate(node.body)
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
        return node.value
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPS:
        left, right = _evaluate(node.left), _evaluate(node.right)
        if isinstance(node.op, ast.Pow) and abs(right) > 100:
            raise ValueError("Exponent too large")
        return _BINARY_OPS[type(node.op)](left, right)
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_evaluate(node.operand))
    raise ValueError(f"Unsupported expression element: {type(node).__name__}")


class CalculatorTool(Tool):
    """Evaluates an arithmetic expression such as '(2 + 3) * 4'."""

    def run(self, *, input_text: str, context: ToolContext) -> ToolResult:
        payload = _load_structured(input_text)
        expression = payload.get("expression") if isinstance(payload, dict) else input_text
        if not isinstance(expression, str) or not expression.strip():
            raise ValueError("CalculatorTool expects an expression string")
        value = _evaluate(ast.parse(expression.strip(), mode="eval"))
        return ToolResult(content=str(value), metadata={"expression": expression.strip()})


def register_builtin_tools(registry: ToolRegistry) -> None:
    """Register built-in tool factories."""

    registry.register_factory("echo", lambda: EchoTool(name="echo"), overwrite=True)
    registry.register_factory("clock", lambda: ClockTool(name="clock"), overwrite=True)
    registry.register_factory("calculator", lambda: CalculatorTool(name="calculator"), overwrite=True)
