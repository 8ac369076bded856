"""Text-generation providers shared by goal planning and task execution."""

from __future__ import annotations

import json
import threading
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol

from rich.console import Console

PLANNING = "planning"
TASK = "task"

DEFAULT_SYSTEM_PROMPTS: Dict[str, str] = {
    PLANNING: (
        "You split goals into ordered tasks for a team of agents. "
        "Answer with JSON only."
    ),
    TASK: (
        "You are {agent}, working on task {task} (step {iteration}). "
        "Follow the response protocol given in the prompt."
    ),
}


@dataclass
class PromptContext:
    """Who is asking and why: the planner, or an agent on one step of a task."""

    agent_name: str
    task_id: str
    iteration: int
    purpose: str = TASK

    @property
    def is_planning(self) -> bool:
        return self.purpose == PLANNING


class LLMProvider(Protocol):
    """Interface for language model providers."""

    def generate(self, prompt: str, context: PromptContext) -> str:  # pragma: no cover - interface
        """Return a response for the given prompt."""


class ConsoleEchoProvider:
    """Lets the operator play the model: shows each prompt and reads the reply from the terminal."""

    def __init__(self, console: Optional[Console] = None) -> None:
        self.console = console or Console()

    def generate(self, prompt: str, context: PromptContext) -> str:
        self.console.rule(f"{context.purpose}: {context.agent_name} on {context.task_id}, step {context.iteration}")
        self.console.print(prompt, markup=False, highlight=False)
        if context.is_planning:
            hint = "Reply with the JSON task array"
        else:
            hint = "Reply with a JSON action, or plain text to answer directly"
        self.console.print(f"[dim]{hint}. Finish with an empty line.[/]")
        lines: List[str] = []
        while True:
            try:
                line = self.console.input()
            except EOFError:  # pragma: no cover - console only
                break
            if not line:
                break
            lines.append(line)
        return "\n".join(lines)


class StaticResponseProvider:
    """Replays a fixed list of responses and records what it was asked."""

    def __init__(self, responses: Iterable[str]):
        self._responses = iter(list(responses))
        self._lock = threading.Lock()
        self.prompts: List[str] = []
        self.contexts: List[PromptContext] = []

    def generate(self, prompt: str, context: PromptContext) -> str:
        with self._lock:
            self.prompts.append(prompt)
            self.contexts.append(context)
            try:
                return next(self._responses)
            except StopIteration as exc:
                raise RuntimeError("StaticResponseProvider exhausted") from exc


class OllamaProvider:
    """Calls a local Ollama model over HTTP.

    The system prompt is chosen by ``context.purpose``; planning requests also ask
    Ollama for JSON output so the decomposer gets a parseable plan.
    """

    def __init__(
        self,
        model: str,
        *,
        host: str = "http://localhost:11434",
        options: Optional[Dict[str, Any]] = None,
        system_prompts: Optional[Mapping[str, str]] = None,
        timeout: float = 120.0,
    ) -> None:
        self.model = model
        self.host = host.rstrip("/")
        self.options = options or {}
        self.system_prompts = {**DEFAULT_SYSTEM_PROMPTS, **(system_prompts or {})}
        self.timeout = timeout

    def build_payload(self, prompt: str, context: PromptContext) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": self.options,
        }
        system = self.system_prompts.get(context.purpose)
        if system:
            payload["system"] = system.format(
                agent=context.agent_name, task=context.task_id, iteration=context.iteration
            )
        if context.is_planning:
            payload["format"] = "json"
        return payload

    def generate(self, prompt: str, context: PromptContext) -> str:
        request = urllib.request.Request(
            url=f"{self.host}/api/generate",
            data=json.dumps(self.build_payload(prompt, context)).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                body = response.read().decode("utf-8")
        except urllib.error.URLError as exc:
            raise RuntimeError(f"Ollama at {self.host} unreachable for {context.purpose} request: {exc}") from exc
        data = json.loads(body)
        if "error" in data:
            raise RuntimeError(f"Ollama {self.model} failed on {context.task_id}: {data['error']}")
        result = data.get("response")
        if not isinstance(result, str):
            raise RuntimeError(f"Ollama returned no text for {context.task_id}: {data}")
        return result.strip()
