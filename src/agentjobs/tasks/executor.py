"""Runs one attempt of a task through a tool-calling collaborator."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional, Sequence

from ..agents.base import Agent
from ..llm.caller import ToolCallOutcome, ToolCaller
from ..tools.base import ToolCallRecord, Toolset
from ..tools.registry import ToolRegistry
from .base import Attempt, AttemptStatus, ExecutionResult, Job, Task

LOGGER = logging.getLogger(__name__)

MAX_TOOL_STEPS = 10


def build_instructions(agent: Agent, job: Job, previous_results: Sequence[Attempt]) -> str:
    previous_context = "\n\n".join(
        f"Previous task result: {attempt.response}"
        for attempt in previous_results
        if attempt.succeeded and attempt.response
    )
    sections = [
        agent.instructions,
        f"You are executing a specific task as part of a larger job.\nJob Goal: {job.goal}",
    ]
    if previous_context:
        sections.append(f"Context from previous tasks:\n{previous_context}")
    sections.append(
        "Execute the following task and use the available tools as needed.\n"
        "Report your findings clearly and concisely."
    )
    return "\n\n".join(sections)


def build_task_prompt(task: Task) -> str:
    return f"Task: {task.title}\n\nDescription: {task.description or 'No additional description'}"


class TaskExecutor:
    """Executes a single attempt of a task with the assigned agent's tools."""

    def __init__(
        self,
        caller: ToolCaller,
        tools: ToolRegistry,
        *,
        max_tool_steps: int = MAX_TOOL_STEPS,
        timeout: Optional[float] = None,
    ) -> None:
        if max_tool_steps < 1:
            raise ValueError("max_tool_steps must be at least 1")
        self.caller = caller
        self.tools = tools
        self.max_tool_steps = min(max_tool_steps, MAX_TOOL_STEPS)
        self.timeout = timeout

    async def execute(
        self,
        task: Task,
        agent: Agent,
        job: Job,
        previous_results: Sequence[Attempt],
        *,
        user_id: Optional[str] = None,
        on_tool_call: Optional[Callable[[ToolCallRecord], None]] = None,
    ) -> ExecutionResult:
        loop = asyncio.get_running_loop()
        attempt = Attempt(number=task.next_attempt_number)
        instructions = build_instructions(agent, job, previous_results)
        prompt = build_task_prompt(task)

        def observe(record: ToolCallRecord) -> None:
            # Calls arriving after the attempt was finalized (timeout) are dropped.
            if attempt.status != AttemptStatus.RUNNING:
                return
            attempt.tool_calls.append(record)
            if on_tool_call is not None:
                on_tool_call(record)

        def listener(record: ToolCallRecord) -> None:
            loop.call_soon_threadsafe(observe, record)

        def invoke() -> ToolCallOutcome:
            with self.tools.acquire(agent.tools) as opened:
                toolset = Toolset(
                    opened,
                    agent_name=agent.name,
                    task_id=task.id,
                    user_id=user_id,
                    listener=listener,
                )
                return self.caller.execute_with_tools(instructions, prompt, toolset, self.max_tool_steps)

        LOGGER.info("Executing task %s attempt %s with agent %s", task.id, attempt.number, agent.id)
        work = asyncio.to_thread(invoke)
        try:
            if self.timeout is None:
                outcome = await work
            else:
                outcome = await asyncio.wait_for(work, self.timeout)
        except asyncio.TimeoutError:
            LOGGER.warning("Task %s attempt %s timed out after %ss", task.id, attempt.number, self.timeout)
            attempt.finish(AttemptStatus.TIMED_OUT, error=f"Timed out after {self.timeout}s")
            return ExecutionResult(attempt=attempt, success=False)
        except Exception as exc:
            LOGGER.warning("Task %s attempt %s failed: %s", task.id, attempt.number, exc)
            attempt.finish(AttemptStatus.FAILED, error=str(exc) or type(exc).__name__)
            return ExecutionResult(attempt=attempt, success=False)
        attempt.finish(AttemptStatus.COMPLETED, response=outcome.text, reasoning=outcome.reasoning)
        return ExecutionResult(attempt=attempt, success=True)
