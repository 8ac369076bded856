"""Shared fixtures: an in-memory runtime and scripted collaborators."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Callable, List, Sequence, Tuple

import pytest

from agentjobs.agents.base import Agent
from agentjobs.events.bus import EventBus
from agentjobs.events.models import BaseEvent
from agentjobs.jobs.decomposer import GoalDecomposer
from agentjobs.jobs.orchestrator import MissingAgentPolicy, Orchestrator
from agentjobs.jobs.service import JobService
from agentjobs.llm.caller import ToolCallOutcome
from agentjobs.llm.provider import StaticResponseProvider
from agentjobs.persistence.memory import InMemoryJobStore
from agentjobs.tasks.base import Job, JobStatus, PlannedTask
from agentjobs.tasks.executor import TaskExecutor
from agentjobs.tasks.retry import RetryPolicy
from agentjobs.tools.base import Tool, ToolContext, ToolResult, Toolset
from agentjobs.tools.builtin import register_builtin_tools
from agentjobs.tools.registry import ToolRegistry

NO_WAIT = RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0)


class ScriptedCaller:
    """Tool caller that plays back one step per invocation.

    A step is a response string, an exception to raise, or a callable taking the
    toolset and returning a ``ToolCallOutcome``. Once the script runs out every
    invocation answers ``"done"``.
    """

    def __init__(self, *steps: Any) -> None:
        self.steps: List[Any] = list(steps)
        self.invocations: List[Tuple[str, str]] = []
        self._lock = threading.Lock()

    def execute_with_tools(self, instructions: str, prompt: str, toolset: Toolset, max_steps: int) -> ToolCallOutcome:
        with self._lock:
            self.invocations.append((instructions, prompt))
            step = self.steps.pop(0) if self.steps else "done"
        if isinstance(step, BaseException):
            raise step
        if callable(step):
            return step(toolset)
        return ToolCallOutcome(text=step, tool_calls=list(toolset.calls))


class CountingTool(Tool):
    """Tool that counts connect/disconnect calls."""

    def __init__(self, name: str = "counter", **kwargs: object) -> None:
        super().__init__(name, **kwargs)
        self.connects = 0
        self.disconnects = 0

    def connect(self) -> None:
        self.connects += 1

    def disconnect(self) -> None:
        self.disconnects += 1

    def run(self, *, input_text: str, context: ToolContext) -> ToolResult:
        return ToolResult(content=f"counted {input_text}")


@dataclass
class Runtime:
    store: InMemoryJobStore
    bus: EventBus
    tools: ToolRegistry
    caller: ScriptedCaller
    executor: TaskExecutor
    orchestrator: Orchestrator
    service: JobService
    planner: StaticResponseProvider

    def record(self, job_id: str) -> List[BaseEvent]:
        events: List[BaseEvent] = []
        self.bus.subscribe(job_id, events.append)
        return events

    def ready_job(
        self,
        titles: Sequence[str] = ("first", "second"),
        *,
        agent_ids: Sequence[str] | None = None,
        user_id: str = "alice",
    ) -> Job:
        agents = [
            Agent(id="researcher", name="Researcher", instructions="Find facts.", tools=["echo"]),
            Agent(id="writer", name="Writer", instructions="Write clearly.", tools=["counter"]),
        ]
        job = self.store.create_job(user_id, "Test job", "transfer funds", agents)
        ids = list(agent_ids or ["researcher"] * len(titles))
        planned = [
            PlannedTask(title=title, agent_id=ids[index], order=index + 1, description=f"do {title}")
            for index, title in enumerate(titles)
        ]
        self.store.create_tasks(job.id, planned)
        self.store.update_job_status(job.id, JobStatus.ANALYZING)
        self.store.update_job_status(job.id, JobStatus.READY)
        return self.store.load_job(job.id)


@pytest.fixture
def make_runtime() -> Callable[..., Runtime]:
    def factory(
        *steps: Any,
        retry: RetryPolicy = NO_WAIT,
        timeout: float | None = None,
        policy: MissingAgentPolicy = MissingAgentPolicy.FAIL_TASK,
        planner_responses: Sequence[str] = (),
        store: InMemoryJobStore | None = None,
    ) -> Runtime:
        store = store or InMemoryJobStore()
        bus = EventBus()
        tools = ToolRegistry()
        register_builtin_tools(tools)
        tools.register_instance(CountingTool())
        caller = ScriptedCaller(*steps)
        executor = TaskExecutor(caller, tools, timeout=timeout)
        orchestrator = Orchestrator(store, executor, bus, retry=retry, missing_agent_policy=policy)
        planner = StaticResponseProvider(planner_responses)
        service = JobService(store, orchestrator, GoalDecomposer(planner), bus)
        return Runtime(
            store=store,
            bus=bus,
            tools=tools,
            caller=caller,
            executor=executor,
            orchestrator=orchestrator,
            service=service,
            planner=planner,
        )

    return factory


def event_types(events: Sequence[BaseEvent]) -> List[str]:
    return [event.type for event in events]
