"""Job, task and attempt dataclasses used by the orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from ..agents.base import Agent
from ..tools.base import ToolCallRecord


class JobStatus(str, Enum):
    PENDING = "pending"
    ANALYZING = "analyzing"
    READY = "ready"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class AttemptStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class RunStatus(str, Enum):
    RUNNING = "running"
    PAUSED = "paused"
    CANCELLED = "cancelled"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_time(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _format_time(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass
class Attempt:
    """One try at executing a task."""

    number: int
    started_at: datetime = field(default_factory=utc_now)
    completed_at: Optional[datetime] = None
    status: AttemptStatus = AttemptStatus.RUNNING
    reasoning: Optional[str] = None
    response: Optional[str] = None
    tool_calls: List[ToolCallRecord] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == AttemptStatus.COMPLETED

    def finish(
        self,
        status: AttemptStatus,
        *,
        response: Optional[str] = None,
        reasoning: Optional[str] = None,
        error: Optional[str] = None,
    ) -> "Attempt":
        if self.status != AttemptStatus.RUNNING:
            raise ValueError(f"Attempt {self.number} already finished as {self.status.value}")
        if status == AttemptStatus.RUNNING:
            raise ValueError("An attempt cannot finish as running")
        self.status = status
        self.response = response
        self.reasoning = reasoning
        self.error = error
        self.completed_at = utc_now()
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "number": self.number,
            "started_at": _format_time(self.started_at),
            "completed_at": _format_time(self.completed_at),
            "status": self.status.value,
            "reasoning": self.reasoning,
            "response": self.response,
            "tool_calls": [call.to_dict() for call in self.tool_calls],
            "error": self.error,
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Attempt":
        return cls(
            number=int(data["number"]),
            started_at=_parse_time(data.get("started_at")) or utc_now(),
            completed_at=_parse_time(data.get("completed_at")),
            status=AttemptStatus(data.get("status", AttemptStatus.RUNNING.value)),
            reasoning=data.get("reasoning"),
            response=data.get("response"),
            tool_calls=[ToolCallRecord.from_mapping(item) for item in data.get("tool_calls") or []],
            error=data.get("error"),
        )


@dataclass
class Task:
    """A single unit of work assigned to one agent."""

    id: str
    job_id: str
    agent_id: str
    title: str
    description: str = ""
    status: TaskStatus = TaskStatus.PENDING
    order: int = 0
    attempts: List[Attempt] = field(default_factory=list)

    @property
    def next_attempt_number(self) -> int:
        return len(self.attempts) + 1

    def last_successful_attempt(self) -> Optional[Attempt]:
        for attempt in reversed(self.attempts):
            if attempt.succeeded:
                return attempt
        return None


@dataclass
class Job:
    """A user goal, the agents available to it and the tasks it was split into."""

    id: str
    user_id: str
    title: str
    goal: str
    status: JobStatus = JobStatus.PENDING
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    agents: List[Agent] = field(default_factory=list)
    tasks: List[Task] = field(default_factory=list)

    def ordered_tasks(self) -> List[Task]:
        return sorted(self.tasks, key=lambda task: task.order)

    def get_agent(self, agent_id: str) -> Optional[Agent]:
        for agent in self.agents:
            if agent.id == agent_id:
                return agent
        return None


@dataclass
class PlannedTask:
    """Decomposer output for one task, before it is persisted."""

    title: str
    agent_id: str
    order: int
    description: str = ""


@dataclass
class ExecutionResult:
    """Result of executing one attempt of a task."""

    attempt: Attempt
    success: bool
