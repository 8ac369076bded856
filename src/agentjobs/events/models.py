"""Progress events published while a job is analysed and run."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Dict, Literal, Mapping, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


def _now() -> datetime:
    return datetime.now(timezone.utc)


class BaseEvent(BaseModel):
    job_id: str
    timestamp: datetime = Field(default_factory=_now)


class JobStarted(BaseEvent):
    type: Literal["job_started"] = "job_started"


class JobPaused(BaseEvent):
    type: Literal["job_paused"] = "job_paused"


class JobResumed(BaseEvent):
    type: Literal["job_resumed"] = "job_resumed"


class JobCancelled(BaseEvent):
    type: Literal["job_cancelled"] = "job_cancelled"


class JobCompleted(BaseEvent):
    type: Literal["job_completed"] = "job_completed"


class JobFailed(BaseEvent):
    type: Literal["job_failed"] = "job_failed"
    error: str


class TaskStarted(BaseEvent):
    type: Literal["task_started"] = "task_started"
    task_id: str
    attempt_number: int


class TaskCompleted(BaseEvent):
    type: Literal["task_completed"] = "task_completed"
    task_id: str
    attempt_number: int
    response: Optional[str] = None
    reasoning: Optional[str] = None


class TaskFailed(BaseEvent):
    type: Literal["task_failed"] = "task_failed"
    task_id: str
    attempt_number: Optional[int] = None
    error: str
    timed_out: bool = False


class ToolCalled(BaseEvent):
    type: Literal["tool_called"] = "tool_called"
    task_id: str
    tool_name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    result: Any = None
    error: Optional[str] = None


class AnalysisStarted(BaseEvent):
    type: Literal["analysis_started"] = "analysis_started"


class AnalysisCompleted(BaseEvent):
    type: Literal["analysis_completed"] = "analysis_completed"
    task_count: int


class AnalysisFailed(BaseEvent):
    type: Literal["analysis_failed"] = "analysis_failed"
    error: str


ExecutionEvent = Annotated[
    Union[
        JobStarted,
        JobPaused,
        JobResumed,
        JobCancelled,
        JobCompleted,
        JobFailed,
        TaskStarted,
        TaskCompleted,
        TaskFailed,
        ToolCalled,
        AnalysisStarted,
        AnalysisCompleted,
        AnalysisFailed,
    ],
    Field(discriminator="type"),
]

TERMINAL_EVENT_TYPES = frozenset({"job_completed", "job_failed", "job_cancelled"})

_ADAPTER: TypeAdapter = TypeAdapter(ExecutionEvent)


def parse_event(data: Mapping[str, Any]) -> BaseEvent:
    """Validate a mapping (e.g. decoded JSON) back into its event model."""

    return _ADAPTER.validate_python(dict(data))


def is_terminal(event: BaseEvent) -> bool:
    return getattr(event, "type", None) in TERMINAL_EVENT_TYPES
