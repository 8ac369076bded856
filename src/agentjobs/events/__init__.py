"""Job progress events, the event bus and async event streams."""

from .bus import EventBus, EventCallback, Unsubscribe
from .models import (
    AnalysisCompleted,
    AnalysisFailed,
    AnalysisStarted,
    BaseEvent,
    ExecutionEvent,
    JobCancelled,
    JobCompleted,
    JobFailed,
    JobPaused,
    JobResumed,
    JobStarted,
    TaskCompleted,
    TaskFailed,
    TaskStarted,
    TERMINAL_EVENT_TYPES,
    ToolCalled,
    is_terminal,
    parse_event,
)
from .stream import EventStream

__all__ = [
    "AnalysisCompleted",
    "AnalysisFailed",
    "AnalysisStarted",
    "BaseEvent",
    "EventBus",
    "EventCallback",
    "EventStream",
    "ExecutionEvent",
    "JobCancelled",
    "JobCompleted",
    "JobFailed",
    "JobPaused",
    "JobResumed",
    "JobStarted",
    "TERMINAL_EVENT_TYPES",
    "TaskCompleted",
    "TaskFailed",
    "TaskStarted",
    "ToolCalled",
    "Unsubscribe",
    "is_terminal",
    "parse_event",
]
