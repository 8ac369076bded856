"""Task primitives."""

from .base import (
    Attempt,
    AttemptStatus,
    ExecutionResult,
    Job,
    JobStatus,
    PlannedTask,
    RunStatus,
    Task,
    TaskStatus,
)
from .executor import TaskExecutor
from .retry import RetryPolicy

__all__ = [
    "Attempt",
    "AttemptStatus",
    "ExecutionResult",
    "Job",
    "JobStatus",
    "PlannedTask",
    "RetryPolicy",
    "RunStatus",
    "Task",
    "TaskExecutor",
    "TaskStatus",
]
