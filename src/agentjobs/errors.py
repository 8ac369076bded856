"""Exceptions raised by the job orchestration core."""

from __future__ import annotations


class AgentJobsError(RuntimeError):
    """Base class for errors raised by agentjobs."""


class JobNotFoundError(AgentJobsError):
    """Raised when a job or task id is unknown to the store."""


class JobAccessError(AgentJobsError):
    """Raised when a user acts on a job they do not own."""


class JobStateError(AgentJobsError):
    """Raised when an operation is not allowed in the job's current state."""


class InvalidTransitionError(JobStateError):
    """Raised when a status change is outside the allowed edge set."""

    def __init__(self, kind: str, current: str, target: str) -> None:
        super().__init__(f"Illegal {kind} transition: {current} -> {target}")
        self.kind = kind
        self.current = current
        self.target = target


class RunAlreadyActiveError(JobStateError):
    """Raised when a second run is requested for a job that is already running."""


class DecompositionError(AgentJobsError):
    """Raised when a goal could not be turned into a valid task list."""


class ToolStepLimitError(AgentJobsError):
    """Raised when a tool-calling loop runs out of steps without an answer."""
