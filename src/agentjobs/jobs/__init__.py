"""Job lifecycle: state machines, planning, the run loop and the service facade."""

from .decomposer import DecompositionResult, GoalDecomposer
from .orchestrator import MissingAgentPolicy, Orchestrator, ResumeSignal, RunState
from .service import DecompositionSummary, JobService
from .states import (
    JOB_TRANSITIONS,
    TASK_TRANSITIONS,
    can_transition_job,
    can_transition_task,
    ensure_job_transition,
    ensure_task_transition,
    is_terminal_job,
)

__all__ = [
    "DecompositionResult",
    "DecompositionSummary",
    "GoalDecomposer",
    "JOB_TRANSITIONS",
    "JobService",
    "MissingAgentPolicy",
    "Orchestrator",
    "ResumeSignal",
    "RunState",
    "TASK_TRANSITIONS",
    "can_transition_job",
    "can_transition_task",
    "ensure_job_transition",
    "ensure_task_transition",
    "is_terminal_job",
]
