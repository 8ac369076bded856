"""Allowed status transitions for jobs and tasks."""

from __future__ import annotations

from typing import Dict, FrozenSet

from ..errors import InvalidTransitionError
from ..tasks.base import JobStatus, TaskStatus

JOB_TRANSITIONS: Dict[JobStatus, FrozenSet[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.ANALYZING, JobStatus.FAILED}),
    JobStatus.ANALYZING: frozenset({JobStatus.READY, JobStatus.FAILED}),
    JobStatus.READY: frozenset({JobStatus.RUNNING, JobStatus.FAILED}),
    JobStatus.RUNNING: frozenset({JobStatus.PAUSED, JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.PAUSED: frozenset({JobStatus.RUNNING, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}

# running -> pending is the retry edge; pending -> failed/skipped covers a missing agent.
TASK_TRANSITIONS: Dict[TaskStatus, FrozenSet[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.RUNNING, TaskStatus.FAILED, TaskStatus.SKIPPED}),
    TaskStatus.RUNNING: frozenset({TaskStatus.PENDING, TaskStatus.COMPLETED, TaskStatus.FAILED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
    TaskStatus.SKIPPED: frozenset(),
}


def can_transition_job(current: JobStatus, target: JobStatus) -> bool:
    return JobStatus(target) in JOB_TRANSITIONS[JobStatus(current)]


def can_transition_task(current: TaskStatus, target: TaskStatus) -> bool:
    return TaskStatus(target) in TASK_TRANSITIONS[TaskStatus(current)]


def ensure_job_transition(current: JobStatus, target: JobStatus) -> JobStatus:
    if not can_transition_job(current, target):
        raise InvalidTransitionError("job", JobStatus(current).value, JobStatus(target).value)
    return JobStatus(target)


def ensure_task_transition(current: TaskStatus, target: TaskStatus) -> TaskStatus:
    if not can_transition_task(current, target):
        raise InvalidTransitionError("task", TaskStatus(current).value, TaskStatus(target).value)
    return TaskStatus(target)


def is_terminal_job(status: JobStatus) -> bool:
    return not JOB_TRANSITIONS[JobStatus(status)]
