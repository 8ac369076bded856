"""Storage contract used by the job service and the orchestrator."""

from __future__ import annotations

from typing import Any, List, Optional, Protocol, Sequence

from ..agents.base import Agent
from ..tasks.base import Attempt, Job, JobStatus, PlannedTask, Task, TaskStatus

EDITABLE_TASK_FIELDS = frozenset({"status", "title", "description", "order"})
PENDING_ONLY_TASK_FIELDS = frozenset({"title", "description"})


class JobStore(Protocol):
    """Synchronous job storage. Callers on an event loop go through ``asyncio.to_thread``."""

    def create_job(self, user_id: str, title: str, goal: str, agents: Sequence[Agent]) -> Job:  # pragma: no cover - interface
        ...

    def load_job(self, job_id: str) -> Job:  # pragma: no cover - interface
        """Return the job with its tasks and attempts or raise ``JobNotFoundError``."""

    def list_jobs(self, user_id: Optional[str] = None) -> List[Job]:  # pragma: no cover - interface
        ...

    def update_job_status(self, job_id: str, status: JobStatus) -> None:  # pragma: no cover - interface
        ...

    def create_tasks(self, job_id: str, planned: Sequence[PlannedTask]) -> List[Task]:  # pragma: no cover - interface
        ...

    def update_task(self, task_id: str, **fields: Any) -> Task:  # pragma: no cover - interface
        ...

    def append_task_attempt(self, task_id: str, attempt: Attempt, status: TaskStatus) -> None:  # pragma: no cover - interface
        """Persist a finished attempt together with the task status it leaves behind."""
