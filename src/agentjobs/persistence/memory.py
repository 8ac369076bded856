"""Process-local job store."""

from __future__ import annotations

import copy
import threading
import uuid
from typing import Any, Dict, List, Optional, Sequence

from ..agents.base import Agent
from ..errors import JobNotFoundError, JobStateError
from ..tasks.base import Attempt, Job, JobStatus, PlannedTask, Task, TaskStatus, utc_now
from .base import EDITABLE_TASK_FIELDS, PENDING_ONLY_TASK_FIELDS


class InMemoryJobStore:
    """Keeps jobs in dictionaries; every read and write works on copies."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._jobs: Dict[str, Job] = {}
        self._task_index: Dict[str, str] = {}

    def create_job(self, user_id: str, title: str, goal: str, agents: Sequence[Agent]) -> Job:
        job = Job(
            id=str(uuid.uuid4()),
            user_id=user_id,
            title=title,
            goal=goal,
            agents=copy.deepcopy(list(agents)),
        )
        with self._lock:
            self._jobs[job.id] = job
            return copy.deepcopy(job)

    def load_job(self, job_id: str) -> Job:
        with self._lock:
            return copy.deepcopy(self._get_job(job_id))

    def list_jobs(self, user_id: Optional[str] = None) -> List[Job]:
        with self._lock:
            jobs = [job for job in self._jobs.values() if user_id is None or job.user_id == user_id]
            return copy.deepcopy(sorted(jobs, key=lambda job: job.created_at))

    def update_job_status(self, job_id: str, status: JobStatus) -> None:
        with self._lock:
            job = self._get_job(job_id)
            job.status = JobStatus(status)
            job.updated_at = utc_now()

    def create_tasks(self, job_id: str, planned: Sequence[PlannedTask]) -> List[Task]:
        with self._lock:
            job = self._get_job(job_id)
            created: List[Task] = []
            for item in planned:
                task = Task(
                    id=str(uuid.uuid4()),
                    job_id=job_id,
                    agent_id=item.agent_id,
                    title=item.title,
                    description=item.description,
                    order=item.order,
                )
                job.tasks.append(task)
                self._task_index[task.id] = job_id
                created.append(task)
            job.updated_at = utc_now()
            return copy.deepcopy(created)

    def update_task(self, task_id: str, **fields: Any) -> Task:
        unknown = set(fields) - EDITABLE_TASK_FIELDS
        if unknown:
            raise ValueError(f"Cannot update task fields: {', '.join(sorted(unknown))}")
        with self._lock:
            task = self._get_task(task_id)
            if PENDING_ONLY_TASK_FIELDS & set(fields) and task.status != TaskStatus.PENDING:
                raise JobStateError(f"Task {task_id} can only be edited while pending")
            for key, value in fields.items():
                if key == "status":
                    value = TaskStatus(value)
                setattr(task, key, value)
            return copy.deepcopy(task)

    def append_task_attempt(self, task_id: str, attempt: Attempt, status: TaskStatus) -> None:
        with self._lock:
            task = self._get_task(task_id)
            task.attempts.append(copy.deepcopy(attempt))
            task.status = TaskStatus(status)

    def _get_job(self, job_id: str) -> Job:
        try:
            return self._jobs[job_id]
        except KeyError:
            raise JobNotFoundError(f"Job {job_id} not found") from None

    def _get_task(self, task_id: str) -> Task:
        job_id = self._task_index.get(task_id)
        if job_id is None:
            raise JobNotFoundError(f"Task {task_id} not found")
        for task in self._jobs[job_id].tasks:
            if task.id == task_id:
                return task
        raise JobNotFoundError(f"Task {task_id} not found")
