"""Postgres persistence for jobs, tasks and attempts."""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import psycopg
from psycopg.rows import dict_row

from ..agents.base import Agent
from ..errors import JobNotFoundError, JobStateError
from ..tasks.base import Attempt, Job, JobStatus, PlannedTask, Task, TaskStatus
from .base import EDITABLE_TASK_FIELDS, PENDING_ONLY_TASK_FIELDS

_TASK_COLUMNS = "id, job_id, agent_id, title, description, status, task_order, attempts"


def _json_value(value: Any) -> Any:
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


class PostgresJobStore:
    def __init__(self, db_url: str) -> None:
        self.db_url = db_url
        self._ensure_schema()

    def _connect(self) -> psycopg.Connection:
        return psycopg.connect(self.db_url, row_factory=dict_row)

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS agentjobs_jobs (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    goal TEXT NOT NULL,
                    status TEXT NOT NULL,
                    agents JSONB NOT NULL,
                    created_at TIMESTAMPTZ NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS agentjobs_tasks (
                    id TEXT PRIMARY KEY,
                    job_id TEXT NOT NULL REFERENCES agentjobs_jobs(id) ON DELETE CASCADE,
                    agent_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL,
                    status TEXT NOT NULL,
                    task_order INTEGER NOT NULL,
                    attempts JSONB NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS agentjobs_tasks_job_id_idx ON agentjobs_tasks(job_id)"
            )
            conn.commit()

    def create_job(self, user_id: str, title: str, goal: str, agents: Sequence[Agent]) -> Job:
        now = datetime.now(timezone.utc)
        job = Job(
            id=str(uuid.uuid4()),
            user_id=user_id,
            title=title,
            goal=goal,
            created_at=now,
            updated_at=now,
            agents=list(agents),
        )
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO agentjobs_jobs (
                    id, user_id, title, goal, status, agents, created_at, updated_at
                ) VALUES (%s,%s,%s,%s,%s,%s,%s,%s)
                """,
                (
                    job.id,
                    job.user_id,
                    job.title,
                    job.goal,
                    job.status.value,
                    json.dumps([agent.to_dict() for agent in job.agents]),
                    now,
                    now,
                ),
            )
            conn.commit()
        return job

    def load_job(self, job_id: str) -> Job:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT id, user_id, title, goal, status, agents, created_at, updated_at
                FROM agentjobs_jobs
                WHERE id = %s
                """,
                (job_id,),
            ).fetchone()
            if row is None:
                raise JobNotFoundError(f"Job {job_id} not found")
            task_rows = conn.execute(
                f"SELECT {_TASK_COLUMNS} FROM agentjobs_tasks WHERE job_id = %s ORDER BY task_order ASC",
                (job_id,),
            ).fetchall()
        job = self._job_from_row(row)
        job.tasks = [self._task_from_row(item) for item in task_rows]
        return job

    def list_jobs(self, user_id: Optional[str] = None, limit: int = 200) -> List[Job]:
        query = """
            SELECT id, user_id, title, goal, status, agents, created_at, updated_at
            FROM agentjobs_jobs
        """
        params: List[Any] = []
        if user_id is not None:
            query += " WHERE user_id = %s"
            params.append(user_id)
        query += " ORDER BY created_at ASC LIMIT %s"
        params.append(limit)
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._job_from_row(row) for row in rows]

    def update_job_status(self, job_id: str, status: JobStatus) -> None:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE agentjobs_jobs SET status=%s, updated_at=%s WHERE id=%s",
                (JobStatus(status).value, datetime.now(timezone.utc), job_id),
            )
            if cursor.rowcount == 0:
                raise JobNotFoundError(f"Job {job_id} not found")
            conn.commit()

    def create_tasks(self, job_id: str, planned: Sequence[PlannedTask]) -> List[Task]:
        tasks = [
            Task(
                id=str(uuid.uuid4()),
                job_id=job_id,
                agent_id=item.agent_id,
                title=item.title,
                description=item.description,
                order=item.order,
            )
            for item in planned
        ]
        with self._connect() as conn:
            exists = conn.execute("SELECT 1 FROM agentjobs_jobs WHERE id = %s", (job_id,)).fetchone()
            if exists is None:
                raise JobNotFoundError(f"Job {job_id} not found")
            for task in tasks:
                conn.execute(
                    f"INSERT INTO agentjobs_tasks ({_TASK_COLUMNS}) VALUES (%s,%s,%s,%s,%s,%s,%s,%s)",
                    (
                        task.id,
                        task.job_id,
                        task.agent_id,
                        task.title,
                        task.description,
                        task.status.value,
                        task.order,
                        json.dumps([]),
                    ),
                )
            conn.execute(
                "UPDATE agentjobs_jobs SET updated_at=%s WHERE id=%s",
                (datetime.now(timezone.utc), job_id),
            )
            conn.commit()
        return tasks

    def update_task(self, task_id: str, **fields: Any) -> Task:
        unknown = set(fields) - EDITABLE_TASK_FIELDS
        if unknown:
            raise ValueError(f"Cannot update task fields: {', '.join(sorted(unknown))}")
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_TASK_COLUMNS} FROM agentjobs_tasks WHERE id = %s FOR UPDATE",
                (task_id,),
            ).fetchone()
            if row is None:
                raise JobNotFoundError(f"Task {task_id} not found")
            task = self._task_from_row(row)
            if PENDING_ONLY_TASK_FIELDS & set(fields) and task.status != TaskStatus.PENDING:
                raise JobStateError(f"Task {task_id} can only be edited while pending")
            for key, value in fields.items():
                if key == "status":
                    value = TaskStatus(value)
                setattr(task, key, value)
            conn.execute(
                """
                UPDATE agentjobs_tasks
                SET title=%s, description=%s, status=%s, task_order=%s
                WHERE id=%s
                """,
                (task.title, task.description, task.status.value, task.order, task_id),
            )
            conn.commit()
        return task

    def append_task_attempt(self, task_id: str, attempt: Attempt, status: TaskStatus) -> None:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE agentjobs_tasks
                SET attempts = attempts || %s::jsonb,
                    status = %s
                WHERE id = %s
                """,
                (json.dumps([attempt.to_dict()], default=str), TaskStatus(status).value, task_id),
            )
            if cursor.rowcount == 0:
                raise JobNotFoundError(f"Task {task_id} not found")
            conn.commit()

    @staticmethod
    def _job_from_row(row: Dict[str, Any]) -> Job:
        return Job(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            goal=row["goal"],
            status=JobStatus(row["status"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            agents=[Agent.from_mapping(item) for item in _json_value(row["agents"]) or []],
        )

    @staticmethod
    def _task_from_row(row: Dict[str, Any]) -> Task:
        return Task(
            id=row["id"],
            job_id=row["job_id"],
            agent_id=row["agent_id"],
            title=row["title"],
            description=row["description"],
            status=TaskStatus(row["status"]),
            order=int(row["task_order"]),
            attempts=[Attempt.from_mapping(item) for item in _json_value(row["attempts"]) or []],
        )
