"""Sequential run loop for jobs, with retries and pause/resume/cancel control."""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Optional, Tuple

from ..agents.base import Agent
from ..errors import JobAccessError, JobStateError, RunAlreadyActiveError
from ..events.bus import EventBus
from ..events.models import (
    JobCancelled,
    JobCompleted,
    JobFailed,
    JobPaused,
    JobResumed,
    JobStarted,
    TaskCompleted,
    TaskFailed,
    TaskStarted,
    ToolCalled,
)
from ..persistence.base import JobStore
from ..tasks.base import Attempt, AttemptStatus, Job, JobStatus, RunStatus, Task, TaskStatus
from ..tasks.executor import TaskExecutor
from ..tasks.retry import RetryPolicy
from ..tools.base import ToolCallRecord
from .states import ensure_job_transition, ensure_task_transition, is_terminal_job

LOGGER = logging.getLogger(__name__)


class MissingAgentPolicy(str, Enum):
    """What the loop does with a task whose agent is not attached to the job."""

    FAIL_TASK = "fail_task"
    SKIP_TASK = "skip_task"
    FAIL_JOB = "fail_job"


class ResumeSignal:
    """One-shot wake-up for a paused run, fired by resume or cancel from any thread."""

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        self._future: asyncio.Future = loop.create_future()

    def fire(self) -> None:
        if self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._set)

    def _set(self) -> None:
        if not self._future.done():
            self._future.set_result(None)

    async def wait(self) -> None:
        await self._future


@dataclass
class RunState:
    job_id: str
    user_id: str
    status: RunStatus = RunStatus.RUNNING
    current_task_index: int = 0
    signal: Optional[ResumeSignal] = field(default=None, repr=False, compare=False)

    def snapshot(self) -> "RunState":
        return replace(self, signal=None)


class Orchestrator:
    """Owns the registry of active runs and drives each run's task loop.

    Build one per process. ``pause``, ``resume`` and ``cancel`` may be called from
    any thread at any time; the loop observes them before each task.
    """

    def __init__(
        self,
        store: JobStore,
        executor: TaskExecutor,
        bus: EventBus,
        *,
        retry: Optional[RetryPolicy] = None,
        missing_agent_policy: MissingAgentPolicy = MissingAgentPolicy.FAIL_TASK,
    ) -> None:
        self.store = store
        self.executor = executor
        self.bus = bus
        self.retry = retry or RetryPolicy()
        self.missing_agent_policy = MissingAgentPolicy(missing_agent_policy)
        self._lock = threading.Lock()
        self._runs: Dict[str, RunState] = {}

    # ------------------------------------------------------------------
    # Run registry and control
    # ------------------------------------------------------------------
    def start(self, job_id: str, user_id: str) -> "asyncio.Task[JobStatus]":
        """Register a run and schedule it on the running loop."""

        state = self._register(job_id, user_id)
        task = asyncio.get_running_loop().create_task(self._run_registered(state), name=f"job-{job_id}")
        task.add_done_callback(lambda _: self._unregister(state))
        return task

    async def run(self, job_id: str, user_id: str) -> JobStatus:
        state = self._register(job_id, user_id)
        return await self._run_registered(state)

    def pause(self, job_id: str) -> bool:
        with self._lock:
            state = self._runs.get(job_id)
            if state is None or state.status != RunStatus.RUNNING:
                return False
            state.status = RunStatus.PAUSED
        LOGGER.info("Pause requested for job %s", job_id)
        return True

    def resume(self, job_id: str) -> bool:
        with self._lock:
            state = self._runs.get(job_id)
            if state is None or state.status != RunStatus.PAUSED:
                return False
            state.status = RunStatus.RUNNING
            signal = state.signal
        if signal is not None:
            signal.fire()
        LOGGER.info("Resume requested for job %s", job_id)
        return True

    def cancel(self, job_id: str) -> bool:
        with self._lock:
            state = self._runs.get(job_id)
            if state is None:
                return False
            state.status = RunStatus.CANCELLED
            signal = state.signal
        if signal is not None:
            signal.fire()
        LOGGER.info("Cancel requested for job %s", job_id)
        return True

    def is_running(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._runs

    def get_state(self, job_id: str) -> Optional[RunState]:
        with self._lock:
            state = self._runs.get(job_id)
            return state.snapshot() if state is not None else None

    def _register(self, job_id: str, user_id: str) -> RunState:
        with self._lock:
            if job_id in self._runs:
                raise RunAlreadyActiveError(f"Job {job_id} already has an active run")
            state = RunState(job_id=job_id, user_id=user_id)
            self._runs[job_id] = state
            return state

    def _unregister(self, state: RunState) -> None:
        with self._lock:
            if self._runs.get(state.job_id) is state:
                del self._runs[state.job_id]

    # ------------------------------------------------------------------
    # Run loop
    # ------------------------------------------------------------------
    async def _run_registered(self, state: RunState) -> JobStatus:
        try:
            return await self._drive(state)
        except asyncio.CancelledError:
            self._abandon(state.job_id)
            raise
        except (JobAccessError, JobStateError):
            raise
        except Exception as exc:
            LOGGER.exception("Run of job %s crashed", state.job_id)
            await self._fail_unexpectedly(state.job_id, str(exc) or type(exc).__name__)
            return JobStatus.FAILED
        finally:
            self._unregister(state)

    async def _drive(self, state: RunState) -> JobStatus:
        job = await asyncio.to_thread(self.store.load_job, state.job_id)
        if job.user_id != state.user_id:
            raise JobAccessError(f"User {state.user_id} does not own job {job.id}")
        restarting = job.status == JobStatus.PAUSED
        status = await self._set_job_status(job.id, job.status, JobStatus.RUNNING)
        self.bus.publish(job.id, JobResumed(job_id=job.id) if restarting else JobStarted(job_id=job.id))
        LOGGER.info("Running job %s with %d tasks", job.id, len(job.tasks))

        completed: List[Attempt] = []
        for index, task in enumerate(job.ordered_tasks()):
            with self._lock:
                state.current_task_index = index
            if task.status == TaskStatus.COMPLETED:
                previous = task.last_successful_attempt()
                if previous is not None:
                    completed.append(previous)
                continue
            if task.status in (TaskStatus.FAILED, TaskStatus.SKIPPED):
                continue

            checked = await self._checkpoint(state, status)
            if checked is None:
                return JobStatus.FAILED
            status = checked

            agent = job.get_agent(task.agent_id)
            if agent is None:
                if await self._handle_missing_agent(job, task):
                    continue
                return JobStatus.FAILED

            attempt, error = await self._run_task(state, job, task, agent, completed)
            if attempt is None:
                await self._set_job_status(job.id, status, JobStatus.FAILED)
                self.bus.publish(job.id, JobFailed(job_id=job.id, error=error or "Task failed"))
                LOGGER.warning("Job %s failed on task %s: %s", job.id, task.id, error)
                return JobStatus.FAILED
            completed.append(attempt)

        await self._set_job_status(job.id, status, JobStatus.COMPLETED)
        self.bus.publish(job.id, JobCompleted(job_id=job.id))
        LOGGER.info("Job %s completed", job.id)
        return JobStatus.COMPLETED

    async def _checkpoint(self, state: RunState, status: JobStatus) -> Optional[JobStatus]:
        """Honour pause and cancel requests; ``None`` means the run was cancelled."""

        loop = asyncio.get_running_loop()
        while True:
            with self._lock:
                requested = state.status
                if requested == RunStatus.PAUSED:
                    signal = state.signal or ResumeSignal(loop)
                    state.signal = signal
            if requested == RunStatus.CANCELLED:
                await self._set_job_status(state.job_id, status, JobStatus.FAILED)
                self.bus.publish(state.job_id, JobCancelled(job_id=state.job_id))
                LOGGER.info("Job %s cancelled", state.job_id)
                return None
            if requested == RunStatus.RUNNING:
                if status == JobStatus.PAUSED:
                    status = await self._set_job_status(state.job_id, status, JobStatus.RUNNING)
                    self.bus.publish(state.job_id, JobResumed(job_id=state.job_id))
                return status
            if status != JobStatus.PAUSED:
                status = await self._set_job_status(state.job_id, status, JobStatus.PAUSED)
                self.bus.publish(state.job_id, JobPaused(job_id=state.job_id))
                LOGGER.info("Job %s paused", state.job_id)
            await signal.wait()
            with self._lock:
                if state.signal is signal:
                    state.signal = None

    async def _handle_missing_agent(self, job: Job, task: Task) -> bool:
        """Apply the missing-agent policy; ``False`` means the job has failed."""

        error = f"Agent {task.agent_id} is not assigned to job {job.id}"
        LOGGER.warning("Task %s: %s (policy %s)", task.id, error, self.missing_agent_policy.value)
        if self.missing_agent_policy == MissingAgentPolicy.SKIP_TASK:
            await self._set_task_status(task, TaskStatus.SKIPPED)
            return True
        await self._set_task_status(task, TaskStatus.FAILED)
        self.bus.publish(job.id, TaskFailed(job_id=job.id, task_id=task.id, error=error))
        if self.missing_agent_policy == MissingAgentPolicy.FAIL_JOB:
            await self._set_job_status(job.id, JobStatus.RUNNING, JobStatus.FAILED)
            self.bus.publish(job.id, JobFailed(job_id=job.id, error=error))
            return False
        return True

    async def _run_task(
        self,
        state: RunState,
        job: Job,
        task: Task,
        agent: Agent,
        completed: List[Attempt],
    ) -> Tuple[Optional[Attempt], Optional[str]]:
        last_error: Optional[str] = None
        max_attempts = self.retry.max_attempts

        def on_tool_call(record: ToolCallRecord) -> None:
            self.bus.publish(
                job.id,
                ToolCalled(
                    job_id=job.id,
                    task_id=task.id,
                    tool_name=record.tool_name,
                    arguments=record.arguments,
                    result=record.result,
                    error=record.error,
                ),
            )

        for try_number in range(1, max_attempts + 1):
            delay = self.retry.backoff_before(try_number)
            if delay:
                LOGGER.info("Retrying task %s in %.2fs", task.id, delay)
                await asyncio.sleep(delay)
            await self._set_task_status(task, TaskStatus.RUNNING)
            self.bus.publish(
                job.id,
                TaskStarted(job_id=job.id, task_id=task.id, attempt_number=task.next_attempt_number),
            )
            result = await self.executor.execute(
                task,
                agent,
                job,
                list(completed),
                user_id=state.user_id,
                on_tool_call=on_tool_call,
            )
            attempt = result.attempt
            if result.success:
                resulting = TaskStatus.COMPLETED
            elif try_number == max_attempts:
                resulting = TaskStatus.FAILED
            else:
                resulting = TaskStatus.PENDING
            ensure_task_transition(task.status, resulting)
            await asyncio.to_thread(self.store.append_task_attempt, task.id, attempt, resulting)
            task.attempts.append(attempt)
            task.status = resulting

            if result.success:
                self.bus.publish(
                    job.id,
                    TaskCompleted(
                        job_id=job.id,
                        task_id=task.id,
                        attempt_number=attempt.number,
                        response=attempt.response,
                        reasoning=attempt.reasoning,
                    ),
                )
                return attempt, None
            last_error = attempt.error
            self.bus.publish(
                job.id,
                TaskFailed(
                    job_id=job.id,
                    task_id=task.id,
                    attempt_number=attempt.number,
                    error=last_error or "Attempt failed",
                    timed_out=attempt.status == AttemptStatus.TIMED_OUT,
                ),
            )
        return None, last_error

    async def _set_job_status(self, job_id: str, current: JobStatus, target: JobStatus) -> JobStatus:
        ensure_job_transition(current, target)
        await asyncio.to_thread(self.store.update_job_status, job_id, target)
        return target

    async def _set_task_status(self, task: Task, target: TaskStatus) -> None:
        ensure_task_transition(task.status, target)
        await asyncio.to_thread(self.store.update_task, task.id, status=target)
        task.status = target

    async def _fail_unexpectedly(self, job_id: str, error: str) -> None:
        try:
            job = await asyncio.to_thread(self.store.load_job, job_id)
            if is_terminal_job(job.status):
                return
            await self._set_job_status(job_id, job.status, JobStatus.FAILED)
        except Exception:
            LOGGER.exception("Could not mark job %s as failed", job_id)
            return
        self.bus.publish(job_id, JobFailed(job_id=job_id, error=error))

    def _abandon(self, job_id: str) -> None:
        """Close out a run whose asyncio task was cancelled from outside."""

        try:
            job = self.store.load_job(job_id)
            if is_terminal_job(job.status):
                return
            ensure_job_transition(job.status, JobStatus.FAILED)
            self.store.update_job_status(job_id, JobStatus.FAILED)
        except Exception:
            LOGGER.exception("Could not close out cancelled run of job %s", job_id)
            return
        self.bus.publish(job_id, JobCancelled(job_id=job_id))
