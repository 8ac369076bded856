"""Operations exposed to callers: plan a job, run it, control it, observe it."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from ..errors import DecompositionError, JobAccessError, JobStateError
from ..events.bus import EventBus, EventCallback, Unsubscribe
from ..events.models import AnalysisCompleted, AnalysisFailed, AnalysisStarted, JobCancelled, JobFailed
from ..events.stream import EventStream
from ..persistence.base import JobStore
from ..tasks.base import JobStatus
from .decomposer import GoalDecomposer
from .orchestrator import Orchestrator
from .states import ensure_job_transition

LOGGER = logging.getLogger(__name__)

CANCELLABLE_WITHOUT_RUN = frozenset(
    {JobStatus.PENDING, JobStatus.ANALYZING, JobStatus.READY, JobStatus.PAUSED}
)


@dataclass
class DecompositionSummary:
    task_count: int
    reasoning: Optional[str] = None


class JobService:
    """Facade over the store, the decomposer and the orchestrator."""

    def __init__(
        self,
        store: JobStore,
        orchestrator: Orchestrator,
        decomposer: GoalDecomposer,
        bus: EventBus,
    ) -> None:
        self.store = store
        self.orchestrator = orchestrator
        self.decomposer = decomposer
        self.bus = bus

    async def start_decomposition(self, job_id: str) -> DecompositionSummary:
        job = await asyncio.to_thread(self.store.load_job, job_id)
        if job.status != JobStatus.PENDING:
            raise JobStateError(f"Job {job_id} must be pending to plan, not {job.status.value}")
        if not job.agents:
            raise JobStateError(f"Job {job_id} has no agents assigned")

        ensure_job_transition(job.status, JobStatus.ANALYZING)
        await asyncio.to_thread(self.store.update_job_status, job_id, JobStatus.ANALYZING)
        self.bus.publish(job_id, AnalysisStarted(job_id=job_id))

        try:
            result = await asyncio.to_thread(self.decomposer.decompose, job.goal, job.agents, job_id=job_id)
            current = (await asyncio.to_thread(self.store.load_job, job_id)).status
            if current != JobStatus.ANALYZING:
                raise JobStateError(f"Job {job_id} left analysis while planning ({current.value}); plan discarded")
            await asyncio.to_thread(self.store.create_tasks, job_id, result.tasks)
            ensure_job_transition(current, JobStatus.READY)
            await asyncio.to_thread(self.store.update_job_status, job_id, JobStatus.READY)
        except JobStateError:
            raise
        except Exception as exc:
            error = str(exc) or type(exc).__name__
            LOGGER.warning("Decomposition of job %s failed: %s", job_id, error)
            current = (await asyncio.to_thread(self.store.load_job, job_id)).status
            self.bus.publish(job_id, AnalysisFailed(job_id=job_id, error=error))
            if current == JobStatus.ANALYZING:
                await asyncio.to_thread(self.store.update_job_status, job_id, JobStatus.FAILED)
                self.bus.publish(job_id, JobFailed(job_id=job_id, error=error))
            if isinstance(exc, DecompositionError):
                raise
            raise DecompositionError(error) from exc
        self.bus.publish(job_id, AnalysisCompleted(job_id=job_id, task_count=len(result.tasks)))
        return DecompositionSummary(task_count=len(result.tasks), reasoning=result.reasoning)

    async def start_run(self, job_id: str, user_id: str) -> Optional["asyncio.Task[JobStatus]"]:
        """Start (or resume) a job's run and return without waiting for it.

        Returns the scheduled run, or ``None`` when the call resumed a paused run
        that is still active.
        """
        job = await asyncio.to_thread(self.store.load_job, job_id)
        if job.user_id != user_id:
            raise JobAccessError(f"User {user_id} does not own job {job_id}")
        if not job.tasks:
            raise JobStateError(f"Job {job_id} has no tasks to run")
        if job.status == JobStatus.PAUSED and self.orchestrator.is_running(job_id):
            if not self.orchestrator.resume(job_id):
                raise JobStateError(f"Job {job_id} is paused but its run could not be resumed")
            return None
        if job.status not in (JobStatus.READY, JobStatus.PAUSED):
            raise JobStateError(f"Job {job_id} cannot be run from status {job.status.value}")
        return self.orchestrator.start(job_id, user_id)

    def pause_run(self, job_id: str) -> bool:
        return self.orchestrator.pause(job_id)

    def resume_run(self, job_id: str) -> bool:
        return self.orchestrator.resume(job_id)

    def cancel_run(self, job_id: str) -> bool:
        if self.orchestrator.cancel(job_id):
            return True
        job = self.store.load_job(job_id)
        if job.status not in CANCELLABLE_WITHOUT_RUN:
            return False
        ensure_job_transition(job.status, JobStatus.FAILED)
        self.store.update_job_status(job_id, JobStatus.FAILED)
        self.bus.publish(job_id, JobCancelled(job_id=job_id))
        LOGGER.info("Cancelled job %s outside of a run", job_id)
        return True

    def subscribe_events(self, job_id: str, on_event: EventCallback) -> Unsubscribe:
        return self.bus.subscribe(job_id, on_event)

    def stream_events(self, job_id: str) -> EventStream:
        return EventStream(self.bus, job_id)

    def is_running(self, job_id: str) -> bool:
        return self.orchestrator.is_running(job_id)
