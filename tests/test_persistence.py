import pytest

from agentjobs.agents.base import Agent
from agentjobs.errors import JobNotFoundError, JobStateError
from agentjobs.persistence.memory import InMemoryJobStore
from agentjobs.tasks.base import Attempt, AttemptStatus, JobStatus, PlannedTask, TaskStatus
from agentjobs.tools.base import ToolCallRecord


def _store_with_job():
    store = InMemoryJobStore()
    agent = Agent(id="wallet", name="Wallet", instructions="Handle funds.", tools=["calculator"])
    job = store.create_job("alice", "Pay", "pay bob", [agent])
    tasks = store.create_tasks(
        job.id,
        [
            PlannedTask(title="second", agent_id="wallet", order=2),
            PlannedTask(title="first", agent_id="wallet", order=1),
        ],
    )
    return store, job, tasks


def test_create_and_load_job():
    store, job, tasks = _store_with_job()

    loaded = store.load_job(job.id)

    assert loaded.status == JobStatus.PENDING
    assert loaded.agents[0].id == "wallet"
    assert [task.title for task in loaded.ordered_tasks()] == ["first", "second"]
    assert all(task.job_id == job.id for task in tasks)
    assert [item.id for item in store.list_jobs("alice")] == [job.id]
    assert store.list_jobs("bob") == []


def test_reads_are_copies():
    store, job, _ = _store_with_job()

    loaded = store.load_job(job.id)
    loaded.tasks.clear()
    loaded.status = JobStatus.FAILED

    again = store.load_job(job.id)
    assert len(again.tasks) == 2
    assert again.status == JobStatus.PENDING


def test_append_attempt_updates_status_and_keeps_trace():
    store, job, tasks = _store_with_job()
    attempt = Attempt(number=1)
    attempt.tool_calls.append(ToolCallRecord(tool_name="calculator", arguments={"input": "1+1"}, result="2"))
    attempt.finish(AttemptStatus.COMPLETED, response="2")

    store.append_task_attempt(tasks[0].id, attempt, TaskStatus.COMPLETED)
    attempt.response = "mutated after the fact"

    task = next(item for item in store.load_job(job.id).tasks if item.id == tasks[0].id)
    assert task.status == TaskStatus.COMPLETED
    assert task.attempts[0].response == "2"
    assert task.attempts[0].tool_calls[0].result == "2"


def test_update_task_fields():
    store, _, tasks = _store_with_job()

    updated = store.update_task(tasks[0].id, title="renamed", order=5)
    assert (updated.title, updated.order) == ("renamed", 5)

    store.update_task(tasks[0].id, status=TaskStatus.RUNNING)
    with pytest.raises(JobStateError):
        store.update_task(tasks[0].id, description="too late")
    with pytest.raises(ValueError):
        store.update_task(tasks[0].id, agent_id="other")


def test_unknown_ids_raise_not_found():
    store = InMemoryJobStore()

    with pytest.raises(JobNotFoundError):
        store.load_job("nope")
    with pytest.raises(JobNotFoundError):
        store.update_job_status("nope", JobStatus.FAILED)
    with pytest.raises(JobNotFoundError):
        store.update_task("nope", status=TaskStatus.FAILED)


def test_attempt_round_trips_through_mapping():
    attempt = Attempt(number=2)
    attempt.tool_calls.append(ToolCallRecord(tool_name="echo", arguments={"input": "x"}, error="boom"))
    attempt.finish(AttemptStatus.TIMED_OUT, error="Timed out after 1.0s")

    restored = Attempt.from_mapping(attempt.to_dict())

    assert restored == attempt
    with pytest.raises(ValueError):
        attempt.finish(AttemptStatus.COMPLETED)
