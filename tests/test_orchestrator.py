import asyncio
import threading
import time

import pytest

from agentjobs.errors import RunAlreadyActiveError
from agentjobs.events.models import TERMINAL_EVENT_TYPES
from agentjobs.jobs.orchestrator import MissingAgentPolicy
from agentjobs.llm.caller import ToolCallOutcome
from agentjobs.tasks.base import AttemptStatus, JobStatus, RunStatus, TaskStatus
from agentjobs.tasks.retry import RetryPolicy

from conftest import event_types


def _terminal(events):
    return [event.type for event in events if event.type in TERMINAL_EVENT_TYPES]


@pytest.mark.asyncio
async def test_happy_path_runs_tasks_in_order(make_runtime):
    runtime = make_runtime("balance ok", "sent", "verified")
    job = runtime.ready_job(["check balance", "transfer", "verify"], agent_ids=["researcher", "writer", "researcher"])
    events = runtime.record(job.id)

    status = await runtime.orchestrator.run(job.id, "alice")

    assert status == JobStatus.COMPLETED
    assert event_types(events) == [
        "job_started",
        "task_started",
        "task_completed",
        "task_started",
        "task_completed",
        "task_started",
        "task_completed",
        "job_completed",
    ]
    stored = runtime.store.load_job(job.id)
    assert stored.status == JobStatus.COMPLETED
    assert [task.status for task in stored.ordered_tasks()] == [TaskStatus.COMPLETED] * 3
    assert [task.attempts[0].response for task in stored.ordered_tasks()] == ["balance ok", "sent", "verified"]
    assert not runtime.orchestrator.is_running(job.id)


@pytest.mark.asyncio
async def test_previous_results_flow_into_later_instructions(make_runtime):
    runtime = make_runtime("balance is 10", "done")
    job = runtime.ready_job(["check", "report"])

    await runtime.orchestrator.run(job.id, "alice")

    first_instructions, first_prompt = runtime.caller.invocations[0]
    second_instructions, _ = runtime.caller.invocations[1]
    assert "Job Goal: transfer funds" in first_instructions
    assert "Context from previous tasks" not in first_instructions
    assert first_prompt == "Task: check\n\nDescription: do check"
    assert "Previous task result: balance is 10" in second_instructions


@pytest.mark.asyncio
async def test_task_exhausting_retries_fails_job(make_runtime):
    runtime = make_runtime(RuntimeError("boom 1"), RuntimeError("boom 2"), RuntimeError("boom 3"))
    job = runtime.ready_job(["flaky", "never"])
    events = runtime.record(job.id)

    status = await runtime.orchestrator.run(job.id, "alice")

    assert status == JobStatus.FAILED
    stored = runtime.store.load_job(job.id)
    flaky, never = stored.ordered_tasks()
    assert [attempt.number for attempt in flaky.attempts] == [1, 2, 3]
    assert [attempt.status for attempt in flaky.attempts] == [AttemptStatus.FAILED] * 3
    assert flaky.status == TaskStatus.FAILED
    assert never.status == TaskStatus.PENDING
    assert never.attempts == []
    assert stored.status == JobStatus.FAILED
    assert _terminal(events) == ["job_failed"]
    assert events[-1].error == "boom 3"
    assert [event.attempt_number for event in events if event.type == "task_started"] == [1, 2, 3]


@pytest.mark.asyncio
async def test_retry_then_success(make_runtime):
    runtime = make_runtime(RuntimeError("transient"), "recovered")
    job = runtime.ready_job(["flaky"])

    status = await runtime.orchestrator.run(job.id, "alice")

    assert status == JobStatus.COMPLETED
    task = runtime.store.load_job(job.id).tasks[0]
    assert [attempt.status for attempt in task.attempts] == [AttemptStatus.FAILED, AttemptStatus.COMPLETED]
    assert task.attempts[0].error == "transient"
    assert task.status == TaskStatus.COMPLETED


@pytest.mark.asyncio
async def test_retry_waits_with_backoff(make_runtime, monkeypatch):
    sleeps = []

    async def fake_sleep(delay):
        sleeps.append(delay)

    monkeypatch.setattr("agentjobs.jobs.orchestrator.asyncio.sleep", fake_sleep)
    runtime = make_runtime(
        RuntimeError("a"),
        RuntimeError("b"),
        "ok",
        retry=RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=10.0),
    )
    job = runtime.ready_job(["flaky"])

    await runtime.orchestrator.run(job.id, "alice")

    assert sleeps == [1.0, 2.0]


@pytest.mark.asyncio
async def test_pause_after_first_task_then_resume(make_runtime):
    runtime = make_runtime("one", "two")
    job = runtime.ready_job(["first", "second"])
    paused = asyncio.Event()
    events = runtime.record(job.id)

    def control(event):
        if event.type == "task_completed" and event.attempt_number == 1 and len(runtime.caller.invocations) == 1:
            assert runtime.orchestrator.pause(job.id)
        if event.type == "job_paused":
            paused.set()

    runtime.bus.subscribe(job.id, control)
    run = runtime.orchestrator.start(job.id, "alice")
    await asyncio.wait_for(paused.wait(), timeout=5)

    assert runtime.store.load_job(job.id).status == JobStatus.PAUSED
    assert len(runtime.caller.invocations) == 1
    assert runtime.orchestrator.get_state(job.id).status == RunStatus.PAUSED
    assert runtime.orchestrator.resume(job.id)

    assert await asyncio.wait_for(run, timeout=5) == JobStatus.COMPLETED
    second = runtime.store.load_job(job.id).ordered_tasks()[1]
    assert len(second.attempts) == 1
    assert len(runtime.caller.invocations) == 2
    types = event_types(events)
    assert types.index("job_paused") < types.index("job_resumed")
    assert types.count("task_started") == 2
    assert _terminal(events) == ["job_completed"]


@pytest.mark.asyncio
async def test_each_pause_waits_on_a_fresh_signal(make_runtime):
    runtime = make_runtime("one", "two")
    job = runtime.ready_job(["first", "second"])
    events = runtime.record(job.id)

    def control(event):
        if event.type == "job_paused":
            assert runtime.orchestrator.resume(job.id)
        if event.type == "task_completed" and len(runtime.caller.invocations) == 1:
            assert runtime.orchestrator.pause(job.id)

    runtime.bus.subscribe(job.id, control)
    run = runtime.orchestrator.start(job.id, "alice")
    assert runtime.orchestrator.pause(job.id)

    assert await asyncio.wait_for(run, timeout=5) == JobStatus.COMPLETED
    types = event_types(events)
    assert types.count("job_paused") == 2
    assert types.count("job_resumed") == 2
    assert types.index("job_resumed") < types.index("task_started")
    assert _terminal(events) == ["job_completed"]


@pytest.mark.asyncio
async def test_resume_from_another_thread(make_runtime):
    runtime = make_runtime("one")
    job = runtime.ready_job(["only"])
    paused = asyncio.Event()
    runtime.bus.subscribe(job.id, lambda event: paused.set() if event.type == "job_paused" else None)

    run = runtime.orchestrator.start(job.id, "alice")
    assert runtime.orchestrator.pause(job.id)
    await asyncio.wait_for(paused.wait(), timeout=5)

    results = []
    worker = threading.Thread(target=lambda: results.append(runtime.orchestrator.resume(job.id)))
    worker.start()
    worker.join()

    assert results == [True]
    assert await asyncio.wait_for(run, timeout=5) == JobStatus.COMPLETED


@pytest.mark.asyncio
async def test_cancel_while_paused_fails_job_without_resume(make_runtime):
    runtime = make_runtime("never used")
    job = runtime.ready_job(["only"])
    events = runtime.record(job.id)
    paused = asyncio.Event()
    runtime.bus.subscribe(job.id, lambda event: paused.set() if event.type == "job_paused" else None)

    run = runtime.orchestrator.start(job.id, "alice")
    assert runtime.orchestrator.pause(job.id)
    await asyncio.wait_for(paused.wait(), timeout=5)
    assert runtime.orchestrator.cancel(job.id)

    assert await asyncio.wait_for(run, timeout=5) == JobStatus.FAILED
    assert runtime.store.load_job(job.id).status == JobStatus.FAILED
    assert runtime.caller.invocations == []
    assert "job_resumed" not in event_types(events)
    assert _terminal(events) == ["job_cancelled"]
    assert not runtime.orchestrator.is_running(job.id)


@pytest.mark.asyncio
async def test_cancel_before_first_task(make_runtime):
    runtime = make_runtime()
    job = runtime.ready_job(["only"])
    events = runtime.record(job.id)

    run = runtime.orchestrator.start(job.id, "alice")
    assert runtime.orchestrator.cancel(job.id)

    assert await run == JobStatus.FAILED
    assert event_types(events) == ["job_started", "job_cancelled"]


@pytest.mark.asyncio
async def test_pause_and_resume_are_idempotent(make_runtime):
    runtime = make_runtime()
    job = runtime.ready_job(["only"])

    run = runtime.orchestrator.start(job.id, "alice")
    assert runtime.orchestrator.resume(job.id) is False
    assert runtime.orchestrator.pause(job.id) is True
    assert runtime.orchestrator.pause(job.id) is False
    assert runtime.orchestrator.get_state(job.id).status == RunStatus.PAUSED
    assert runtime.orchestrator.resume(job.id) is True
    assert runtime.orchestrator.resume(job.id) is False

    assert await run == JobStatus.COMPLETED


def test_control_operations_without_a_run(make_runtime):
    runtime = make_runtime()

    assert runtime.orchestrator.pause("missing") is False
    assert runtime.orchestrator.resume("missing") is False
    assert runtime.orchestrator.cancel("missing") is False
    assert runtime.orchestrator.is_running("missing") is False
    assert runtime.orchestrator.get_state("missing") is None


@pytest.mark.asyncio
async def test_second_run_is_rejected(make_runtime):
    runtime = make_runtime()
    job = runtime.ready_job(["only"])

    run = runtime.orchestrator.start(job.id, "alice")
    with pytest.raises(RunAlreadyActiveError):
        runtime.orchestrator.start(job.id, "alice")

    assert await run == JobStatus.COMPLETED


@pytest.mark.asyncio
async def test_job_without_tasks_completes_immediately(make_runtime):
    runtime = make_runtime()
    job = runtime.ready_job([])
    events = runtime.record(job.id)

    assert await runtime.orchestrator.run(job.id, "alice") == JobStatus.COMPLETED
    assert event_types(events) == ["job_started", "job_completed"]
    assert runtime.caller.invocations == []


@pytest.mark.asyncio
async def test_missing_agent_fails_task_and_continues(make_runtime):
    runtime = make_runtime("second done")
    job = runtime.ready_job(["orphan", "second"], agent_ids=["ghost", "researcher"])
    events = runtime.record(job.id)

    assert await runtime.orchestrator.run(job.id, "alice") == JobStatus.COMPLETED

    orphan, second = runtime.store.load_job(job.id).ordered_tasks()
    assert orphan.status == TaskStatus.FAILED
    assert orphan.attempts == []
    assert second.status == TaskStatus.COMPLETED
    failed = [event for event in events if event.type == "task_failed"]
    assert len(failed) == 1
    assert failed[0].task_id == orphan.id
    assert failed[0].attempt_number is None


@pytest.mark.asyncio
async def test_missing_agent_skip_policy(make_runtime):
    runtime = make_runtime("second done", policy=MissingAgentPolicy.SKIP_TASK)
    job = runtime.ready_job(["orphan", "second"], agent_ids=["ghost", "researcher"])

    assert await runtime.orchestrator.run(job.id, "alice") == JobStatus.COMPLETED
    orphan, second = runtime.store.load_job(job.id).ordered_tasks()
    assert orphan.status == TaskStatus.SKIPPED
    assert second.status == TaskStatus.COMPLETED


@pytest.mark.asyncio
async def test_missing_agent_fail_job_policy(make_runtime):
    runtime = make_runtime(policy=MissingAgentPolicy.FAIL_JOB)
    job = runtime.ready_job(["orphan", "second"], agent_ids=["ghost", "researcher"])
    events = runtime.record(job.id)

    assert await runtime.orchestrator.run(job.id, "alice") == JobStatus.FAILED
    orphan, second = runtime.store.load_job(job.id).ordered_tasks()
    assert orphan.status == TaskStatus.FAILED
    assert second.status == TaskStatus.PENDING
    assert runtime.caller.invocations == []
    assert _terminal(events) == ["job_failed"]


@pytest.mark.asyncio
async def test_timed_out_attempt_counts_as_failed_try(make_runtime):
    def slow(toolset):
        time.sleep(0.3)
        return ToolCallOutcome(text="too late")

    runtime = make_runtime(slow, "fast", timeout=0.05)
    job = runtime.ready_job(["slow"])
    events = runtime.record(job.id)

    assert await runtime.orchestrator.run(job.id, "alice") == JobStatus.COMPLETED

    task = runtime.store.load_job(job.id).tasks[0]
    assert [attempt.status for attempt in task.attempts] == [AttemptStatus.TIMED_OUT, AttemptStatus.COMPLETED]
    timed_out = [event for event in events if event.type == "task_failed"]
    assert timed_out[0].timed_out is True


@pytest.mark.asyncio
async def test_tool_calls_are_recorded_and_published(make_runtime):
    def with_tools(toolset):
        toolset.call("echo", {"input": "hello"})
        toolset.call("nope", {"input": "x"})
        return ToolCallOutcome(text="used tools", reasoning="thinking")

    runtime = make_runtime(with_tools)
    job = runtime.ready_job(["tools"])
    events = runtime.record(job.id)

    await runtime.orchestrator.run(job.id, "alice")

    attempt = runtime.store.load_job(job.id).tasks[0].attempts[0]
    assert [call.tool_name for call in attempt.tool_calls] == ["echo", "nope"]
    assert attempt.tool_calls[0].result == "hello"
    assert attempt.tool_calls[1].error == "Unknown tool 'nope'"
    assert attempt.reasoning == "thinking"
    types = event_types(events)
    assert types == ["job_started", "task_started", "tool_called", "tool_called", "task_completed", "job_completed"]


@pytest.mark.asyncio
async def test_store_failure_fails_job_once(make_runtime):
    from agentjobs.persistence.memory import InMemoryJobStore

    class BrokenStore(InMemoryJobStore):
        def append_task_attempt(self, task_id, attempt, status):
            raise OSError("disk full")

    runtime = make_runtime(store=BrokenStore())
    job = runtime.ready_job(["only"])
    events = runtime.record(job.id)

    assert await runtime.orchestrator.run(job.id, "alice") == JobStatus.FAILED
    assert runtime.store.load_job(job.id).status == JobStatus.FAILED
    assert _terminal(events) == ["job_failed"]
    assert events[-1].error == "disk full"
    assert not runtime.orchestrator.is_running(job.id)
