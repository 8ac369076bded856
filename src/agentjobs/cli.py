"""Command line interface for agentjobs."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .agents.base import Agent
from .agents.planning import ProviderToolCaller
from .config import LOG_LEVEL_ENV, AgentSpec, ConfigError, JobConfig, ProviderSpec, database_url, instantiate_from_path
from .errors import AgentJobsError, DecompositionError
from .events.bus import EventBus
from .events.models import BaseEvent
from .jobs.decomposer import GoalDecomposer
from .jobs.orchestrator import MissingAgentPolicy, Orchestrator
from .jobs.service import JobService
from .llm.caller import ToolCaller
from .llm.provider import ConsoleEchoProvider, LLMProvider
from .persistence.base import JobStore
from .persistence.memory import InMemoryJobStore
from .tasks.base import Job, JobStatus
from .tasks.executor import TaskExecutor
from .tasks.retry import RetryPolicy
from .tools.builtin import register_builtin_tools
from .tools.registry import ToolRegistry

app = typer.Typer(help="Plan goals into agent tasks and run them")
console = Console()

ENGINES = ("planning", "autogen")


@dataclass
class Runtime:
    config: JobConfig
    store: JobStore
    bus: EventBus
    tools: ToolRegistry
    service: JobService
    agents: List[Agent]


def _configure_logging(level: Optional[str]) -> None:
    name = (level or os.getenv(LOG_LEVEL_ENV) or "WARNING").upper()
    logging.basicConfig(
        level=getattr(logging, name, logging.WARNING),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


def _build_provider(spec: ProviderSpec) -> LLMProvider:
    if not spec.llm_provider:
        return ConsoleEchoProvider(console)
    return instantiate_from_path(spec.llm_provider, **spec.llm_params)


def _build_caller(config: JobConfig, engine: str) -> ToolCaller:
    if engine == "autogen":
        from .llm.autogen_caller import AutogenToolCaller

        params = config.defaults.llm_params
        return AutogenToolCaller(
            model=params.get("model", "llama3"),
            host=params.get("host", "http://127.0.0.1:11434"),
            api_type=params.get("api_type", "ollama"),
            api_key=params.get("api_key", "NA"),
            timeout=params.get("timeout", 120),
        )
    return ProviderToolCaller(_build_provider(config.defaults))


def _build_store(db_url: Optional[str]) -> JobStore:
    url = database_url(db_url)
    if url:
        from .persistence.postgres import PostgresJobStore

        return PostgresJobStore(url)
    return InMemoryJobStore()


def _materialize_agent(spec: AgentSpec, tools: ToolRegistry) -> Agent:
    unknown = [name for name in spec.tools if name not in tools]
    if unknown:
        raise ConfigError(f"Agent '{spec.key}' uses unknown tools: {', '.join(unknown)}")
    return Agent(
        id=spec.id or spec.key,
        name=spec.name,
        instructions=spec.instructions,
        description=spec.description or "",
        tools=list(spec.tools),
    )


def _build_runtime(config_path: Path, engine: str, db_url: Optional[str]) -> Runtime:
    if engine not in ENGINES:
        raise typer.BadParameter(f"engine must be one of {', '.join(ENGINES)}")
    config = JobConfig.from_file(config_path)
    tools = ToolRegistry()
    register_builtin_tools(tools)
    tools.discover_entrypoints()
    tools.configure_from_specs(config.tool_specs)
    agents = [_materialize_agent(spec, tools) for spec in config.agents.values()]

    store = _build_store(db_url)
    bus = EventBus()
    retry = RetryPolicy(
        max_attempts=config.retry.max_attempts,
        base_delay=config.retry.base_delay,
        max_delay=config.retry.max_delay,
        backoff_multiplier=config.retry.backoff_multiplier,
    )
    executor = TaskExecutor(
        _build_caller(config, engine),
        tools,
        max_tool_steps=config.execution.max_tool_steps,
        timeout=config.execution.task_timeout,
    )
    orchestrator = Orchestrator(
        store,
        executor,
        bus,
        retry=retry,
        missing_agent_policy=MissingAgentPolicy(config.execution.missing_agent_policy),
    )
    descriptions = {name: tool.description for name, tool in tools.available().items()}
    decomposer = GoalDecomposer(_build_provider(config.planner), tool_descriptions=descriptions)
    service = JobService(store, orchestrator, decomposer, bus)
    return Runtime(config=config, store=store, bus=bus, tools=tools, service=service, agents=agents)


def _render_plan(job: Job) -> None:
    names = {agent.id: agent.name for agent in job.agents}
    plan = Table(title="Execution Plan", show_lines=True)
    plan.add_column("#")
    plan.add_column("Task")
    plan.add_column("Agent")
    plan.add_column("Description")
    for task in job.ordered_tasks():
        plan.add_row(str(task.order), task.title, names.get(task.agent_id, task.agent_id), task.description)
    console.print(plan)


def _render_outputs(job: Job) -> None:
    table = Table(title="Task outputs", show_lines=True)
    table.add_column("Task")
    table.add_column("Status")
    table.add_column("Attempts")
    table.add_column("Output")
    for task in job.ordered_tasks():
        attempt = task.attempts[-1] if task.attempts else None
        output = ""
        if attempt is not None:
            output = attempt.response or attempt.error or ""
        table.add_row(task.title, task.status.value, str(len(task.attempts)), output)
    console.print(table)


def _render_trace(job: Job) -> None:
    for task in job.ordered_tasks():
        for attempt in task.attempts:
            console.rule(f"Trace for {task.title} (attempt {attempt.number}, {attempt.status.value})")
            if attempt.reasoning:
                console.print(f"[italic]{attempt.reasoning}[/]")
            for call in attempt.tool_calls:
                outcome = f"[red]error[/] {call.error}" if call.error else str(call.result)
                console.print(f"- {call.tool_name}({call.arguments}) -> {outcome}")


class _ProgressView:
    """Maps run events onto rich progress rows."""

    def __init__(self, progress: Progress, job: Job) -> None:
        self.progress = progress
        self.rows: Dict[str, int] = {
            task.id: progress.add_task(task.title, status="[yellow]pending", start=False)
            for task in job.ordered_tasks()
        }

    def update(self, event: BaseEvent) -> None:
        row = self.rows.get(getattr(event, "task_id", ""))
        if event.type == "task_started" and row is not None:
            self.progress.update(row, status=f"[cyan]attempt {event.attempt_number}...")
            self.progress.start_task(row)
        elif event.type == "tool_called" and row is not None:
            self.progress.update(row, status=f"[cyan]tool {event.tool_name}")
        elif event.type == "task_completed" and row is not None:
            self.progress.update(row, status="[green]completed")
        elif event.type == "task_failed" and row is not None:
            label = "timed out" if event.timed_out else "failed"
            self.progress.update(row, status=f"[red]{label}: {event.error}")
        elif event.type in ("job_paused", "job_resumed", "job_cancelled"):
            self.progress.console.print(f"[bold yellow]{event.type.replace('_', ' ')}[/]")
        elif event.type == "job_failed":
            self.progress.console.print(f"[bold red]job failed:[/] {event.error}")


def _install_interrupt(service: JobService, job_id: str) -> bool:
    loop = asyncio.get_running_loop()

    def on_interrupt() -> None:
        console.print("[yellow]Cancelling run...[/]")
        service.cancel_run(job_id)

    try:
        loop.add_signal_handler(signal.SIGINT, on_interrupt)
    except (NotImplementedError, RuntimeError, ValueError):
        return False
    return True


async def _plan_job(runtime: Runtime, *, quiet: bool = False) -> Job:
    config = runtime.config
    job = await asyncio.to_thread(runtime.store.create_job, config.user, config.title, config.goal, runtime.agents)
    summary = await runtime.service.start_decomposition(job.id)
    planned = await asyncio.to_thread(runtime.store.load_job, job.id)
    if summary.reasoning and not quiet:
        console.print(f"[italic]{summary.reasoning}[/]")
    return planned


async def _run_job(runtime: Runtime, *, as_json: bool) -> Job:
    job = await _plan_job(runtime, quiet=as_json)
    if not as_json:
        _render_plan(job)
    service = runtime.service
    async with service.stream_events(job.id) as stream:
        run = await service.start_run(job.id, runtime.config.user)
        interrupt = _install_interrupt(service, job.id)
        try:
            if as_json:
                async for event in stream:
                    typer.echo(event.model_dump_json())
            else:
                progress = Progress(
                    SpinnerColumn(style="cyan"),
                    TextColumn("[progress.description]{task.description}"),
                    TextColumn("{task.fields[status]}"),
                    console=console,
                    transient=False,
                )
                with progress:
                    view = _ProgressView(progress, job)
                    async for event in stream:
                        view.update(event)
            if run is not None:
                await run
        finally:
            if interrupt:
                asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)
    return await asyncio.to_thread(runtime.store.load_job, job.id)


@app.command()
def run(
    config_path: Path = typer.Argument(..., help="Path to YAML job file"),
    show_trace: bool = typer.Option(False, "--show-trace", help="Print tool calls and reasoning per attempt"),
    as_json: bool = typer.Option(False, "--json", help="Print run events as JSON lines"),
    engine: str = typer.Option("planning", help="Engine to use: planning or autogen"),
    db_url: Optional[str] = typer.Option(None, "--db-url", help="Postgres URL (defaults to AGENTJOBS_DB_URL)"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Logging level"),
) -> None:
    """Plan the job described in the given file and run it."""

    _configure_logging(log_level)
    try:
        runtime = _build_runtime(config_path, engine, db_url)
    except ConfigError as exc:
        console.print(f"[red]Invalid job file:[/] {exc}")
        raise typer.Exit(code=2) from exc
    if not as_json:
        console.print(f"[bold green]Running job[/] {runtime.config.name} (engine={engine})")
    try:
        job = asyncio.run(_run_job(runtime, as_json=as_json))
    except DecompositionError as exc:
        console.print(f"[red]Planning failed:[/] {exc}")
        raise typer.Exit(code=1) from exc
    except AgentJobsError as exc:
        console.print(f"[red]{exc}[/]")
        raise typer.Exit(code=1) from exc

    if not as_json:
        _render_outputs(job)
        if show_trace:
            _render_trace(job)
        console.print(f"[bold]Job status:[/] {job.status.value}")
    if job.status != JobStatus.COMPLETED:
        raise typer.Exit(code=1)


@app.command()
def plan(
    config_path: Path = typer.Argument(..., help="Path to YAML job file"),
    db_url: Optional[str] = typer.Option(None, "--db-url", help="Postgres URL (defaults to AGENTJOBS_DB_URL)"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Logging level"),
) -> None:
    """Decompose the goal into tasks without running them."""

    _configure_logging(log_level)
    try:
        runtime = _build_runtime(config_path, "planning", db_url)
        job = asyncio.run(_plan_job(runtime))
    except ConfigError as exc:
        console.print(f"[red]Invalid job file:[/] {exc}")
        raise typer.Exit(code=2) from exc
    except AgentJobsError as exc:
        console.print(f"[red]Planning failed:[/] {exc}")
        raise typer.Exit(code=1) from exc
    _render_plan(job)


@app.command()
def inspect(config_path: Path = typer.Argument(..., help="Job file to inspect")) -> None:
    """Print the goal, agents, tools and execution settings of a job file."""

    try:
        config = JobConfig.from_file(config_path)
    except ConfigError as exc:
        console.print(f"[red]Invalid job file:[/] {exc}")
        raise typer.Exit(code=2) from exc
    tools = ToolRegistry()
    register_builtin_tools(tools)
    tools.configure_from_specs(config.tool_specs)
    console.print(f"[bold]Job:[/] {config.name}\n{config.goal}")
    console.print("[bold]Agents[/]")
    for spec in config.agents.values():
        console.print(f"- {spec.id or spec.key} ({spec.name}): tools={spec.tools}")
    console.print("[bold]Tools[/]")
    for name in tools.names():
        console.print(f"- {name}")
    retry = config.retry
    console.print(
        f"[bold]Retry:[/] max_attempts={retry.max_attempts} base_delay={retry.base_delay}s "
        f"max_delay={retry.max_delay}s multiplier={retry.backoff_multiplier}"
    )
    execution = config.execution
    console.print(
        f"[bold]Execution:[/] max_tool_steps={execution.max_tool_steps} "
        f"task_timeout={execution.task_timeout} missing_agent_policy={execution.missing_agent_policy}"
    )


if __name__ == "__main__":  # pragma: no cover
    app()
