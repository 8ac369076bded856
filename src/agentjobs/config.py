"""Configuration helpers for agentjobs job files."""

from __future__ import annotations

import importlib
import os
import pathlib
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, MutableMapping, Optional

import yaml

DB_URL_ENV = "AGENTJOBS_DB_URL"
LOG_LEVEL_ENV = "AGENTJOBS_LOG_LEVEL"

MISSING_AGENT_POLICIES = ("fail_task", "skip_task", "fail_job")


class ConfigError(RuntimeError):
    """Raised when configuration files are invalid."""


@dataclass
class ProviderSpec:
    """Which text-generation provider to build and with what parameters."""

    llm_provider: Optional[str] = None
    llm_params: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "ProviderSpec":
        if not data:
            return cls()
        return cls(
            llm_provider=data.get("llm_provider"),
            llm_params=dict(data.get("llm_params", {})),
        )

    def merged_with(self, defaults: "ProviderSpec") -> "ProviderSpec":
        params = dict(defaults.llm_params)
        params.update(self.llm_params)
        return ProviderSpec(llm_provider=self.llm_provider or defaults.llm_provider, llm_params=params)


@dataclass
class AgentSpec:
    """Definition of an agent profile from config."""

    key: str
    name: str
    instructions: str
    tools: List[str]
    description: Optional[str] = None
    id: Optional[str] = None

    @classmethod
    def from_mapping(cls, key: str, data: Mapping[str, Any]) -> "AgentSpec":
        if "instructions" not in data:
            raise ConfigError(f"Agent '{key}' requires instructions")
        tools = data.get("tools") or []
        if not isinstance(tools, list):
            raise ConfigError(f"Agent '{key}' tools must be a list")
        return cls(
            key=key,
            name=str(data.get("name", key)),
            instructions=str(data["instructions"]),
            tools=[str(item) for item in tools],
            description=data.get("description"),
            id=(str(data["id"]) if data.get("id") is not None else None),
        )


@dataclass
class ToolSpec:
    """Configuration for a tool instance."""

    name: str
    type: str
    args: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, name: str, data: Mapping[str, Any]) -> "ToolSpec":
        if "type" not in data:
            raise ConfigError(f"Tool '{name}' requires a type path")
        return cls(name=name, type=str(data["type"]), args=dict(data.get("args", {})))


@dataclass
class RetrySpec:
    """Retry budget and backoff for task attempts, delays in seconds."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "RetrySpec":
        if not data:
            return cls()
        try:
            return cls(
                max_attempts=int(data.get("max_attempts", 3)),
                base_delay=float(data.get("base_delay", 1.0)),
                max_delay=float(data.get("max_delay", 10.0)),
                backoff_multiplier=float(data.get("backoff_multiplier", 2.0)),
            )
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid retry settings: {exc}") from exc


@dataclass
class ExecutionSpec:
    """Per-task execution limits and the missing-agent policy."""

    max_tool_steps: int = 10
    task_timeout: Optional[float] = None
    missing_agent_policy: str = "fail_task"

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "ExecutionSpec":
        if not data:
            return cls()
        policy = str(data.get("missing_agent_policy", "fail_task")).strip().lower().replace("-", "_")
        if policy not in MISSING_AGENT_POLICIES:
            raise ConfigError(
                f"missing_agent_policy must be one of {', '.join(MISSING_AGENT_POLICIES)}, got '{policy}'"
            )
        timeout = data.get("task_timeout")
        try:
            return cls(
                max_tool_steps=int(data.get("max_tool_steps", 10)),
                task_timeout=(float(timeout) if timeout is not None else None),
                missing_agent_policy=policy,
            )
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid execution settings: {exc}") from exc


@dataclass
class JobConfig:
    """Representation of a YAML job file."""

    name: str
    title: str
    goal: str
    user: str
    defaults: ProviderSpec
    planner: ProviderSpec
    agents: Dict[str, AgentSpec]
    tool_specs: Dict[str, ToolSpec]
    retry: RetrySpec = field(default_factory=RetrySpec)
    execution: ExecutionSpec = field(default_factory=ExecutionSpec)
    file_path: Optional[pathlib.Path] = None

    @classmethod
    def from_file(cls, path: str | pathlib.Path) -> "JobConfig":
        p = pathlib.Path(path)
        data = yaml.safe_load(p.read_text())
        if not isinstance(data, MutableMapping):
            raise ConfigError("Configuration root must be a mapping")
        return cls.from_mapping(data, p)

    @classmethod
    def from_yaml(cls, content: str) -> "JobConfig":
        data = yaml.safe_load(content)
        if not isinstance(data, MutableMapping):
            raise ConfigError("Configuration root must be a mapping")
        return cls.from_mapping(data)

    @classmethod
    def from_mapping(cls, data: MutableMapping, path: Optional[pathlib.Path] = None) -> "JobConfig":
        goal = data.get("goal")
        if not isinstance(goal, str) or not goal.strip():
            raise ConfigError("A non-empty goal is required")
        agents = {
            key: AgentSpec.from_mapping(key, info)
            for key, info in (data.get("agents") or {}).items()
        }
        if not agents:
            raise ConfigError("At least one agent must be defined")
        tool_specs = {
            name: ToolSpec.from_mapping(name, info)
            for name, info in (data.get("tools") or {}).items()
        }
        defaults = ProviderSpec.from_mapping(data.get("defaults"))
        name = data.get("name", path.stem if path else "Untitled")
        return cls(
            name=name,
            title=str(data.get("title") or name),
            goal=goal.strip(),
            user=str(data.get("user", "local")),
            defaults=defaults,
            planner=ProviderSpec.from_mapping(data.get("planner")).merged_with(defaults),
            agents=agents,
            tool_specs=tool_specs,
            retry=RetrySpec.from_mapping(data.get("retry")),
            execution=ExecutionSpec.from_mapping(data.get("execution")),
            file_path=path,
        )

    def get_agent(self, key: str) -> AgentSpec:
        try:
            return self.agents[key]
        except KeyError as exc:
            raise ConfigError(f"Unknown agent '{key}'") from exc


def database_url(explicit: Optional[str] = None) -> Optional[str]:
    """Return the Postgres URL from an explicit value or the environment."""

    value = (explicit or os.getenv(DB_URL_ENV, "")).strip()
    return value or None


def import_string(path: str) -> Any:
    """Return attribute from module specified by path "module:qualname"."""

    if ":" not in path:
        raise ConfigError(f"Import path '{path}' must use module:qualname format")
    module_path, attr = path.split(":", 1)
    module = importlib.import_module(module_path)
    try:
        return getattr(module, attr)
    except AttributeError as exc:
        raise ConfigError(f"Module '{module_path}' has no attribute '{attr}'") from exc


def instantiate_from_path(path: str, *args: Any, **kwargs: Any) -> Any:
    """Import and instantiate a class given its dotted path."""

    cls = import_string(path)
    return cls(*args, **kwargs)
