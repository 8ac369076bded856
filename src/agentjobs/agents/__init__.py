"""Agent profiles and the provider-backed tool-calling loop."""

from .base import Agent
from .planning import AgentAction, PlanningLoop, ProviderToolCaller

__all__ = ["Agent", "AgentAction", "PlanningLoop", "ProviderToolCaller"]
