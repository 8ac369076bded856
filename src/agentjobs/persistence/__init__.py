"""Job stores."""

from .base import JobStore
from .memory import InMemoryJobStore

__all__ = ["InMemoryJobStore", "JobStore"]
