"""Exponential backoff for task retries."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class RetryPolicy:
    """How many tries a task gets and how long to wait between them (seconds)."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("Retry delays must be non-negative")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be at least 1")

    def delay(self, attempt: int) -> float:
        """Backoff after the given (1-based) failed attempt."""

        if attempt < 1:
            raise ValueError("attempt numbers start at 1")
        return min(self.base_delay * self.backoff_multiplier ** (attempt - 1), self.max_delay)

    def backoff_before(self, attempt: int) -> float:
        """Wait before starting the given attempt; the first try never waits."""

        if attempt <= 1:
            return 0.0
        return self.delay(attempt - 1)
