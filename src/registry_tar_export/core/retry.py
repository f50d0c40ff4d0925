"""Retry policy shared by blob downloads."""

import asyncio
from collections.abc import Iterator
from dataclasses import dataclass

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BACKOFF_SECONDS = 2.0


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded attempts with linearly increasing backoff.

    Attempt ``n`` that fails waits ``n * backoff_seconds`` before attempt
    ``n + 1``. Every attempt consumes budget, including ones that wrote no
    bytes.
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff_seconds: float = DEFAULT_BACKOFF_SECONDS

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.backoff_seconds < 0:
            raise ValueError("backoff_seconds must not be negative")

    def attempts(self) -> Iterator[int]:
        """Yield attempt numbers starting at 1."""
        yield from range(1, self.max_attempts + 1)

    def delay(self, attempt: int) -> float:
        return attempt * self.backoff_seconds

    def is_last(self, attempt: int) -> bool:
        return attempt >= self.max_attempts

    async def wait(self, attempt: int) -> None:
        """Sleep before the attempt following ``attempt``."""
        if self.is_last(attempt):
            return
        delay = self.delay(attempt)
        if delay > 0:
            await asyncio.sleep(delay)
