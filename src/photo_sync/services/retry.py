"""Retry policy for per-item uploads."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from .cancellation import CancellationToken

Sleeper = Callable[[float, CancellationToken], Awaitable[None]]


async def cancellable_sleep(seconds: float, token: CancellationToken) -> None:
    await token.sleep(seconds)


@dataclass
class RetryPolicy:
    """
    Exponential backoff between upload attempts.

    Attributes:
        max_retries: Retries after the first attempt
        backoff_base: Delay before retry ``n`` (0-based) is ``backoff_base ** n`` seconds
        sleep: Awaitable used to wait; must raise SyncCancelled as soon as the token fires
    """

    max_retries: int = 3
    backoff_base: float = 2.0
    sleep: Optional[Sleeper] = None

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, attempt: int) -> float:
        return float(self.backoff_base ** attempt)

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_retries

    async def backoff(self, attempt: int, token: CancellationToken) -> float:
        delay = self.delay_for(attempt)
        sleeper = self.sleep or cancellable_sleep
        await sleeper(delay, token)
        return delay
