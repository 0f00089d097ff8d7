"""Retry policy and the generic retry combinator."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from safe_output_gate.config import ExecutionSettings
from safe_output_gate.errors import PlatformApiError

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 0.5
    multiplier: float = 2.0
    max_delay: float = 8.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0 or self.multiplier < 1:
            raise ValueError("Retry delays must be non-negative and multiplier >= 1")

    def delay_for(self, attempt: int, retry_after: float | None = None) -> float:
        """Delay after failed attempt number ``attempt`` (1-based), capped at ``max_delay``."""
        if retry_after is not None and retry_after >= 0:
            return min(retry_after, self.max_delay)
        return min(self.base_delay * (self.multiplier ** (attempt - 1)), self.max_delay)

    @classmethod
    def from_settings(cls, settings: ExecutionSettings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.retry_base_seconds,
            max_delay=settings.retry_max_seconds,
        )


@dataclass
class RetryOutcome:
    attempts: int = 0


async def execute_with_retry(
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    outcome: RetryOutcome | None = None,
) -> T:
    """Call ``func`` until it succeeds, a permanent error occurs, or attempts run out.

    Only ``PlatformApiError`` with ``transient=True`` is retried; the last
    error is re-raised unchanged.
    """
    attempt = 0
    while True:
        attempt += 1
        if outcome is not None:
            outcome.attempts = attempt
        try:
            return await func()
        except PlatformApiError as exc:
            if not exc.transient or attempt >= policy.max_attempts:
                raise
            await sleep(policy.delay_for(attempt, exc.retry_after))
