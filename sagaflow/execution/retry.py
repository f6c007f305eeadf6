"""Backoff schedule for workflow step retries."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from sagaflow.core.models import RetryPolicy
from sagaflow.types import BackoffStrategy

Sleep = Callable[[float], Awaitable[None]]


def backoff_delay(policy: RetryPolicy, attempt: int) -> float:
    """
    Seconds to wait after failed attempt number `attempt` (1-based).

    fixed: delay; linear: delay * attempt; exponential: delay * 2^(attempt-1).
    The result is capped by `max_delay` when the policy sets one.
    """
    if policy.backoff is BackoffStrategy.LINEAR:
        delay = policy.delay * attempt
    elif policy.backoff is BackoffStrategy.EXPONENTIAL:
        delay = policy.delay * 2 ** (attempt - 1)
    else:
        delay = policy.delay

    if policy.max_delay is not None:
        delay = min(delay, policy.max_delay)
    return max(delay, 0.0)


def schedule(policy: RetryPolicy) -> list[float]:
    """All delays the policy can produce, one per retry."""
    return [backoff_delay(policy, attempt) for attempt in range(1, policy.max_attempts)]


async def schedule_retry(policy: RetryPolicy, attempt: int, sleep: Sleep = asyncio.sleep) -> float:
    """Sleep for the computed backoff delay before the next attempt."""
    delay = backoff_delay(policy, attempt)
    if delay > 0:
        await sleep(delay)
    return delay
