from __future__ import annotations

import asyncio
import random


def compute_backoff(
    attempt: int, initial: float = 0.05, factor: float = 2.0, jitter: float = 0.05
) -> float:
    """Compute exponential backoff with jitter."""
    delay = initial * factor**attempt
    return delay + random.uniform(0, jitter)


async def schedule_retry(attempt: int, initial: float = 0.05) -> None:
    """Sleep for computed backoff delay before retrying."""
    delay = compute_backoff(attempt, initial=initial)
    await asyncio.sleep(delay)
