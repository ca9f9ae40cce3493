from __future__ import annotations

import asyncio
import random


def compute_backoff(attempt: int, base: float = 0.01, jitter: float = 0.5) -> float:
    """Compute exponential backoff with proportional jitter.

    ``base`` is the delay for the first retry; each later attempt doubles it.
    """
    delay = base * (2 ** attempt)
    return delay + random.uniform(0, delay * jitter)


async def schedule_retry(attempt: int, base: float = 0.01) -> None:
    """Sleep for computed backoff delay before retrying."""
    delay = compute_backoff(attempt, base=base)
    await asyncio.sleep(delay)
