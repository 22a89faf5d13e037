from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


def compute_backoff(
    attempt: int,
    base: float = 1.5,
    jitter: float = 0.5,
    cap: Optional[float] = None,
) -> float:
    """Compute exponential backoff with jitter.

    ``attempt`` counts from 1 for the first retry; the delay doubles after
    each one and is clamped to ``cap`` before jitter is added.
    """
    delay = base * (2 ** max(attempt - 1, 0))
    if cap is not None:
        delay = min(delay, cap)
    return delay + random.uniform(0, jitter)


async def retry_async(
    func: Callable[[], Awaitable[T]],
    attempts: int = 3,
    base: float = 0.5,
    jitter: float = 0.1,
    sleeper: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Await ``func`` until it succeeds or ``attempts`` calls have failed.

    The last exception is re-raised once the attempts are exhausted.
    """
    for attempt in range(1, attempts + 1):
        try:
            return await func()
        except Exception as e:
            if attempt >= attempts:
                raise
            delay = compute_backoff(attempt, base=base, jitter=jitter)
            logger.warning(
                f"Attempt {attempt}/{attempts} failed: {e}; retrying in {delay:.2f}s"
            )
            await sleeper(delay)
    raise RuntimeError("retry_async called with attempts < 1")
