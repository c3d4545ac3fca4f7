from __future__ import annotations

import asyncio
import random

# Provider responses worth another attempt; everything else is final.
TRANSIENT_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})


def is_transient(status_code: int) -> bool:
    return status_code in TRANSIENT_STATUS_CODES


def compute_backoff(
    attempt: int, base: float = 0.5, jitter: float = 0.25, cap: float = 30.0
) -> float:
    """Exponential backoff (``base * 2**attempt``) with jitter, capped."""
    delay = min(cap, base * (2 ** attempt))
    return delay + random.uniform(0, jitter)


async def schedule_retry(attempt: int, base: float = 0.5) -> None:
    """Sleep for computed backoff delay before retrying."""
    await asyncio.sleep(compute_backoff(attempt, base=base))
