from __future__ import annotations

import asyncio
import math
import random
import time
from typing import Awaitable, Callable, Optional, TypeVar

T = TypeVar("T")

RATE_LIMIT_MARKERS = (
    "too many api requests",
    "rate limit",
    '"code":"1305"',
    "429",
)


def is_rate_limit_error(error: object) -> bool:
    if error is None:
        return False
    message = str(getattr(error, "detail", None) or error).lower()
    return any(marker in message for marker in RATE_LIMIT_MARKERS)


def backoff_jitter(delay_ms: float) -> int:
    return math.floor(delay_ms * 0.2 * random.random())


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    *,
    retries: int,
    min_delay_ms: int,
    max_delay_ms: int,
    deadline: Optional[float] = None,
    should_retry: Callable[[BaseException], bool] = is_rate_limit_error,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``fn`` and retry it while failures look transient.

    ``deadline`` is an absolute ``time.time()`` timestamp. Once it has passed, or
    ``retries`` is exhausted, or ``should_retry`` rejects the error, the error
    from the last attempt is re-raised unchanged. Attempts run strictly one at a time.
    """
    attempt = 0
    delay = float(min_delay_ms)
    while True:
        try:
            return await fn()
        except Exception as exc:
            attempt += 1
            if deadline is not None and time.time() > deadline:
                raise
            if not should_retry(exc) or attempt > retries:
                raise
            await sleep((delay + backoff_jitter(delay)) / 1000.0)
            delay = min(float(max_delay_ms), delay * 2)
