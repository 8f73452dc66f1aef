from __future__ import annotations

import math
import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, Optional, Tuple

from . import logging as core_logging
from .config import RateLimitSettings
from .errors import RateLimitedError

logger = core_logging.get_logger("rate_limits")

GLOBAL_KEY = "global"

# Limit name -> RateLimitSettings field holding its capacity.
LIMIT_CAPACITY_FIELDS: Dict[str, str] = {
    "generate_phase": "phase_per_user",
    "global_phase_generation": "phase_global",
    "generate_questions": "questions_per_user",
    "generate_question_answer": "answers_per_user",
    "generate_project_zip": "export_per_user",
}


class RateLimiter:
    """Sliding-window counters per (limit, caller), kept in process memory."""

    def __init__(
        self,
        settings: Optional[RateLimitSettings] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or RateLimitSettings.from_env()
        self._clock = clock
        self._hits: Dict[Tuple[str, str], Deque[float]] = {}
        self._lock = threading.Lock()

    def capacity(self, name: str) -> int:
        field = LIMIT_CAPACITY_FIELDS.get(name)
        if field is None:
            raise KeyError(f"Unknown rate limit: {name}")
        return getattr(self.settings, field)

    def limit(self, name: str, key: str = GLOBAL_KEY) -> None:
        capacity = self.capacity(name)
        if capacity <= 0:
            return
        window = self.settings.window_s
        now = self._clock()
        with self._lock:
            hits = self._hits.setdefault((name, key), deque())
            while hits and now - hits[0] >= window:
                hits.popleft()
            if len(hits) >= capacity:
                retry_after = max(0.0, window - (now - hits[0]))
                logger.warning("rate_limited", limit=name, caller=key, retry_after_s=retry_after)
                raise RateLimitedError(
                    f"Rate limit exceeded for {name}. Try again in {math.ceil(retry_after)} seconds.",
                    retry_after_s=retry_after,
                )
            hits.append(now)
