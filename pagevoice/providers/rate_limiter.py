"""Rate limiting abstraction for provider calls.

Responsibilities:
- Provide a single hook to pace provider requests per provider/endpoint key.
- Stay safe to share across the worker threads of one batch.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from threading import Lock
from time import monotonic, sleep
from typing import Callable


@dataclass(slots=True)
class RateLimiter:
    """Per-key minimum-interval limiter used around provider requests."""

    min_interval_seconds: float = 0.05
    clock: Callable[[], float] = monotonic
    sleeper: Callable[[float], None] = sleep
    _next_allowed_at: dict[str, float] = field(default_factory=dict)
    _lock: Lock = field(default_factory=Lock)

    def acquire(self, key: str) -> None:
        """Block until a request for `key` is allowed under the interval policy."""

        if self.min_interval_seconds <= 0.0:
            return
        with self._lock:
            now = self.clock()
            scheduled_at = max(now, self._next_allowed_at.get(key, 0.0))
            self._next_allowed_at[key] = scheduled_at + self.min_interval_seconds
        wait_seconds = scheduled_at - now
        if wait_seconds > 0.0:
            self.sleeper(wait_seconds)
