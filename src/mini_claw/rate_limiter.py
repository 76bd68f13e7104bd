from __future__ import annotations

import time
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from threading import Lock


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after: float = 0.0


class RateLimiter:
    """One accepted message per cooldown window per conversation."""

    def __init__(self, *, cooldown_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self._cooldown = max(0.0, float(cooldown_seconds))
        self._clock = clock
        self._last_request: dict[Hashable, float] = {}
        self._lock = Lock()

    @property
    def cooldown_seconds(self) -> float:
        return self._cooldown

    def check(self, key: Hashable) -> RateLimitDecision:
        now = self._clock()
        with self._lock:
            last = self._last_request.get(key)
            if last is None or now - last >= self._cooldown:
                self._last_request[key] = now
                return RateLimitDecision(allowed=True)
            return RateLimitDecision(allowed=False, retry_after=self._cooldown - (now - last))

    def reset(self) -> None:
        with self._lock:
            self._last_request.clear()
