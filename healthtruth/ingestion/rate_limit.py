"""In-memory fixed-window rate limiter.

State is per process, so limits are best-effort when several instances run
behind a load balancer. The limiter is injected into the ingestion gateway
rather than installed as middleware so it can key on the authenticated
identity and be driven by a fake clock in tests.
"""

from __future__ import annotations

import math
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after: int = 0


class RateLimiter(ABC):
    @abstractmethod
    def hit(self, identity: str) -> RateLimitDecision:
        """Count one request for ``identity`` and report whether it may proceed."""


class FixedWindowRateLimiter(RateLimiter):
    """At most ``max_requests`` per identity per ``window_seconds`` window."""

    def __init__(
        self,
        max_requests: int,
        window_seconds: int = 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        # identity -> (window_start, count)
        self._windows: dict[str, tuple[float, int]] = {}

    def hit(self, identity: str) -> RateLimitDecision:
        now = self._clock()
        with self._lock:
            start, count = self._windows.get(identity, (now, 0))
            if now - start >= self._window_seconds:
                start, count = now, 0

            if count >= self._max_requests:
                retry_after = math.ceil(self._window_seconds - (now - start))
                return RateLimitDecision(
                    allowed=False,
                    limit=self._max_requests,
                    remaining=0,
                    retry_after=max(retry_after, 1),
                )

            count += 1
            self._windows[identity] = (start, count)
            return RateLimitDecision(
                allowed=True,
                limit=self._max_requests,
                remaining=self._max_requests - count,
            )

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()
