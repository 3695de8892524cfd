"""
Prep — request throttling.

One token bucket per (caller, endpoint).  A caller is the logged-in
username when the route knows it, else the client IP.  Buckets refill
continuously at requests/period tokens per second up to `requests`.
Routes that run in the threadpool (invite sending) share the limiter with
async routes, so bucket updates hold a lock.
"""

import math
import threading
import time
from typing import Callable, NamedTuple, Optional

from fastapi import Request

from prep.api_exceptions import RateLimitError
from prep.structured_logging import logger


class Limit(NamedTuple):
    requests: int
    period:   int   # seconds


DEFAULT_LIMITS = {
    "/api/login":        Limit(5, 300),
    "/api/signup":       Limit(3, 3600),
    "/api/invites/send": Limit(10, 3600),   # each call may mail up to 10 addresses
    "/api/sync":         Limit(60, 3600),
    "default":           Limit(300, 3600),
}


class RateLimiter:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock  = clock
        self.limits = dict(DEFAULT_LIMITS)
        self._buckets: dict[tuple[str, str], tuple[float, float]] = {}   # (caller, endpoint) -> (tokens, at)
        self._lock = threading.Lock()

    def set_limit(self, endpoint: str, requests_per_period: int, period_seconds: int):
        self.limits[endpoint] = Limit(requests_per_period, period_seconds)

    def reset(self):
        """Forget every bucket and restore the default limits."""
        with self._lock:
            self._buckets.clear()
            self.limits = dict(DEFAULT_LIMITS)

    @staticmethod
    def caller(request: Request, username: Optional[str] = None) -> str:
        if username:
            return f"user:{username}"
        return f"ip:{request.client.host if request.client else 'unknown'}"

    def consume(self, caller: str, endpoint: str) -> int:
        """Take one token; returns 0 when allowed, else the seconds until one is available."""
        limit = self.limits.get(endpoint, self.limits["default"])
        now = self.clock()
        with self._lock:
            tokens, at = self._buckets.get((caller, endpoint), (float(limit.requests), now))
            tokens = min(limit.requests, tokens + (now - at) * limit.requests / limit.period)
            if tokens >= 1:
                self._buckets[(caller, endpoint)] = (tokens - 1, now)
                return 0
            self._buckets[(caller, endpoint)] = (tokens, now)
        return max(1, math.ceil((1 - tokens) * limit.period / limit.requests))

    def check_rate_limit(self, request: Request, endpoint: str, username: Optional[str] = None) -> None:
        retry_after = self.consume(self.caller(request, username), endpoint)
        if retry_after:
            logger.log_rate_limit_exceeded(endpoint, username)
            raise RateLimitError(retry_after=retry_after)


_rate_limiter = RateLimiter()


def get_rate_limiter() -> RateLimiter:
    return _rate_limiter
