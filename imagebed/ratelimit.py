"""
Fixed-window request counter for upload presigning.

Counters live in process memory, so limits only hold for a single
instance. Windows start at the first hit of a key and expire on their own.
"""
import math
from typing import NamedTuple, Optional

from fastapi import Request
from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage
from limits.strategies import FixedWindowRateLimiter


class RateLimitResult(NamedTuple):
    allowed: bool
    remaining: int


class RateLimiter:
    def __init__(self, storage: Optional[MemoryStorage] = None):
        self.storage = storage or MemoryStorage()
        self.strategy = FixedWindowRateLimiter(self.storage)

    def check(self, key: str, limit: int, window_ms: int) -> RateLimitResult:
        # limits counts in whole seconds
        item = RateLimitItemPerSecond(limit, max(1, math.ceil(window_ms / 1000)))
        if not self.strategy.hit(item, key):
            return RateLimitResult(False, 0)
        stats = self.strategy.get_window_stats(item, key)
        return RateLimitResult(True, max(0, stats.remaining))

    def reset(self) -> None:
        self.storage.reset()


def get_client_identifier(request: Request) -> str:
    """First X-Forwarded-For hop when behind a proxy, else the peer address."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "local-session"
