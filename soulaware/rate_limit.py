import time
from dataclasses import dataclass
from typing import Dict

from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter

from soulaware.config import RATE_LIMIT_PER_MINUTE, RATE_LIMIT_WINDOW_SECONDS


@dataclass(frozen=True)
class LimitResult:
    success: bool
    limit: int
    remaining: int
    reset: float  # epoch seconds when a slot frees up

    def headers(self) -> Dict[str, str]:
        out = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset)),
        }
        if not self.success:
            out["Retry-After"] = str(max(1, int(self.reset - time.time() + 0.999)))
        return out


class SlidingWindowLimiter:
    """In-process moving-window admission gate keyed by caller.

    Expired keys are evicted by the memory storage's own expiry timer.
    """

    def __init__(self, limit: int = RATE_LIMIT_PER_MINUTE, window_seconds: int = RATE_LIMIT_WINDOW_SECONDS):
        self.limit = limit
        self.item = RateLimitItemPerSecond(limit, int(window_seconds))
        self._storage = MemoryStorage()
        self._strategy = MovingWindowRateLimiter(self._storage)

    def hit(self, key: str) -> LimitResult:
        success = self._strategy.hit(self.item, key)
        reset, remaining = self._strategy.get_window_stats(self.item, key)
        return LimitResult(success, self.limit, max(0, int(remaining)), float(reset))

    def reset(self) -> None:
        self._storage.reset()
