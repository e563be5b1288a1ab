import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass

from ..config import TRANSPORT_MAX_PER_SECOND


@dataclass
class RateDecision:
    allowed: bool
    retry_after_seconds: float


class InMemoryRateLimiter:
    """Sliding-window limiter shared by every dispatch worker in the process."""

    def __init__(self, clock=time.monotonic, sleep=time.sleep) -> None:
        self._events: dict[str, deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()
        self._clock = clock
        self._sleep = sleep

    def check(self, key: str, limit: int, window_seconds: float) -> RateDecision:
        now = self._clock()
        cutoff = now - window_seconds
        with self._lock:
            dq = self._events[key]
            while dq and dq[0] <= cutoff:
                dq.popleft()
            if len(dq) >= limit:
                retry_after = max(0.01, dq[0] + window_seconds - now)
                return RateDecision(allowed=False, retry_after_seconds=retry_after)
            dq.append(now)
            return RateDecision(allowed=True, retry_after_seconds=0.0)

    def acquire(self, key: str, limit: int, window_seconds: float) -> None:
        """Block until a slot is available for `key`."""
        if limit <= 0:
            return
        while True:
            decision = self.check(key, limit=limit, window_seconds=window_seconds)
            if decision.allowed:
                return
            self._sleep(decision.retry_after_seconds)


limiter = InMemoryRateLimiter()


def pace_transport_send(key: str = "email_transport") -> None:
    limiter.acquire(key, limit=TRANSPORT_MAX_PER_SECOND, window_seconds=1.0)
