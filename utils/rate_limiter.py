"""Token bucket rate limiter for outbound notification gateways."""
import time
import threading


class RateLimiter:
    """Token bucket rate limiter, thread-safe.

    ``wait()`` blocks the calling dispatch until a token is available, so a
    burst of escalations cannot exceed the gateway's per-minute quota.
    """

    def __init__(self, calls_per_minute, clock=time.monotonic, sleep=time.sleep):
        if calls_per_minute <= 0:
            raise ValueError("calls_per_minute must be positive")
        self.rate = calls_per_minute / 60.0  # tokens per second
        self.max_tokens = float(calls_per_minute)
        self.tokens = float(calls_per_minute)
        self._clock = clock
        self._sleep = sleep
        self.last_time = clock()
        self._lock = threading.Lock()

    def _refill(self):
        now = self._clock()
        elapsed = now - self.last_time
        self.tokens = min(self.max_tokens, self.tokens + elapsed * self.rate)
        self.last_time = now

    def wait(self):
        """Block until a token is available."""
        with self._lock:
            self._refill()
            if self.tokens < 1:
                self._sleep((1 - self.tokens) / self.rate)
                self.tokens = 0
                self.last_time = self._clock()
            else:
                self.tokens -= 1
