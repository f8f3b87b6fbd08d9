"""Token bucket rate limiter."""
import time
import threading


class RateLimiter:
    """Token bucket rate limiter, thread-safe."""

    def __init__(self, calls_per_minute):
        if calls_per_minute <= 0:
            raise ValueError("calls_per_minute must be positive")
        self.rate = calls_per_minute / 60.0  # tokens per second
        self.max_tokens = float(calls_per_minute)
        self.tokens = float(calls_per_minute)
        self.last_time = time.monotonic()
        self._lock = threading.Lock()

    def _refill(self):
        now = time.monotonic()
        self.tokens = min(self.max_tokens, self.tokens + (now - self.last_time) * self.rate)
        self.last_time = now

    def try_acquire(self):
        """Take a token if one is available, without blocking."""
        with self._lock:
            self._refill()
            if self.tokens >= 1:
                self.tokens -= 1
                return True
            return False

    def wait(self):
        """Block until a token is available."""
        with self._lock:
            self._refill()
            if self.tokens < 1:
                time.sleep((1 - self.tokens) / self.rate)
                self.tokens = 0
                self.last_time = time.monotonic()
            else:
                self.tokens -= 1
