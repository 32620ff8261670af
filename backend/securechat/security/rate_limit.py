"""
Rate limiting for login attempts.
Prevents brute-force attacks using exponential backoff.
"""
import time
from threading import Lock


class RateLimiter:
    """
    In-memory rate limiter with exponential backoff.
    Tracks failed attempts per key (username).

    Only keys with outstanding failures are held. An entry is dropped on
    success, when its backoff has been served, or once it has been idle for
    longer than `max_delay` (no backoff can still apply to it then).
    """

    def __init__(self, max_attempts: int = 5, base_delay: float = 2.0, max_delay: float = 300.0, clock=time.monotonic):
        self._attempts: dict[str, dict] = {}
        self._lock = Lock()
        self._clock = clock

        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay

    def __len__(self) -> int:
        return len(self._attempts)

    def _required_delay(self, count: int) -> float:
        return min(self.base_delay * (2 ** (count - self.max_attempts)), self.max_delay)

    def _prune(self, now: float) -> None:
        stale = [key for key, entry in self._attempts.items() if now - entry["last_time"] >= self.max_delay]
        for key in stale:
            del self._attempts[key]

    def is_allowed(self, key: str) -> bool:
        """False while the backoff window for `key` is active."""
        with self._lock:
            entry = self._attempts.get(key)
            if entry is None or entry["count"] < self.max_attempts:
                return True

            if self._clock() - entry["last_time"] < self._required_delay(entry["count"]):
                return False

            # Backoff served; give a fresh allowance
            del self._attempts[key]
            return True

    def record_attempt(self, key: str, success: bool = False) -> None:
        """Record an attempt (failed by default). Forget the key on success."""
        with self._lock:
            now = self._clock()
            self._prune(now)
            if success:
                self._attempts.pop(key, None)
                return

            entry = self._attempts.setdefault(key, {"count": 0, "last_time": now})
            entry["last_time"] = now
            entry["count"] += 1

    def get_retry_after(self, key: str) -> float:
        """Seconds to wait before next attempt; 0 if allowed."""
        with self._lock:
            entry = self._attempts.get(key)
            if entry is None or entry["count"] < self.max_attempts:
                return 0.0

            elapsed = self._clock() - entry["last_time"]
            return max(0.0, self._required_delay(entry["count"]) - elapsed)
