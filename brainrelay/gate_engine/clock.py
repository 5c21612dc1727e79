"""
Clock abstraction

All windows (cooldowns, TTLs, re-entry expiry, heartbeat) are explicit
expiry timestamps compared against an injected clock.
"""

import threading
import time


class SystemClock:
    """Wall clock in epoch milliseconds"""

    def now_ms(self) -> int:
        return int(time.time() * 1000)


class ManualClock:
    """Deterministic clock for tests and replays"""

    def __init__(self, start_ms: int = 0):
        self._now_ms = int(start_ms)
        self._lock = threading.Lock()

    def now_ms(self) -> int:
        with self._lock:
            return self._now_ms

    def set(self, now_ms: int):
        with self._lock:
            if now_ms < self._now_ms:
                raise ValueError(f"Clock cannot move backwards ({now_ms} < {self._now_ms})")
            self._now_ms = int(now_ms)

    def advance(self, seconds: float = 0.0, minutes: float = 0.0) -> int:
        with self._lock:
            self._now_ms += int(round((seconds + minutes * 60.0) * 1000))
            return self._now_ms
