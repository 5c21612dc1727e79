"""
Tick Store

Bounded per-instrument sliding window of timestamped prices.

Features:
- Per-instrument isolation (no cross-instrument blocking)
- Retention-based eviction on append
- "Price at or before T" lookups for slope and crash horizons
"""

import logging
import math
import threading
from collections import deque
from typing import Deque, Dict, List, Optional

from brainrelay.gate_engine.config import TickStoreConfig
from brainrelay.gate_engine.schemas import TickSample

LOG = logging.getLogger(__name__)


class TickWindow:
    """
    Time-ordered ticks for a single instrument.

    Timestamps are monotonically non-decreasing; entries older than the
    retention horizon (relative to the newest tick) are evicted on append.
    """

    def __init__(self, instrument: str, retention_ms: int):
        self.instrument = instrument
        self.retention_ms = retention_ms
        self._samples: Deque[TickSample] = deque()

    def __len__(self) -> int:
        return len(self._samples)

    def append(self, price: float, timestamp_ms: int) -> bool:
        """
        Append a tick.

        Non-finite prices and timestamps older than the newest sample are
        dropped silently. Returns True if the tick was stored.
        """
        if price is None or not math.isfinite(price):
            return False
        if self._samples and timestamp_ms < self._samples[-1].timestamp_ms:
            LOG.debug(
                f"Dropping out-of-order tick for {self.instrument}: "
                f"{timestamp_ms} < {self._samples[-1].timestamp_ms}"
            )
            return False

        self._samples.append(TickSample(self.instrument, float(price), int(timestamp_ms)))

        cutoff = timestamp_ms - self.retention_ms
        while self._samples and self._samples[0].timestamp_ms < cutoff:
            self._samples.popleft()
        return True

    def price_at_or_before(self, timestamp_ms: int) -> Optional[float]:
        """
        Latest price with timestamp <= T.

        Falls back to the earliest sample when every tick is newer than T,
        and returns None for an empty window.
        """
        if not self._samples:
            return None
        for sample in reversed(self._samples):
            if sample.timestamp_ms <= timestamp_ms:
                return sample.price
        return self._samples[0].price

    def samples_since(self, timestamp_ms: int) -> List[TickSample]:
        """All samples with timestamp >= T, oldest first"""
        return [s for s in self._samples if s.timestamp_ms >= timestamp_ms]

    def latest(self) -> Optional[TickSample]:
        return self._samples[-1] if self._samples else None


class TickStore:
    """
    Keyed collection of tick windows.

    Window creation is guarded by a lock; each window is only mutated by
    the event holding its instrument's state lock.
    """

    def __init__(self, config: TickStoreConfig):
        self.config = config
        self._retention_ms = int(config.retention_sec * 1000)
        self._windows: Dict[str, TickWindow] = {}
        self._lock = threading.RLock()

    def window(self, instrument: str) -> TickWindow:
        """Get or create the window for an instrument"""
        with self._lock:
            window = self._windows.get(instrument)
            if window is None:
                window = TickWindow(instrument, self._retention_ms)
                self._windows[instrument] = window
            return window

    def append(self, instrument: str, price: float, timestamp_ms: int) -> bool:
        return self.window(instrument).append(price, timestamp_ms)

    def price_at_or_before(self, instrument: str, timestamp_ms: int) -> Optional[float]:
        with self._lock:
            window = self._windows.get(instrument)
        if window is None:
            return None
        return window.price_at_or_before(timestamp_ms)

    def tick_count(self, instrument: str) -> int:
        with self._lock:
            window = self._windows.get(instrument)
        return len(window) if window is not None else 0

    def instruments(self) -> List[str]:
        with self._lock:
            return list(self._windows.keys())

    def reset(self, instrument: Optional[str] = None):
        with self._lock:
            if instrument is None:
                self._windows.clear()
            else:
                self._windows.pop(instrument, None)
