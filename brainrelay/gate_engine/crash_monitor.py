"""
Crash Monitor

Detects short-horizon collapses (1m / 5m) against the traded side and
locks the instrument out of new activations and entries for a cooldown.
"""

import logging
from typing import Optional

from brainrelay.gate_engine.config import CrashConfig
from brainrelay.gate_engine.schemas import (
    CrashResult,
    InstrumentState,
    TradeDirection,
)
from brainrelay.gate_engine.tick_store import TickWindow

LOG = logging.getLogger(__name__)

HORIZONS = (
    ("1m", 60 * 1000),
    ("5m", 300 * 1000),
)


class CrashMonitor:
    """
    Crash protection layer.

    For LONG the adverse move is a drop; for SHORT it is a pump.
    Missing history is never an error, it simply does not trigger.
    """

    def __init__(self, config: CrashConfig, direction: TradeDirection = TradeDirection.LONG):
        self.config = config
        self.direction = direction

    def _threshold(self, horizon: str) -> float:
        return self.config.drop_1m_pct if horizon == "1m" else self.config.drop_5m_pct

    def _move_pct(self, window: TickWindow, now_ms: int, lookback_ms: int) -> Optional[float]:
        p_now = window.price_at_or_before(now_ms)
        p_then = window.price_at_or_before(now_ms - lookback_ms)
        if p_now is None or p_then is None or p_then == 0:
            return None
        return (p_now - p_then) / p_then * 100.0

    def evaluate(self, window: TickWindow, now_ms: int) -> CrashResult:
        """Pure check, no state mutation"""
        if not self.config.enabled:
            return CrashResult()

        for horizon, lookback_ms in HORIZONS:
            move = self._move_pct(window, now_ms, lookback_ms)
            if move is None:
                continue
            adverse = -move if self.direction == TradeDirection.LONG else move
            if adverse >= self._threshold(horizon):
                return CrashResult(triggered=True, horizon=horizon, move_pct=move)

        return CrashResult()

    def check(self, state: InstrumentState, window: TickWindow, now_ms: int) -> CrashResult:
        """
        Check for a crash and apply the lock.

        Triggering clears any activation context and opens (or extends)
        the crash cooldown window.
        """
        result = self.evaluate(window, now_ms)
        if not result.triggered:
            return result

        until = now_ms + int(self.config.cooldown_min * 60 * 1000)
        if self.config.cooldown_min > 0 and state.crash_lock.extend_to(until):
            LOG.warning(
                f"CRASH LOCK started for {state.key} ({self.config.cooldown_min} min) | "
                f"horizon={result.horizon} move={result.move_pct:.2f}%"
            )

        if state.activation is not None:
            state.activation = None
            LOG.info(f"Activation cleared for {state.key} (crash_lock_{result.horizon})")

        state.last_action = f"crash_lock_{result.horizon}"
        return result

    def is_locked(self, state: InstrumentState, now_ms: int) -> bool:
        return state.crash_lock.is_active(now_ms)
