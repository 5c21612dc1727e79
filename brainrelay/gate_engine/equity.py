"""
Equity Stabilizer

Counts consecutive losing closes and escalates:

    streak >= 2  moderate cooldown
    streak >= 3  conservative mode (TREND-only entries) + longer cooldown

Windows only ever grow; a non-negative close resets the streak.
"""

import logging

from brainrelay.gate_engine.config import EquityConfig
from brainrelay.gate_engine.schemas import InstrumentState

LOG = logging.getLogger(__name__)


class EquityStabilizer:
    """Loss-streak tracker driving cooldown and conservative mode"""

    def __init__(self, config: EquityConfig):
        self.config = config

    def record_close(self, state: InstrumentState, pnl_pct: float, now_ms: int) -> int:
        """
        Record a closed position outcome.

        Returns:
            Loss streak after this close
        """
        if not self.config.enabled:
            return state.loss_streak

        if pnl_pct < 0:
            state.loss_streak += 1
        else:
            if state.loss_streak:
                LOG.info(f"Loss streak reset for {state.key} (pnl={pnl_pct:.3f}%)")
            state.loss_streak = 0
            return 0

        streak = state.loss_streak
        LOG.info(f"Loss streak {streak} for {state.key} (pnl={pnl_pct:.3f}%)")

        if streak >= 3:
            conservative_until = now_ms + int(self.config.conservative_min * 60 * 1000)
            if state.conservative.extend_to(conservative_until):
                LOG.warning(
                    f"CONSERVATIVE MODE on for {state.key} ({self.config.conservative_min} min)"
                )
            self._extend_cooldown(state, self.config.loss_streak_3_cooldown_min, now_ms)
        elif streak >= 2:
            self._extend_cooldown(state, self.config.loss_streak_2_cooldown_min, now_ms)

        return streak

    def _extend_cooldown(self, state: InstrumentState, minutes: float, now_ms: int):
        if minutes <= 0:
            return
        if state.cooldown.extend_to(now_ms + int(minutes * 60 * 1000)):
            LOG.warning(f"Cooldown started for {state.key}: {minutes} min (loss streak {state.loss_streak})")

    def is_conservative(self, state: InstrumentState, now_ms: int) -> bool:
        return state.conservative.is_active(now_ms)
