"""
Re-entry Window Manager

After a qualifying close, keeps a short window during which an enter-intent
may be admitted without a fresh activation, as long as price stays inside a
band around the exit price.

Loop prevention: a position that itself came from a re-entry never opens a
new window.
"""

import logging
from typing import Optional, Tuple

from brainrelay.gate_engine.config import ReentryConfig
from brainrelay.gate_engine.primitives import PricePrimitives as PP
from brainrelay.gate_engine.schemas import (
    ClosedPosition,
    InstrumentState,
    Regime,
    ReentryWindow,
    TradeDirection,
)

LOG = logging.getLogger(__name__)


class ReentryWindowManager:
    """
    Opens, refreshes, evaluates and consumes re-entry windows.

    The band is direction-aware: for LONG an adverse move is a fall and a
    favorable move a rise, for SHORT the two are mirrored. Breach reasons
    keep the LONG naming (fall = adverse, rise = favorable).
    """

    def __init__(self, config: ReentryConfig, direction: TradeDirection = TradeDirection.LONG):
        self.config = config
        self.direction = direction

    def qualifies(self, closed: ClosedPosition, crash_exit: bool = False) -> Tuple[bool, str]:
        if not self.config.enabled:
            return False, "disabled"
        if crash_exit:
            return False, "crash_exit"
        if closed.originated_from_reentry:
            return False, "originated_from_reentry"
        if closed.pnl_pct < self.config.skip_below_pnl_pct:
            return False, "pnl_below_skip"
        return True, "ok"

    def on_close(
        self,
        state: InstrumentState,
        closed: ClosedPosition,
        regime: Regime,
        now_ms: int,
        crash_exit: bool = False
    ) -> Optional[ReentryWindow]:
        """
        Open or refresh a window for a closed position.

        A refresh updates the reference price and metadata only; expiry and
        tries are left untouched.
        """
        ok, reason = self.qualifies(closed, crash_exit)
        if not ok:
            LOG.info(f"Re-entry window not opened for {closed.instrument} ({reason})")
            return None

        window = self.active_window(state, now_ms)
        if window is not None and window.instrument == closed.instrument:
            window.reference_price = closed.exit_price
            window.regime_at_exit = regime
            window.meta = dict(closed.meta)
            LOG.info(
                f"RE-ENTRY window refreshed for {closed.instrument} | ref={closed.exit_price} "
                f"tries={window.tries_used}/{window.tries_max}"
            )
            return window

        window = ReentryWindow(
            instrument=closed.instrument,
            reference_price=closed.exit_price,
            regime_at_exit=regime,
            tries_max=self.config.tries_max,
            opened_at_ms=now_ms,
            expires_at_ms=now_ms + int(self.config.window_min * 60 * 1000),
            meta=dict(closed.meta),
        )
        state.reentry = window
        LOG.info(
            f"RE-ENTRY window opened for {closed.instrument} | ref={closed.exit_price} "
            f"regime={regime.value} window={self.config.window_min}min tries={self.config.tries_max}"
        )
        return window

    def active_window(self, state: InstrumentState, now_ms: int) -> Optional[ReentryWindow]:
        """Live window with tries left, expiring stale windows lazily"""
        window = state.reentry
        if window is None:
            return None
        if not window.active or now_ms >= window.expires_at_ms or window.tries_remaining <= 0:
            self.clear(state, "expired" if now_ms >= window.expires_at_ms else "exhausted")
            return None
        return window

    def evaluate(
        self,
        window: ReentryWindow,
        instrument: str,
        price: float,
        regime: Regime
    ) -> Tuple[bool, str, Optional[float]]:
        """
        Check an enter-intent against the window.

        Returns:
            (passed: bool, reason: str, move_pct)
        """
        if window.instrument and instrument and window.instrument != instrument:
            return False, "reentry_instrument_mismatch", None
        if self.config.require_trend and regime != Regime.TREND:
            return False, "reentry_regime_not_trend", None

        move = PP.pct_change(window.reference_price, price)
        favorable = PP.favorable_pct(window.reference_price, price, self.direction)
        if favorable is None:
            return False, "missing_prices", None

        if favorable < 0 and -favorable > self.config.max_fall_pct:
            return False, "reentry_fall_breach", move
        if favorable > 0 and favorable > self.config.max_rise_pct:
            return False, "reentry_rise_breach", move
        return True, "reentry_ok", move

    def consume_try(self, state: InstrumentState, window: ReentryWindow) -> int:
        """Count an accepted re-entry, clearing the window when exhausted"""
        window.tries_used += 1
        LOG.info(
            f"RE-ENTRY try consumed for {window.instrument} "
            f"({window.tries_used}/{window.tries_max})"
        )
        if window.tries_remaining <= 0:
            self.clear(state, "tries_exhausted")
        return window.tries_remaining

    def clear(self, state: InstrumentState, reason: str) -> bool:
        window = state.reentry
        if window is None:
            return False
        window.active = False
        state.reentry = None
        LOG.info(f"RE-ENTRY window cleared for {window.instrument} ({reason})")
        return True
