"""
Test Suite for Equity Stabilizer and Re-entry Window Manager
"""

import pytest

from brainrelay.gate_engine.config import EquityConfig, ReentryConfig
from brainrelay.gate_engine.equity import EquityStabilizer
from brainrelay.gate_engine.reentry import ReentryWindowManager
from brainrelay.gate_engine.schemas import (
    ClosedPosition,
    InstrumentState,
    Regime,
    TradeDirection,
)


T0 = 1_700_000_000_000
MIN = 60_000
SYMBOL = "BINANCE:SOLUSDT"


def create_closed(exit_price=100.0, pnl_pct=0.5, from_reentry=False, instrument=SYMBOL) -> ClosedPosition:
    """Create a closed position record"""
    return ClosedPosition(
        instrument=instrument,
        direction=TradeDirection.LONG,
        entry_price=exit_price / (1 + pnl_pct / 100.0),
        exit_price=exit_price,
        extreme_price=exit_price,
        pnl_pct=pnl_pct,
        reason="profit_lock",
        opened_at_ms=T0 - 10 * MIN,
        closed_at_ms=T0,
        originated_from_reentry=from_reentry,
        meta={'tv_exchange': 'BINANCE', 'tv_instrument': 'SOLUSDT'},
    )


class TestEquityStabilizer:
    """Test loss-streak escalation"""

    def test_single_loss_no_cooldown(self):
        stabilizer = EquityStabilizer(EquityConfig())
        state = InstrumentState(key=SYMBOL)

        assert stabilizer.record_close(state, -0.5, T0) == 1
        assert not state.cooldown.is_active(T0)

    def test_two_losses_moderate_cooldown(self):
        stabilizer = EquityStabilizer(EquityConfig())
        state = InstrumentState(key=SYMBOL)

        stabilizer.record_close(state, -0.5, T0)
        stabilizer.record_close(state, -0.5, T0)

        assert state.cooldown.until_ms == T0 + 15 * MIN
        assert not stabilizer.is_conservative(state, T0)

    def test_three_losses_conservative_mode(self):
        stabilizer = EquityStabilizer(EquityConfig())
        state = InstrumentState(key=SYMBOL)

        for _ in range(3):
            stabilizer.record_close(state, -0.5, T0)

        assert state.loss_streak == 3
        assert stabilizer.is_conservative(state, T0 + 44 * MIN)
        assert state.conservative.until_ms == T0 + 45 * MIN
        assert state.cooldown.until_ms == T0 + 45 * MIN

    def test_win_resets_streak(self):
        stabilizer = EquityStabilizer(EquityConfig())
        state = InstrumentState(key=SYMBOL)

        stabilizer.record_close(state, -0.5, T0)
        stabilizer.record_close(state, -0.5, T0)
        assert stabilizer.record_close(state, 0.0, T0) == 0

        stabilizer.record_close(state, -0.5, T0 + MIN)
        assert state.loss_streak == 1
        assert not stabilizer.is_conservative(state, T0 + MIN)

    def test_windows_never_shrink(self):
        stabilizer = EquityStabilizer(EquityConfig())
        state = InstrumentState(key=SYMBOL)
        state.cooldown.until_ms = T0 + 120 * MIN

        stabilizer.record_close(state, -0.5, T0)
        stabilizer.record_close(state, -0.5, T0)

        assert state.cooldown.until_ms == T0 + 120 * MIN

    def test_disabled(self):
        stabilizer = EquityStabilizer(EquityConfig(enabled=False))
        state = InstrumentState(key=SYMBOL)

        for _ in range(3):
            stabilizer.record_close(state, -0.5, T0)

        assert state.loss_streak == 0
        assert not state.cooldown.is_active(T0)


class TestReentryWindow:
    """Test window lifecycle"""

    def test_qualifying_close_opens_window(self):
        manager = ReentryWindowManager(ReentryConfig())
        state = InstrumentState(key=SYMBOL)

        window = manager.on_close(state, create_closed(), Regime.TREND, T0)

        assert window is state.reentry
        assert window.tries_used == 0
        assert window.tries_max == 1
        assert window.expires_at_ms == T0 + 10 * MIN
        assert window.regime_at_exit == Regime.TREND

    def test_reentry_originated_close_opens_nothing(self):
        manager = ReentryWindowManager(ReentryConfig())
        state = InstrumentState(key=SYMBOL)

        assert manager.on_close(state, create_closed(from_reentry=True), Regime.TREND, T0) is None
        assert state.reentry is None

    def test_large_loss_opens_nothing(self):
        manager = ReentryWindowManager(ReentryConfig(skip_below_pnl_pct=-1.0))
        state = InstrumentState(key=SYMBOL)

        assert manager.on_close(state, create_closed(pnl_pct=-1.5), Regime.TREND, T0) is None

    def test_crash_exit_opens_nothing(self):
        manager = ReentryWindowManager(ReentryConfig())
        state = InstrumentState(key=SYMBOL)

        assert manager.on_close(state, create_closed(), Regime.TREND, T0, crash_exit=True) is None

    def test_refresh_keeps_expiry_and_tries(self):
        manager = ReentryWindowManager(ReentryConfig(tries_max=2))
        state = InstrumentState(key=SYMBOL)
        window = manager.on_close(state, create_closed(exit_price=100.0), Regime.TREND, T0)
        window.tries_used = 1

        refreshed = manager.on_close(state, create_closed(exit_price=102.0), Regime.RANGE, T0 + 3 * MIN)

        assert refreshed is window
        assert refreshed.reference_price == 102.0
        assert refreshed.expires_at_ms == T0 + 10 * MIN
        assert refreshed.tries_used == 1

    def test_lazy_expiry(self):
        manager = ReentryWindowManager(ReentryConfig())
        state = InstrumentState(key=SYMBOL)
        manager.on_close(state, create_closed(), Regime.TREND, T0)

        assert manager.active_window(state, T0 + 9 * MIN) is not None
        assert manager.active_window(state, T0 + 10 * MIN) is None
        assert state.reentry is None

    def test_consume_exhausts_window(self):
        manager = ReentryWindowManager(ReentryConfig(tries_max=1))
        state = InstrumentState(key=SYMBOL)
        window = manager.on_close(state, create_closed(), Regime.TREND, T0)

        assert manager.consume_try(state, window) == 0
        assert state.reentry is None


class TestReentryBand:
    """Test price band evaluation"""

    def setup_method(self):
        self.manager = ReentryWindowManager(ReentryConfig(max_fall_pct=0.8, max_rise_pct=0.4))
        self.state = InstrumentState(key=SYMBOL)
        self.window = self.manager.on_close(self.state, create_closed(exit_price=100.0), Regime.TREND, T0)

    @pytest.mark.parametrize("price", [99.3, 100.0, 100.3])
    def test_inside_band(self, price):
        passed, reason, _ = self.manager.evaluate(self.window, SYMBOL, price, Regime.TREND)
        assert passed
        assert reason == "reentry_ok"

    def test_fall_breach(self):
        passed, reason, move = self.manager.evaluate(self.window, SYMBOL, 99.1, Regime.TREND)
        assert not passed
        assert reason == "reentry_fall_breach"
        assert move == pytest.approx(-0.9)

    def test_rise_breach(self):
        passed, reason, _ = self.manager.evaluate(self.window, SYMBOL, 100.5, Regime.TREND)
        assert not passed
        assert reason == "reentry_rise_breach"

    def test_require_trend(self):
        manager = ReentryWindowManager(ReentryConfig(require_trend=True))
        passed, reason, _ = manager.evaluate(self.window, SYMBOL, 100.0, Regime.RANGE)
        assert not passed
        assert reason == "reentry_regime_not_trend"

    def test_short_band_is_mirrored(self):
        manager = ReentryWindowManager(ReentryConfig(max_fall_pct=0.8, max_rise_pct=0.4), TradeDirection.SHORT)

        passed, reason, _ = manager.evaluate(self.window, SYMBOL, 100.5, Regime.TREND)
        assert passed

        passed, reason, _ = manager.evaluate(self.window, SYMBOL, 99.5, Regime.TREND)
        assert not passed
        assert reason == "reentry_rise_breach"

    def test_instrument_mismatch(self):
        passed, reason, _ = self.manager.evaluate(self.window, "BINANCE:ETHUSDT", 100.0, Regime.TREND)
        assert not passed
        assert reason == "reentry_instrument_mismatch"
