"""
Test Suite for Position & Adaptive Exit Controller

Tests:
- Fixed and adaptive thresholds
- Monotonic profit-lock arming
- Exact trailing breach (LONG floor, SHORT ceiling)
- Realized P&L on close
"""

import pytest

from brainrelay.gate_engine.config import ProfitLockConfig
from brainrelay.gate_engine.position import PositionController
from brainrelay.gate_engine.schemas import InstrumentState, Regime, TradeDirection


T0 = 1_700_000_000_000
SYMBOL = "BINANCE:SOLUSDT"


def create_controller(direction=TradeDirection.LONG, **overrides) -> PositionController:
    """Fixed-threshold controller unless overridden"""
    params = dict(adaptive_enabled=False, arm_pct=5.0, giveback_pct=5.0)
    params.update(overrides)
    return PositionController(ProfitLockConfig(**params), direction)


def open_position(controller, entry=100.0):
    state = InstrumentState(key=SYMBOL)
    controller.open(state, SYMBOL, entry, T0)
    return state


class TestThresholds:
    """Test arm/giveback computation"""

    def test_fixed_when_adaptive_disabled(self):
        controller = PositionController(ProfitLockConfig(adaptive_enabled=False))
        assert controller.thresholds(Regime.TREND, 0.25) == (0.6, 0.35)

    def test_fixed_when_volatility_unknown(self):
        controller = PositionController(ProfitLockConfig())
        assert controller.thresholds(Regime.TREND, None) == (0.6, 0.35)

    def test_adaptive_trend(self):
        controller = PositionController(ProfitLockConfig())
        arm, giveback = controller.thresholds(Regime.TREND, 0.25)

        assert arm == pytest.approx(0.55)
        assert giveback == pytest.approx(0.30)

    def test_adaptive_range(self):
        controller = PositionController(ProfitLockConfig())
        arm, giveback = controller.thresholds(Regime.RANGE, 0.25)

        assert arm == pytest.approx(0.30)
        assert giveback == pytest.approx(0.175)

    def test_regime_disabled_uses_trend_factors(self):
        controller = PositionController(ProfitLockConfig())
        assert controller.thresholds(None, 0.25) == controller.thresholds(Regime.TREND, 0.25)

    def test_clamps(self):
        controller = PositionController(ProfitLockConfig(min_arm_pct=0.8, max_giveback_pct=0.2))
        arm, giveback = controller.thresholds(Regime.TREND, 0.25)

        assert arm == pytest.approx(0.8)
        assert giveback == pytest.approx(0.2)


class TestTrailingExit:
    """Test profit lock behaviour on ticks"""

    def test_long_exit_fires_exactly_at_floor(self):
        controller = create_controller()
        state = open_position(controller)

        assert controller.on_tick(state, SYMBOL, 110.0, Regime.TREND, None) is None
        assert state.position.exit_armed
        assert state.position.extreme_price == 110.0

        assert controller.on_tick(state, SYMBOL, 104.6, Regime.TREND, None) is None

        signal = controller.on_tick(state, SYMBOL, 104.5, Regime.TREND, None)
        assert signal is not None
        assert signal.level == pytest.approx(104.5)
        assert signal.extreme_price == 110.0

    def test_short_exit_fires_exactly_at_ceiling(self):
        controller = create_controller(TradeDirection.SHORT)
        state = open_position(controller)

        assert controller.on_tick(state, SYMBOL, 90.0, Regime.TREND, None) is None
        assert state.position.exit_armed
        assert state.position.extreme_price == 90.0

        assert controller.on_tick(state, SYMBOL, 94.4, Regime.TREND, None) is None

        signal = controller.on_tick(state, SYMBOL, 94.5, Regime.TREND, None)
        assert signal is not None
        assert signal.level == pytest.approx(94.5)

    def test_no_exit_before_armed(self):
        controller = create_controller()
        state = open_position(controller)

        assert controller.on_tick(state, SYMBOL, 103.0, Regime.TREND, None) is None
        assert controller.on_tick(state, SYMBOL, 90.0, Regime.TREND, None) is None
        assert not state.position.exit_armed

    def test_arming_is_monotonic(self):
        controller = create_controller(arm_pct=1.0, giveback_pct=10.0)
        state = open_position(controller)

        controller.on_tick(state, SYMBOL, 101.5, Regime.TREND, None)
        assert state.position.exit_armed

        for price in (100.5, 99.0, 95.0, 100.0):
            assert controller.on_tick(state, SYMBOL, price, Regime.RANGE, None) is None
            assert state.position.exit_armed

    def test_extreme_only_improves(self):
        controller = create_controller()
        state = open_position(controller)

        for price in (101.0, 103.0, 102.0, 99.0):
            controller.on_tick(state, SYMBOL, price, Regime.TREND, None)

        assert state.position.extreme_price == 103.0
        assert state.position.last_price == 99.0

    def test_disabled_tracks_extreme_without_exit(self):
        controller = create_controller(enabled=False)
        state = open_position(controller)

        controller.on_tick(state, SYMBOL, 120.0, Regime.TREND, None)
        assert controller.on_tick(state, SYMBOL, 80.0, Regime.TREND, None) is None
        assert state.position.extreme_price == 120.0
        assert not state.position.exit_armed

    def test_other_instrument_ignored(self):
        controller = create_controller()
        state = open_position(controller)

        controller.on_tick(state, "BINANCE:ETHUSDT", 150.0, Regime.TREND, None)
        assert state.position.extreme_price == 100.0


class TestOpenClose:
    """Test position lifecycle"""

    def test_open_consumes_activation(self):
        controller = create_controller()
        state = InstrumentState(key=SYMBOL)
        state.activation = object()

        position = controller.open(state, SYMBOL, 100.0, T0, originated_from_reentry=True)

        assert state.activation is None
        assert state.in_position
        assert position.originated_from_reentry

    def test_close_long_pnl(self):
        controller = create_controller()
        state = open_position(controller)

        closed = controller.close(state, 104.5, "profit_lock", T0 + 60_000)

        assert closed.pnl_pct == pytest.approx(4.5)
        assert closed.reason == "profit_lock"
        assert state.position is None
        assert not state.in_position

    def test_close_short_pnl(self):
        controller = create_controller(TradeDirection.SHORT)
        state = open_position(controller)

        closed = controller.close(state, 94.5, "profit_lock", T0 + 60_000)
        assert closed.pnl_pct == pytest.approx(5.5)

    def test_close_without_position(self):
        controller = create_controller()
        state = InstrumentState(key=SYMBOL)

        assert controller.close(state, 100.0, "exit", T0) is None
