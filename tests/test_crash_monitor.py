"""
Test Suite for Crash Monitor
"""

from brainrelay.gate_engine.config import CrashConfig
from brainrelay.gate_engine.crash_monitor import CrashMonitor
from brainrelay.gate_engine.schemas import (
    ActivationContext,
    InstrumentState,
    TradeDirection,
)
from brainrelay.gate_engine.tick_store import TickWindow


T0 = 1_700_000_000_000
SYMBOL = "BINANCE:SOLUSDT"


def create_window(points) -> TickWindow:
    """points: [(offset_sec, price), ...]"""
    window = TickWindow(SYMBOL, retention_ms=1_800_000)
    for offset, price in points:
        window.append(price, T0 + offset * 1000)
    return window


class TestCrashEvaluation:
    """Test horizon checks"""

    def test_one_minute_drop_triggers(self):
        monitor = CrashMonitor(CrashConfig())
        window = create_window([(0, 100.0), (30, 100.0), (60, 97.9)])

        result = monitor.evaluate(window, T0 + 60_000)

        assert result.triggered
        assert result.horizon == "1m"
        assert result.move_pct < -2.0

    def test_small_drop_does_not_trigger(self):
        monitor = CrashMonitor(CrashConfig())
        window = create_window([(0, 100.0), (60, 98.5)])

        assert not monitor.evaluate(window, T0 + 60_000).triggered

    def test_five_minute_drop_triggers(self):
        monitor = CrashMonitor(CrashConfig())
        window = create_window([(0, 100.0), (120, 98.5), (240, 97.0), (300, 95.9)])

        result = monitor.evaluate(window, T0 + 300_000)

        assert result.triggered
        assert result.horizon == "5m"

    def test_empty_window_not_triggered(self):
        monitor = CrashMonitor(CrashConfig())
        window = create_window([])

        assert not monitor.evaluate(window, T0).triggered

    def test_short_side_watches_pumps(self):
        monitor = CrashMonitor(CrashConfig(), TradeDirection.SHORT)

        pump = create_window([(0, 100.0), (60, 102.1)])
        dump = create_window([(0, 100.0), (60, 97.9)])

        assert monitor.evaluate(pump, T0 + 60_000).triggered
        assert not monitor.evaluate(dump, T0 + 60_000).triggered

    def test_disabled(self):
        monitor = CrashMonitor(CrashConfig(enabled=False))
        window = create_window([(0, 100.0), (60, 90.0)])

        assert not monitor.evaluate(window, T0 + 60_000).triggered


class TestCrashLock:
    """Test lock side effects"""

    def test_lock_clears_activation_and_starts_cooldown(self):
        monitor = CrashMonitor(CrashConfig(cooldown_min=45))
        state = InstrumentState(key=SYMBOL)
        state.activation = ActivationContext(instrument=SYMBOL, reference_price=100.0, armed_at_ms=T0)
        window = create_window([(0, 100.0), (60, 97.0)])
        now = T0 + 60_000

        result = monitor.check(state, window, now)

        assert result.triggered
        assert state.activation is None
        assert state.crash_lock.until_ms == now + 45 * 60_000
        assert monitor.is_locked(state, now + 44 * 60_000)
        assert not monitor.is_locked(state, now + 45 * 60_000)
        assert state.last_action == "crash_lock_1m"

    def test_lock_never_shrinks(self):
        monitor = CrashMonitor(CrashConfig(cooldown_min=45))
        state = InstrumentState(key=SYMBOL)
        state.crash_lock.until_ms = T0 + 10 * 3_600_000
        window = create_window([(0, 100.0), (60, 97.0)])

        monitor.check(state, window, T0 + 60_000)

        assert state.crash_lock.until_ms == T0 + 10 * 3_600_000
