"""
Test Suite for Regime Classifier

Tests hysteresis ordering, the volatility floor and tick-driven updates.
"""

import pytest

from brainrelay.gate_engine.config import RegimeConfig
from brainrelay.gate_engine.regime import RegimeClassifier
from brainrelay.gate_engine.schemas import Regime
from brainrelay.gate_engine.tick_store import TickWindow


T0 = 1_700_000_000_000
SYMBOL = "BINANCE:SOLUSDT"

# 30s ticks: 0.3% slope over 5 min, ~0.25% mean absolute move
TREND_SERIES = [50.00, 50.14, 50.03, 50.17, 50.06, 50.20, 50.09, 50.23, 50.12, 50.26, 50.15]


def create_window(prices, step_sec=30, start_ms=T0) -> TickWindow:
    """Create a tick window with evenly spaced ticks"""
    window = TickWindow(SYMBOL, retention_ms=1_800_000)
    for i, price in enumerate(prices):
        window.append(price, start_ms + i * step_sec * 1000)
    return window


class TestHysteresis:
    """Test classification rules"""

    def setup_method(self):
        self.classifier = RegimeClassifier(RegimeConfig())

    def test_range_engages_trend(self):
        assert self.classifier.classify(Regime.RANGE, 0.30, 0.25) == Regime.TREND

    def test_negative_slope_engages_trend(self):
        assert self.classifier.classify(Regime.RANGE, -0.30, 0.25) == Regime.TREND

    def test_volatility_floor_blocks_trend(self):
        assert self.classifier.classify(Regime.RANGE, 0.30, 0.10) == Regime.RANGE

    def test_trend_holds_inside_band(self):
        """Between disengage and engage the previous regime is kept"""
        assert self.classifier.classify(Regime.TREND, 0.20, 0.10) == Regime.TREND
        assert self.classifier.classify(Regime.RANGE, 0.20, 0.30) == Regime.RANGE

    def test_trend_disengages(self):
        assert self.classifier.classify(Regime.TREND, 0.17, 0.30) == Regime.RANGE

    def test_range_override(self):
        """Flat slope forces RANGE even when the primary rule keeps TREND"""
        classifier = RegimeClassifier(RegimeConfig(trend_disengage_pct=0.05))
        assert classifier.classify(Regime.TREND, 0.10, 0.50) == Regime.RANGE

    def test_fast_reengage_override(self):
        """A disengaging rule can be overridden by a strong slope with volatility"""
        config = RegimeConfig(trend_engage_pct=0.25, trend_disengage_pct=0.25)
        classifier = RegimeClassifier(config)
        assert classifier.classify(Regime.TREND, 0.25, 0.30) == Regime.TREND


class TestRegimeUpdate:
    """Test tick-driven updates"""

    def test_insufficient_ticks_keeps_default(self):
        classifier = RegimeClassifier(RegimeConfig())
        window = create_window(TREND_SERIES[:9])

        assert classifier.update(SYMBOL, window, T0 + 8 * 30_000) is None
        assert classifier.regime_of(SYMBOL) == Regime.RANGE

    def test_trend_once_min_ticks_reached(self):
        classifier = RegimeClassifier(RegimeConfig())
        window = create_window(TREND_SERIES[:10])

        snapshot = classifier.update(SYMBOL, window, T0 + 9 * 30_000)

        assert snapshot is not None
        assert snapshot.regime == Regime.TREND
        assert snapshot.slope_pct == pytest.approx(0.52, abs=1e-6)
        assert snapshot.volatility_pct == pytest.approx(0.252, abs=1e-3)

    def test_slope_over_window(self):
        classifier = RegimeClassifier(RegimeConfig())
        window = create_window(TREND_SERIES)
        now = T0 + 300_000

        assert classifier.slope_pct(window, now) == pytest.approx(0.3, abs=1e-6)
        assert classifier.volatility_pct(window, now) == pytest.approx(0.2493, abs=1e-3)

    def test_update_is_idempotent(self):
        classifier = RegimeClassifier(RegimeConfig())
        window = create_window(TREND_SERIES)
        now = T0 + 300_000

        first = classifier.update(SYMBOL, window, now)
        second = classifier.update(SYMBOL, window, now)

        assert first.regime == second.regime == Regime.TREND
        assert first.slope_pct == second.slope_pct

    def test_flat_series_is_range(self):
        classifier = RegimeClassifier(RegimeConfig())
        window = create_window([100.0] * 12)

        snapshot = classifier.update(SYMBOL, window, T0 + 11 * 30_000)
        assert snapshot.regime == Regime.RANGE

    def test_disabled_classifier(self):
        classifier = RegimeClassifier(RegimeConfig(enabled=False))
        window = create_window(TREND_SERIES)

        assert classifier.update(SYMBOL, window, T0 + 300_000) is None
        assert classifier.regime_of(SYMBOL) == Regime.RANGE

    def test_reset(self):
        classifier = RegimeClassifier(RegimeConfig())
        window = create_window(TREND_SERIES)
        classifier.update(SYMBOL, window, T0 + 300_000)

        classifier.reset(SYMBOL)
        assert classifier.snapshot(SYMBOL).slope_pct is None
