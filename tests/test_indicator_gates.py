"""
Test Suite for Indicator Gates

Tests spike detection and its cooldown, higher-timeframe bias and trend
strength, for both trade directions.
"""

import pytest

from brainrelay.gate_engine.config import IndicatorGateConfig
from brainrelay.gate_engine.indicator_gates import IndicatorGates
from brainrelay.gate_engine.schemas import InstrumentState, TradeDirection


T0 = 1_700_000_000_000
MIN = 60_000
SYMBOL = "BINANCE:SOLUSDT"


def create_gates(direction=TradeDirection.SHORT, **overrides) -> IndicatorGates:
    return IndicatorGates(IndicatorGateConfig(**overrides), direction)


class TestSpikeDetection:
    """Test pump / dump detection"""

    def test_wide_candle_is_spike_either_way(self):
        for direction in TradeDirection:
            spike, detail = create_gates(direction).detect_spike({"atr": 1.0, "candleRange": 2.5, "rocPct": 0.0})

            assert spike
            assert detail.startswith("range_gt_atr_mult")

    def test_roc_against_short(self):
        spike, detail = create_gates().detect_spike({"atr": 1.0, "candleRange": 1.0, "rocPct": 0.5})

        assert spike
        assert detail == "roc_gt_threshold(rocPct=0.5)"

    def test_roc_direction_is_mirrored_for_long(self):
        gates = create_gates(TradeDirection.LONG)
        calm = {"atr": 1.0, "candleRange": 1.0}

        assert gates.detect_spike({**calm, "rocPct": -0.5})[0]
        assert not gates.detect_spike({**calm, "rocPct": 0.5})[0]

    def test_missing_fields_never_trip(self):
        spike, detail = create_gates().detect_spike({"atr": 1.0, "rocPct": 3.0})

        assert not spike
        assert detail == "no_indicators"


class TestHtfBias:
    """Test higher-timeframe bias booleans"""

    @pytest.mark.parametrize("htf, expected", [
        ({"closeBelowEma200": True, "ema50BelowEma200": True}, (True, "ok")),
        ({"closeBelowEma200": True, "rsiBelow50": True}, (True, "ok")),
        ({"closeBelowEma200": False, "rsiBelow50": True}, (False, "close_not_below_ema200")),
        ({"closeBelowEma200": True}, (False, "no_secondary_bear_confirm")),
        ({}, (True, "no_htf_fields")),
    ])
    def test_short_bias(self, htf, expected):
        assert create_gates().htf_bias_ok(htf) == expected

    def test_long_reads_mirrored_fields(self):
        gates = create_gates(TradeDirection.LONG)

        assert gates.htf_bias_ok({"closeAboveEma200": True, "rsiAbove50": True}) == (True, "ok")
        assert gates.htf_bias_ok({"closeBelowEma200": True, "rsiBelow50": True}) == (False, "close_not_above_ema200")


class TestTrendStrength:
    """Test ADX and per-bar slope"""

    def test_short_downtrend_passes(self):
        assert create_gates().trend_strength_ok({"adx": 25.0, "slopePctPerBar": -0.12}) == (True, "ok")

    def test_weak_adx(self):
        ok, detail = create_gates().trend_strength_ok({"adx": 12.0, "slopePctPerBar": -0.12})

        assert not ok
        assert detail.startswith("adx_low")

    def test_flat_slope_for_short(self):
        ok, detail = create_gates().trend_strength_ok({"adx": 25.0, "slopePctPerBar": -0.05})

        assert not ok
        assert detail == "slope_not_bear(-0.05)"

    def test_long_needs_rising_slope(self):
        gates = create_gates(TradeDirection.LONG)

        assert gates.trend_strength_ok({"adx": 25.0, "slopePctPerBar": 0.12})[0]
        assert not gates.trend_strength_ok({"adx": 25.0, "slopePctPerBar": -0.12})[0]

    def test_missing_fields_pass(self):
        assert create_gates().trend_strength_ok({"adx": 40.0}) == (True, "no_regime_fields")


class TestCheck:
    """Test gate ordering and the spike cooldown"""

    def test_spike_starts_cooldown(self):
        gates = create_gates()
        state = InstrumentState(key=SYMBOL)
        spike = {"ind": {"atr": 1.0, "candleRange": 2.5, "rocPct": 0.0}}

        passed, reason, detail = gates.check(state, spike, T0)

        assert not passed
        assert reason == "pump_detected"
        assert detail.startswith("range_gt_atr_mult")
        assert state.pump_cooldown.until_ms == T0 + 5 * MIN

        assert gates.check(state, {}, T0 + 1 * MIN) == (False, "pump_cooldown_active", "")
        assert gates.check(state, {}, T0 + 5 * MIN) == (True, "ok", "")

    def test_spike_checked_before_bias(self):
        gates = create_gates()
        indicators = {
            "ind": {"atr": 1.0, "candleRange": 2.5, "rocPct": 0.0},
            "htf": {"closeBelowEma200": False},
        }

        _, reason, _ = gates.check(InstrumentState(key=SYMBOL), indicators, T0)
        assert reason == "pump_detected"

    def test_disabled_gates_are_skipped(self):
        gates = create_gates(pump_protect_enabled=False, htf_bias_enabled=False, trend_strength_enabled=False)
        indicators = {
            "ind": {"atr": 1.0, "candleRange": 2.5, "rocPct": 3.0},
            "htf": {"closeBelowEma200": False},
            "reg": {"adx": 5.0, "slopePctPerBar": 1.0},
        }
        state = InstrumentState(key=SYMBOL)

        assert gates.check(state, indicators, T0) == (True, "ok", "")
        assert state.pump_cooldown.until_ms == 0

    def test_no_indicators_pass(self):
        assert create_gates().check(InstrumentState(key=SYMBOL), {}, T0) == (True, "ok", "")

    def test_trend_strength_block(self):
        indicators = {"reg": {"adx": 10.0, "slopePctPerBar": -0.2}}

        passed, reason, detail = create_gates().check(InstrumentState(key=SYMBOL), indicators, T0)

        assert not passed
        assert reason == "trend_strength_block"
        assert detail == "adx_low(10.0<18.0)"
