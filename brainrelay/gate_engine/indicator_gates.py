"""
Indicator Gates

Entry gates fed by indicator values the producer computes and sends along
with the enter-intent:

    ind   atr, candleRange, rocPct       adverse spike (pump for SHORT, dump for LONG)
    htf   close / EMA50 / RSI booleans   higher-timeframe bias
    reg   adx, slopePctPerBar            trend strength

A gate whose fields are absent is skipped. A detected spike opens its own
cooldown window on the instrument.
"""

import logging
from typing import Any, Dict, Mapping, Tuple

from brainrelay.gate_engine.config import IndicatorGateConfig
from brainrelay.gate_engine.schemas import InstrumentState, TradeDirection

LOG = logging.getLogger(__name__)

# (close vs EMA200, EMA50 vs EMA200, RSI vs 50)
HTF_BIAS_FIELDS = {
    TradeDirection.LONG: ("closeAboveEma200", "ema50AboveEma200", "rsiAbove50"),
    TradeDirection.SHORT: ("closeBelowEma200", "ema50BelowEma200", "rsiBelow50"),
}


class IndicatorGates:
    """Gate 2: producer indicator checks"""

    def __init__(self, config: IndicatorGateConfig, direction: TradeDirection = TradeDirection.LONG):
        self.config = config
        self.direction = direction
        self._side = "above" if direction == TradeDirection.LONG else "below"
        self._bias = "bull" if direction == TradeDirection.LONG else "bear"

    def detect_spike(self, ind: Mapping[str, Any]) -> Tuple[bool, str]:
        """
        Candle range against ATR, then rate of change against the traded side.

        Returns:
            (is_spike: bool, detail: str)
        """
        atr = ind.get("atr")
        candle_range = ind.get("candleRange")
        roc = ind.get("rocPct")
        if atr is None or candle_range is None or roc is None:
            return False, "no_indicators"

        if candle_range >= atr * self.config.pump_atr_mult:
            return True, f"range_gt_atr_mult(range={candle_range},atr={atr})"

        adverse_roc = roc if self.direction == TradeDirection.SHORT else -roc
        if adverse_roc >= self.config.pump_roc_pct:
            return True, f"roc_gt_threshold(rocPct={roc})"
        return False, "ok"

    def htf_bias_ok(self, htf: Mapping[str, Any]) -> Tuple[bool, str]:
        """Close beyond EMA200 plus one of EMA50 beyond EMA200 or RSI beyond 50"""
        if not htf:
            return True, "no_htf_fields"

        close_field, ema_field, rsi_field = HTF_BIAS_FIELDS[self.direction]
        if not htf.get(close_field, False):
            return False, f"close_not_{self._side}_ema200"
        if not (htf.get(ema_field, False) or htf.get(rsi_field, False)):
            return False, f"no_secondary_{self._bias}_confirm"
        return True, "ok"

    def trend_strength_ok(self, reg: Mapping[str, Any]) -> Tuple[bool, str]:
        adx = reg.get("adx")
        slope = reg.get("slopePctPerBar")
        if adx is None or slope is None:
            return True, "no_regime_fields"

        if adx < self.config.adx_min:
            return False, f"adx_low({adx}<{self.config.adx_min})"

        slope_with_trade = slope if self.direction == TradeDirection.LONG else -slope
        if slope_with_trade < self.config.slope_min_pct:
            return False, f"slope_not_{self._bias}({slope})"
        return True, "ok"

    def check(self, state: InstrumentState, indicators: Dict[str, Dict[str, Any]], now_ms: int) -> Tuple[bool, str, str]:
        """
        Run the gates in order: spike cooldown, spike, HTF bias, trend strength.

        A detected spike extends the instrument's pump cooldown.

        Returns:
            (passed: bool, reason: str, detail: str)
        """
        if state.pump_cooldown.is_active(now_ms):
            return False, "pump_cooldown_active", ""

        if self.config.pump_protect_enabled:
            spike, detail = self.detect_spike(indicators.get("ind", {}))
            if spike:
                cooldown_ms = int(self.config.pump_cooldown_min * 60 * 1000)
                state.pump_cooldown.extend_to(now_ms + cooldown_ms)
                LOG.warning(f"Spike on {state.key}: {detail}, entries blocked for {self.config.pump_cooldown_min} min")
                return False, "pump_detected", detail

        if self.config.htf_bias_enabled:
            ok, detail = self.htf_bias_ok(indicators.get("htf", {}))
            if not ok:
                return False, "htf_bias_block", detail

        if self.config.trend_strength_enabled:
            ok, detail = self.trend_strength_ok(indicators.get("reg", {}))
            if not ok:
                return False, "trend_strength_block", detail

        return True, "ok", ""
