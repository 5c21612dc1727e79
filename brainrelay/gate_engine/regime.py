"""
Regime Classifier

Derives a TREND/RANGE classification per instrument from the tick window:

    slope_pct      = % change between the latest price and the price one
                     slope window ago
    volatility_pct = mean absolute tick-to-tick move inside the volatility
                     window, normalized by the latest price (ATR proxy)

Classification uses hysteresis so that the regime does not flap around a
single threshold, while still allowing a fast re-engage after a volatility
spike.
"""

import logging
import threading
from typing import Dict, Optional

import numpy as np

from brainrelay.gate_engine.config import RegimeConfig
from brainrelay.gate_engine.schemas import Regime, RegimeSnapshot
from brainrelay.gate_engine.tick_store import TickWindow

LOG = logging.getLogger(__name__)


class RegimeClassifier:
    """
    Tick-driven regime classifier.

    Owns one RegimeSnapshot per instrument; snapshots default to RANGE until
    enough samples exist.
    """

    def __init__(self, config: RegimeConfig):
        self.config = config
        self._snapshots: Dict[str, RegimeSnapshot] = {}
        self._lock = threading.RLock()

    def slope_pct(self, window: TickWindow, now_ms: int) -> Optional[float]:
        """Signed % move over the slope window"""
        p_now = window.price_at_or_before(now_ms)
        p_past = window.price_at_or_before(now_ms - int(self.config.slope_window_sec * 1000))
        if p_now is None or p_past is None or p_past == 0:
            return None
        return (p_now - p_past) / p_past * 100.0

    def volatility_pct(self, window: TickWindow, now_ms: int) -> Optional[float]:
        """Mean absolute consecutive move as % of the latest price"""
        cutoff = now_ms - int(self.config.volatility_window_sec * 1000)
        samples = window.samples_since(cutoff)
        if len(samples) < 3:
            return None

        prices = np.array([s.price for s in samples], dtype=float)
        last = prices[-1]
        if last == 0:
            return None
        mean_move = float(np.mean(np.abs(np.diff(prices))))
        return mean_move / last * 100.0

    def classify(self, previous: Regime, slope_pct: float, volatility_pct: float) -> Regime:
        """
        Apply hysteresis rules.

        Order matters:
            1. RANGE -> TREND when |slope| >= trend_engage and vol >= floor
               TREND -> RANGE when |slope| <= trend_disengage
            2. Force RANGE when |slope| <= range_engage
            3. Force TREND when |slope| >= range_disengage, |slope| >= trend_engage
               and vol >= floor
        """
        cfg = self.config
        abs_slope = abs(slope_pct)
        vol_ok = volatility_pct >= cfg.volatility_floor_pct

        nxt = previous
        if previous == Regime.RANGE:
            if abs_slope >= cfg.trend_engage_pct and vol_ok:
                nxt = Regime.TREND
        else:
            if abs_slope <= cfg.trend_disengage_pct:
                nxt = Regime.RANGE

        if abs_slope <= cfg.range_engage_pct:
            nxt = Regime.RANGE

        if abs_slope >= cfg.range_disengage_pct and vol_ok:
            if abs_slope >= cfg.trend_engage_pct:
                nxt = Regime.TREND

        return nxt

    def update(self, instrument: str, window: TickWindow, now_ms: int) -> Optional[RegimeSnapshot]:
        """
        Recompute the regime for an instrument.

        Returns the new snapshot, or None when disabled or when the window
        does not hold enough history (the previous snapshot is kept).
        """
        if not self.config.enabled:
            return None
        if len(window) < self.config.min_ticks:
            return None

        slope = self.slope_pct(window, now_ms)
        vol = self.volatility_pct(window, now_ms)
        if slope is None or vol is None:
            return None

        previous = self.snapshot(instrument)
        regime = self.classify(previous.regime, slope, vol)

        snapshot = RegimeSnapshot(
            regime=regime,
            slope_pct=slope,
            volatility_pct=vol,
            updated_at_ms=now_ms,
        )
        with self._lock:
            self._snapshots[instrument] = snapshot

        if previous.regime != regime:
            LOG.info(
                f"REGIME SWITCH: {instrument} {previous.regime.value} -> {regime.value} | "
                f"slope={slope:.3f}% | vol={vol:.3f}%"
            )
        return snapshot

    def snapshot(self, instrument: str) -> RegimeSnapshot:
        """Current snapshot (RANGE default when never classified)"""
        with self._lock:
            snapshot = self._snapshots.get(instrument)
        return snapshot if snapshot is not None else RegimeSnapshot()

    def regime_of(self, instrument: str) -> Regime:
        return self.snapshot(instrument).regime

    def current_volatility(self, instrument: str, window: TickWindow, now_ms: int) -> Optional[float]:
        """Snapshot volatility, or a fresh estimate when never classified"""
        vol = self.snapshot(instrument).volatility_pct
        if vol is None:
            vol = self.volatility_pct(window, now_ms)
        return vol

    def reset(self, instrument: Optional[str] = None):
        with self._lock:
            if instrument is None:
                self._snapshots.clear()
            else:
                self._snapshots.pop(instrument, None)
